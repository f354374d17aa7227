"""Column types shared by the models."""

from sqlalchemy import JSON
from sqlalchemy.dialects.postgresql import JSONB

# JSONB on PostgreSQL so the upsert can merge documents with ``||``;
# plain JSON (text) elsewhere.
JSONDocument = JSON().with_variant(JSONB(), "postgresql")
