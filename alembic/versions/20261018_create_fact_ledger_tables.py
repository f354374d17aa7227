"""Create aggregated_records, cost_ledger_entries, cost_budgets and analysis_runs.

Revision ID: 20261018_fact_ledger
Revises:
Create Date: 2026-10-18

cost_ledger_entries is append-only; the unique idempotency_key is the external
guard against double-charging on retried writes.
"""

from collections.abc import Sequence

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

revision: str = "20261018_fact_ledger"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

_JSON = sa.JSON().with_variant(postgresql.JSONB(astext_type=sa.Text()), "postgresql")


def upgrade() -> None:
    op.create_table(
        "aggregated_records",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("entity_id", sa.String(length=255), nullable=False),
        sa.Column("entity_name", sa.String(length=255), nullable=True),
        sa.Column("status", sa.String(length=32), nullable=False, server_default="completed"),
        sa.Column("overall_confidence", sa.Float(), nullable=False),
        sa.Column("field_scores", _JSON, nullable=True),
        sa.Column("trust_scores", _JSON, nullable=True),
        sa.Column("aggregated_result", _JSON, nullable=True),
        sa.Column("provenance_map", _JSON, nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_aggregated_records_entity_id", "aggregated_records", ["entity_id"], unique=True
    )

    op.create_table(
        "cost_ledger_entries",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("identity", sa.String(length=255), nullable=False),
        sa.Column("amount_usd", sa.Numeric(12, 6), nullable=False),
        sa.Column("provider", sa.String(length=64), nullable=True),
        sa.Column("related_entity_id", sa.String(length=255), nullable=True),
        sa.Column("idempotency_key", sa.String(length=255), nullable=True),
        sa.Column("metadata", _JSON, nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("idempotency_key"),
    )
    op.create_index("ix_cost_ledger_entries_identity", "cost_ledger_entries", ["identity"])
    op.create_index(
        "ix_cost_ledger_entries_related_entity_id", "cost_ledger_entries", ["related_entity_id"]
    )
    op.create_index("ix_cost_ledger_entries_created_at", "cost_ledger_entries", ["created_at"])

    op.create_table(
        "cost_budgets",
        sa.Column("identity", sa.String(length=255), nullable=False),
        sa.Column("monthly_cost_limit_usd", sa.Numeric(12, 6), nullable=False),
        sa.Column("alert_threshold", sa.Float(), nullable=False, server_default="0.8"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.PrimaryKeyConstraint("identity"),
    )

    op.create_table(
        "analysis_runs",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("session_id", sa.String(length=64), nullable=False),
        sa.Column("identity", sa.String(length=255), nullable=True),
        sa.Column("status", sa.String(length=32), nullable=False),
        sa.Column("total_entities", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("completed_entities", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("percentage", sa.Float(), nullable=False, server_default="0"),
        sa.Column("current_entity", sa.String(length=255), nullable=True),
        sa.Column("providers_selected", _JSON, nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column(
            "started_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column("finished_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_analysis_runs_session_id", "analysis_runs", ["session_id"], unique=True)
    op.create_index("ix_analysis_runs_identity", "analysis_runs", ["identity"])


def downgrade() -> None:
    op.drop_index("ix_analysis_runs_identity", table_name="analysis_runs")
    op.drop_index("ix_analysis_runs_session_id", table_name="analysis_runs")
    op.drop_table("analysis_runs")
    op.drop_table("cost_budgets")
    op.drop_index("ix_cost_ledger_entries_created_at", table_name="cost_ledger_entries")
    op.drop_index("ix_cost_ledger_entries_related_entity_id", table_name="cost_ledger_entries")
    op.drop_index("ix_cost_ledger_entries_identity", table_name="cost_ledger_entries")
    op.drop_table("cost_ledger_entries")
    op.drop_index("ix_aggregated_records_entity_id", table_name="aggregated_records")
    op.drop_table("aggregated_records")
