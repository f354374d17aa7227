"""
Pytest configuration and fixtures.
"""

from __future__ import annotations

import os

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

from tests.test_constants import TEST_INTERNAL_JOB_TOKEN

# Force an in-memory SQLite database when pytest runs; don't inherit from .env
os.environ["DATABASE_URL"] = "sqlite://"
os.environ.setdefault("INTERNAL_JOB_TOKEN", TEST_INTERNAL_JOB_TOKEN)
os.environ.setdefault("OPENAI_API_KEY", "")
os.environ.setdefault("PERPLEXITY_API_KEY", "")
os.environ.setdefault("ANTHROPIC_API_KEY", "")
os.environ.setdefault("GEMINI_API_KEY", "")


@pytest.fixture
def sql_engine():
    """Fresh in-memory SQLite engine with all tables created."""
    import app.models  # noqa: F401  (registers tables)
    from app.db.session import Base, build_engine

    engine = build_engine("sqlite://")
    Base.metadata.create_all(engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(engine)
        engine.dispose()


@pytest.fixture
def session_factory(sql_engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=sql_engine, expire_on_commit=False)


@pytest.fixture
def sql_store(session_factory):
    from app.storage.sql_store import SqlAnalysisStore

    return SqlAnalysisStore(session_factory)


@pytest.fixture
def memory_store():
    from app.storage.memory import InMemoryAnalysisStore

    return InMemoryAnalysisStore()


@pytest.fixture
def client(memory_store) -> TestClient:
    """FastAPI test client backed by an in-memory store."""
    from app.main import create_app

    app = create_app()
    app.state.store = memory_store
    with TestClient(app) as c:
        yield c


@pytest.fixture(autouse=True)
def _clear_caches():
    """Reset cached settings and generators around every test."""
    from app.config import get_settings
    from app.llm.router import clear_generator_cache

    get_settings.cache_clear()
    clear_generator_cache()
    yield
    get_settings.cache_clear()
    clear_generator_cache()
