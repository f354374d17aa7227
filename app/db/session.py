"""
Database session management. SQLAlchemy 2.x style.

PostgreSQL in deployment; SQLite URLs are accepted for local runs and the test
suite (the upsert and ledger code paths support both dialects).
"""

from collections.abc import Generator

from sqlalchemy import Engine, create_engine, text
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app.config import get_settings


class Base(DeclarativeBase):
    """Declarative base for SQLAlchemy models."""


def build_engine(database_url: str, *, echo: bool = False, connect_timeout: int = 10) -> Engine:
    """Create an engine with dialect-appropriate pool and connect arguments."""
    if database_url.startswith("sqlite"):
        kwargs: dict = {"connect_args": {"check_same_thread": False}}
        if database_url in ("sqlite://", "sqlite:///:memory:"):
            # One shared connection, otherwise each checkout sees an empty database
            kwargs["poolclass"] = StaticPool
        return create_engine(database_url, echo=echo, **kwargs)
    return create_engine(
        database_url,
        pool_pre_ping=True,
        pool_size=5,
        max_overflow=10,
        echo=echo,
        connect_args={
            "connect_timeout": connect_timeout,
            "options": "-c timezone=UTC",
        },
    )


settings = get_settings()
engine = build_engine(
    settings.database_url,
    echo=settings.debug,
    connect_timeout=settings.db_connect_timeout,
)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def check_db_connection() -> None:
    """
    Verify database connectivity. Raises if unreachable.
    Call during application startup.
    """
    with engine.connect() as conn:
        conn.execute(text("SELECT 1"))


def get_db() -> Generator[Session, None, None]:
    """Dependency for FastAPI to get database session."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
