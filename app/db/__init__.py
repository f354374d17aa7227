"""Database package."""

from app.db.session import Base, SessionLocal, build_engine, engine, get_db

__all__ = ["Base", "SessionLocal", "build_engine", "engine", "get_db"]
