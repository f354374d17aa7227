"""API routes."""

from app.api.analysis import router as analysis_router

__all__ = ["analysis_router"]
