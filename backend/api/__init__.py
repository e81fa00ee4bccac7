"""API module for FastAPI endpoints."""
from .routes import audit, fax, history, opportunities

__all__ = ["audit", "fax", "history", "opportunities"]
