"""API route modules."""
from . import audit, fax, history, opportunities

__all__ = ["audit", "fax", "history", "opportunities"]
