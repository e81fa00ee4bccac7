"""Generated-fax history ("fax queue") API routes."""
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from backend.api.dependencies import get_fax_history
from backend.config.settings import get_settings
from backend.config.logging_config import get_logger
from backend.fax.history import FaxHistory, FaxHistoryEntry, days_since_generated
from backend.models.enums import FaxHistoryStatus

logger = get_logger(__name__)

router = APIRouter(prefix="/fax/history", tags=["Fax History"])


def _entry_view(entry: FaxHistoryEntry, now: datetime) -> dict:
    data = entry.model_dump(mode="json")
    data["days_since_generated"] = days_since_generated(entry, now)
    return data


@router.get("")
async def list_history(
    search: Optional[str] = Query(None, max_length=200),
    status: Optional[FaxHistoryStatus] = None,
    history: FaxHistory = Depends(get_fax_history),
):
    """
    List generated faxes, most recent first.

    Args:
        search: Case-insensitive match on prescriber or patient name
        status: Only pending or only submitted entries
    """
    now = datetime.now(timezone.utc)
    entries = history.search(search, status)
    overdue_days = get_settings().fax_overdue_days
    return {
        "entries": [_entry_view(e, now) for e in entries],
        "total": len(entries),
        "pending": len(history.search(status=FaxHistoryStatus.PENDING)),
        "overdue": len(history.overdue(now, days=overdue_days)),
    }


@router.get("/overdue")
async def list_overdue(history: FaxHistory = Depends(get_fax_history)):
    """Pending faxes that need a follow-up call."""
    now = datetime.now(timezone.utc)
    overdue_days = get_settings().fax_overdue_days
    entries = history.overdue(now, days=overdue_days)
    return {
        "overdue_days": overdue_days,
        "entries": [_entry_view(e, now) for e in entries],
        "total": len(entries),
    }


@router.post("/{entry_id}/submitted")
async def mark_submitted(entry_id: str, history: FaxHistory = Depends(get_fax_history)):
    entry = history.mark_submitted(entry_id)
    if entry is None:
        raise HTTPException(status_code=404, detail=f"History entry not found: {entry_id}")
    logger.info("Fax history entry marked submitted", entry_id=entry_id)
    return _entry_view(entry, datetime.now(timezone.utc))


@router.delete("/{entry_id}")
async def remove_entry(entry_id: str, history: FaxHistory = Depends(get_fax_history)):
    if not history.remove(entry_id):
        raise HTTPException(status_code=404, detail=f"History entry not found: {entry_id}")
    return {"entry_id": entry_id, "deleted": True}


@router.delete("")
async def clear_history(history: FaxHistory = Depends(get_fax_history)):
    cleared = len(history)
    history.clear()
    logger.info("Fax history cleared", entries=cleared)
    return {"cleared": cleared}
