"""Generated-fax history ("fax queue").

Bounded ring buffer, most recent first. It lives in process memory only:
a restart clears it, the same way the dashboard's browser-local log did.
"""
from collections import deque
from datetime import datetime, timezone
from typing import Deque, List, Optional
from uuid import uuid4

from pydantic import BaseModel, Field

from backend.models.enums import DocumentMode, FaxHistoryStatus
from backend.models.document import FaxDocument
from backend.config.logging_config import get_logger

logger = get_logger(__name__)

DEFAULT_CAPACITY = 100


class FaxHistoryEntry(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid4()))
    generated_at: datetime
    prescriber_name: str
    patient_name: str
    patient_id: str
    opportunity_ids: List[str] = Field(default_factory=list)
    opportunity_count: int = 0
    mode: DocumentMode = DocumentMode.SINGLE
    status: FaxHistoryStatus = FaxHistoryStatus.PENDING

    @classmethod
    def from_document(cls, document: FaxDocument, patient_name: str) -> "FaxHistoryEntry":
        return cls(
            generated_at=document.generated_at,
            prescriber_name=document.prescriber_name,
            patient_name=patient_name,
            patient_id=document.patient_id,
            opportunity_ids=list(document.opportunity_ids),
            opportunity_count=len(document.opportunity_ids),
            mode=document.mode,
        )


def _aware(value: datetime) -> datetime:
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def days_since_generated(entry: FaxHistoryEntry, now: datetime) -> int:
    """Whole days between generation and ``now``."""
    return abs((_aware(now) - _aware(entry.generated_at)).days)


class FaxHistory:
    """Capped, most-recent-first list of generated faxes."""

    def __init__(self, capacity: int = DEFAULT_CAPACITY):
        if capacity < 1:
            raise ValueError("History capacity must be at least 1")
        self.capacity = capacity
        self._entries: Deque[FaxHistoryEntry] = deque(maxlen=capacity)

    def __len__(self) -> int:
        return len(self._entries)

    def record(self, entry: FaxHistoryEntry) -> FaxHistoryEntry:
        """Add an entry at the front; the oldest entry drops out when full."""
        self._entries.appendleft(entry)
        logger.info(
            "Fax recorded in history",
            entry_id=entry.id,
            opportunity_count=entry.opportunity_count,
            history_size=len(self._entries),
        )
        return entry

    def entries(self) -> List[FaxHistoryEntry]:
        return list(self._entries)

    def get(self, entry_id: str) -> Optional[FaxHistoryEntry]:
        return next((e for e in self._entries if e.id == entry_id), None)

    def mark_submitted(self, entry_id: str) -> Optional[FaxHistoryEntry]:
        entry = self.get(entry_id)
        if entry is not None:
            entry.status = FaxHistoryStatus.SUBMITTED
        return entry

    def mark_submitted_for_opportunity(self, opportunity_id: str) -> int:
        """Mark every pending entry covering an opportunity as submitted."""
        marked = 0
        for entry in self._entries:
            if entry.status == FaxHistoryStatus.PENDING and opportunity_id in entry.opportunity_ids:
                entry.status = FaxHistoryStatus.SUBMITTED
                marked += 1
        return marked

    def remove(self, entry_id: str) -> bool:
        entry = self.get(entry_id)
        if entry is None:
            return False
        self._entries.remove(entry)
        return True

    def clear(self) -> None:
        self._entries.clear()

    def search(self, query: Optional[str] = None, status: Optional[FaxHistoryStatus] = None) -> List[FaxHistoryEntry]:
        """Filter by status and a case-insensitive prescriber/patient match."""
        needle = (query or "").strip().lower()
        results = []
        for entry in self._entries:
            if status is not None and entry.status != status:
                continue
            if needle and needle not in entry.prescriber_name.lower() and needle not in entry.patient_name.lower():
                continue
            results.append(entry)
        return results

    def overdue(self, now: datetime, days: int = 3) -> List[FaxHistoryEntry]:
        """Pending faxes generated at least ``days`` ago."""
        return [
            e for e in self._entries
            if e.status == FaxHistoryStatus.PENDING and days_since_generated(e, now) >= days
        ]
