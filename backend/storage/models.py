"""SQLAlchemy ORM models for the audit trail."""
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import DateTime, Index, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""
    type_annotation_map = {
        datetime: DateTime(timezone=True),
    }


class GateOverrideModel(Base):
    """A user chose "Proceed Anyway" on a prescriber volume warning."""

    __tablename__ = "gate_overrides"
    __table_args__ = (
        Index("idx_gate_overrides_prescriber", "prescriber_name"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    opportunity_id: Mapped[str] = mapped_column(String(100), nullable=False)
    prescriber_name: Mapped[str] = mapped_column(String(255), nullable=False)
    target_status: Mapped[str] = mapped_column(String(50), nullable=False)
    unique_patients_actioned: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    warn_threshold: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    block_threshold: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    created_at: Mapped[datetime] = mapped_column(nullable=False, default=_utcnow)


class FaxTransmissionModel(Base):
    """Outcome of one direct fax send attempt."""

    __tablename__ = "fax_transmissions"
    __table_args__ = (
        Index("idx_fax_transmissions_opportunity", "opportunity_id"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    opportunity_id: Mapped[str] = mapped_column(String(100), nullable=False)
    prescriber_name: Mapped[str] = mapped_column(String(255), nullable=False)
    fax_number_masked: Mapped[str] = mapped_column(String(20), nullable=False)  # last four digits only
    outcome: Mapped[str] = mapped_column(String(20), nullable=False)  # sent | failed
    fax_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(nullable=False, default=_utcnow)
