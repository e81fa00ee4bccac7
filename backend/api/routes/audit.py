"""Read-only access to the gate override and fax transmission audit trail."""
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, ConfigDict

from backend.api.dependencies import get_audit_repository
from backend.storage.audit_repository import AuditRepository

router = APIRouter(prefix="/audit", tags=["Audit"])


class OverrideRecord(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    opportunity_id: str
    prescriber_name: str
    target_status: str
    unique_patients_actioned: int
    warn_threshold: int
    block_threshold: Optional[int] = None
    created_at: datetime


class TransmissionRecord(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    opportunity_id: str
    prescriber_name: str
    fax_number_masked: str
    outcome: str
    fax_id: Optional[str] = None
    message: Optional[str] = None
    created_at: datetime


@router.get("/overrides", response_model=List[OverrideRecord])
async def list_overrides(
    prescriber_name: Optional[str] = Query(None, description="Only overrides for this prescriber"),
    audit: AuditRepository = Depends(get_audit_repository),
):
    """Overrides of prescriber volume warnings, newest first."""
    return await audit.list_overrides(prescriber_name)


@router.get("/transmissions/{opportunity_id}", response_model=List[TransmissionRecord])
async def list_transmissions(opportunity_id: str, audit: AuditRepository = Depends(get_audit_repository)):
    """Send attempts for one opportunity, newest first."""
    return await audit.list_transmissions(opportunity_id)
