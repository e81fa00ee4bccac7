"""Opportunity status and notes API routes."""
from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from backend.api.dependencies import get_store_client, get_volume_gate
from backend.api.errors import store_http_error
from backend.config.logging_config import get_logger
from backend.fax.exceptions import OpportunityStoreError
from backend.fax.safety_gate import GateDecision, PrescriberVolumeGate
from backend.models.enums import GateDecisionStatus, OpportunityStatus

logger = get_logger(__name__)

router = APIRouter(prefix="/opportunities", tags=["Opportunities"])


class StatusChangeRequest(BaseModel):
    status: OpportunityStatus
    reopen: bool = False


class NotesRequest(BaseModel):
    notes: str = Field(..., max_length=5000)


@router.post("/{opportunity_id}/status", response_model=GateDecision)
async def change_status(
    opportunity_id: str,
    request: StatusChangeRequest,
    store=Depends(get_store_client),
    gate: PrescriberVolumeGate = Depends(get_volume_gate),
):
    """
    Change an opportunity's status through the prescriber volume gate.

    The decision tells the caller what happened: applied, warned (with an
    override token for "Proceed Anyway"), blocked, rejected or failed.
    """
    try:
        opportunity = await store.get_opportunity(opportunity_id)
    except OpportunityStoreError as e:
        raise store_http_error(e, "Could not load opportunity")

    return await gate.check_and_apply(opportunity, request.status, reopen=request.reopen)


@router.post("/status-overrides/{token}", response_model=GateDecision)
async def proceed_with_override(token: str, gate: PrescriberVolumeGate = Depends(get_volume_gate)):
    """Apply a warned status change after the user chose "Proceed Anyway"."""
    decision = await gate.proceed(token)
    if decision.status == GateDecisionStatus.REJECTED and not decision.opportunity_id:
        raise HTTPException(status_code=404, detail=decision.message)
    return decision


@router.patch("/{opportunity_id}/notes")
async def update_notes(opportunity_id: str, request: NotesRequest, store=Depends(get_store_client)):
    """Save staff notes. Notes never go through the volume gate."""
    try:
        await store.update_notes(opportunity_id, request.notes)
    except OpportunityStoreError as e:
        raise store_http_error(e, "Failed to save notes. Please try again.")
    logger.info("Staff notes updated", opportunity_id=opportunity_id, length=len(request.notes))
    return {"opportunity_id": opportunity_id, "staff_notes": request.notes}
