"""Fax document, batch selection and send-flow API routes."""
from datetime import datetime, timezone
from typing import List, Optional, Sequence, Tuple

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import Response
from pydantic import BaseModel, Field

from backend.api.dependencies import get_fax_history, get_flow_registry, get_store_client
from backend.api.errors import store_http_error
from backend.config.settings import get_settings
from backend.config.logging_config import get_logger
from backend.fax.composer import compose_fax_document
from backend.fax.exceptions import DocumentScopeError, OpportunityStoreError
from backend.fax.exporter import build_export_filename, render_pdf
from backend.fax.formatting import build_patient_summary, build_prescriber_summary
from backend.fax.history import FaxHistory, FaxHistoryEntry
from backend.fax.selection import BatchSelectionModel, SelectionResult, batch_mode_available
from backend.fax.send_flow import FaxFlowRegistry, FlowSnapshot, SendOutcome
from backend.models.document import FaxDocument
from backend.models.enums import DocumentMode, GroupingContext
from backend.models.opportunity import Opportunity, PatientSummary, PharmacyProfile

logger = get_logger(__name__)

router = APIRouter(prefix="/fax", tags=["Fax"])


class DocumentRequest(BaseModel):
    patient_id: str = Field(..., min_length=1)
    opportunity_ids: List[str] = Field(..., min_length=1, max_length=200)
    mode: DocumentMode = DocumentMode.SINGLE
    generated_at: Optional[datetime] = None
    repeat_table_header: bool = False
    record_history: bool = True


class SelectionRequest(BaseModel):
    patient_id: str = Field(..., min_length=1)
    grouping_context: GroupingContext = GroupingContext.PATIENT
    selected_ids: List[str] = Field(default_factory=list)


class ToggleRequest(SelectionRequest):
    opportunity_id: str


class SelectAllRequest(SelectionRequest):
    prescriber_name: str


class OpenFlowRequest(BaseModel):
    opportunity_id: str = Field(..., min_length=1)


class UpdateFlowRequest(BaseModel):
    fax_number: Optional[str] = Field(None, max_length=40)
    npi_confirmed: Optional[bool] = None


class SendRequest(BaseModel):
    acknowledge_volume_warning: bool = False


class SendResponse(BaseModel):
    outcome: SendOutcome
    flow: FlowSnapshot


async def _load_patient_opportunities(store, patient_id: str) -> List[Opportunity]:
    try:
        return await store.list_patient_opportunities(patient_id)
    except OpportunityStoreError as e:
        logger.error("Failed to load patient opportunities", patient_id=patient_id, error=str(e))
        raise store_http_error(e, "Could not load opportunities")


async def _build_document(store, request: DocumentRequest) -> Tuple[FaxDocument, PatientSummary]:
    patient_opps = await _load_patient_opportunities(store, request.patient_id)
    by_id = {o.opportunity_id: o for o in patient_opps}
    missing = [i for i in request.opportunity_ids if i not in by_id]
    if missing:
        raise HTTPException(status_code=404, detail=f"Opportunities not found for patient: {', '.join(missing)}")
    opportunities: Sequence[Opportunity] = [by_id[i] for i in request.opportunity_ids]

    try:
        pharmacy = await store.get_pharmacy_profile()
    except OpportunityStoreError as e:
        logger.warning("Pharmacy profile unavailable, rendering blank pharmacy block", error=str(e))
        pharmacy = PharmacyProfile()

    patient = build_patient_summary(opportunities, is_demo=get_settings().demo_account)
    prescriber = build_prescriber_summary(opportunities)
    try:
        document = compose_fax_document(
            patient,
            prescriber,
            pharmacy,
            opportunities,
            request.mode,
            request.generated_at or datetime.now(timezone.utc),
            repeat_table_header=request.repeat_table_header,
        )
    except DocumentScopeError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return document, patient


@router.post("/documents/preview")
async def preview_document(request: DocumentRequest, store=Depends(get_store_client)):
    """
    Compose a fax document and return its layout without encoding it.

    Returns:
        Page layout, page count, form field names and the export file name
    """
    document, patient = await _build_document(store, request)
    return {
        "document": document.model_dump(mode="json"),
        "page_count": document.page_count,
        "field_names": document.field_names(),
        "filename": build_export_filename(document, patient),
    }


@router.post("/documents")
async def export_document(
    request: DocumentRequest,
    store=Depends(get_store_client),
    history: FaxHistory = Depends(get_fax_history),
):
    """
    Compose a fax document and download it as a fillable PDF.

    The generated fax is added to the history ("fax queue") unless
    ``record_history`` is false.
    """
    document, patient = await _build_document(store, request)
    pdf_bytes = render_pdf(document)
    filename = build_export_filename(document, patient)

    headers = {"Content-Disposition": f'attachment; filename="{filename}"'}
    if request.record_history:
        entry = history.record(FaxHistoryEntry.from_document(document, patient.display_name))
        headers["X-Fax-History-Id"] = entry.id

    logger.info(
        "Fax document exported",
        mode=document.mode.value,
        opportunities=len(document.opportunity_ids),
        pages=document.page_count,
    )
    return Response(content=pdf_bytes, media_type="application/pdf", headers=headers)


async def _selection_model(store, request: SelectionRequest) -> BatchSelectionModel:
    opportunities = await _load_patient_opportunities(store, request.patient_id)
    if not batch_mode_available(request.grouping_context, len(opportunities)):
        raise HTTPException(
            status_code=400,
            detail="Batch selection is only available when grouped by patient with more than one opportunity",
        )
    return BatchSelectionModel(opportunities, request.selected_ids)


@router.post("/selection/toggle", response_model=SelectionResult)
async def toggle_selection(request: ToggleRequest, store=Depends(get_store_client)):
    """Add or remove one opportunity from a batch selection."""
    model = await _selection_model(store, request)
    return model.toggle(request.opportunity_id)


@router.post("/selection/select-all", response_model=SelectionResult)
async def select_all_for_prescriber(request: SelectAllRequest, store=Depends(get_store_client)):
    """Select (or clear) every opportunity of one prescriber."""
    model = await _selection_model(store, request)
    return model.select_all_for_prescriber(request.prescriber_name)


# --- Direct send flows ---

def _get_flow(registry: FaxFlowRegistry, flow_id: str):
    flow = registry.get(flow_id)
    if flow is None:
        raise HTTPException(status_code=404, detail=f"Fax flow not found: {flow_id}")
    return flow


@router.post("/flows", response_model=FlowSnapshot, status_code=201)
async def open_flow(
    request: OpenFlowRequest,
    store=Depends(get_store_client),
    registry: FaxFlowRegistry = Depends(get_flow_registry),
):
    """Open a send flow for an opportunity and run preflight."""
    try:
        opportunity = await store.get_opportunity(request.opportunity_id)
    except OpportunityStoreError as e:
        raise store_http_error(e, "Could not load opportunity")

    flow = await registry.open(opportunity)
    return flow.snapshot()


@router.get("/flows/{flow_id}", response_model=FlowSnapshot)
async def get_flow(flow_id: str, registry: FaxFlowRegistry = Depends(get_flow_registry)):
    return _get_flow(registry, flow_id).snapshot()


@router.patch("/flows/{flow_id}", response_model=FlowSnapshot)
async def update_flow(
    flow_id: str,
    request: UpdateFlowRequest,
    registry: FaxFlowRegistry = Depends(get_flow_registry),
):
    """Edit the destination number or the NPI confirmation."""
    flow = _get_flow(registry, flow_id)
    if request.fax_number is not None and not flow.set_fax_number(request.fax_number):
        raise HTTPException(status_code=409, detail="Fax number cannot be changed once sending has started")
    if request.npi_confirmed is not None and not flow.set_npi_confirmed(request.npi_confirmed):
        raise HTTPException(status_code=409, detail="NPI confirmation cannot be changed once sending has started")
    return flow.snapshot()


@router.post("/flows/{flow_id}/send", response_model=SendResponse)
async def send_flow(
    flow_id: str,
    request: SendRequest,
    registry: FaxFlowRegistry = Depends(get_flow_registry),
):
    """
    Send the fax for an open flow.

    Disabled guards, volume warnings and transmission failures come back as
    outcome values; only an unknown flow is an HTTP error.
    """
    flow = _get_flow(registry, flow_id)
    outcome = await flow.send(acknowledge_volume_warning=request.acknowledge_volume_warning)
    return SendResponse(outcome=outcome, flow=flow.snapshot())


@router.delete("/flows/{flow_id}")
async def close_flow(flow_id: str, registry: FaxFlowRegistry = Depends(get_flow_registry)):
    """Close a flow, discarding local input. Refused while sending."""
    _get_flow(registry, flow_id)
    if not registry.discard(flow_id):
        raise HTTPException(status_code=409, detail="A fax is being sent; wait for it to finish")
    return {"flow_id": flow_id, "closed": True}
