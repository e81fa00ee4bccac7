"""Preflight and send controller for direct fax transmission.

One FaxSendFlow per opened dialog. All state changes go through
``_transition``; the state value is the only thing callers should branch on.

    idle -> preflight_pending -> preflight_ready | preflight_blocked
    preflight_ready -> sending -> sent | send_failed -> preflight_ready
"""
import asyncio
from collections import OrderedDict
from typing import Dict, List, Optional, Tuple
from uuid import uuid4

from pydantic import BaseModel, Field

from backend.models.enums import FlowState, GateVerdict, OpportunityStatus, SendOutcomeStatus
from backend.models.opportunity import Opportunity, PreflightResult, PrescriberVolumeStats
from backend.fax.exceptions import InvalidFlowTransition, OpportunityStoreError, StoreNetworkError, user_message
from backend.fax.formatting import mask_fax_number
from backend.fax.safety_gate import BLOCK_MESSAGE, STATS_UNAVAILABLE_MESSAGE, WARN_MESSAGE, PrescriberVolumeGate
from backend.config.logging_config import get_logger

logger = get_logger(__name__)

SEND_FAILED_MESSAGE = "Fax failed to send. Please try again."
PREFLIGHT_FAILED_MESSAGE = "Could not validate this fax. Close and reopen to try again."
MAX_OPEN_FLOWS = 200

_ALLOWED_TRANSITIONS: Dict[FlowState, Tuple[FlowState, ...]] = {
    FlowState.IDLE: (FlowState.PREFLIGHT_PENDING,),
    FlowState.PREFLIGHT_PENDING: (FlowState.PREFLIGHT_READY, FlowState.PREFLIGHT_BLOCKED, FlowState.IDLE),
    FlowState.PREFLIGHT_READY: (FlowState.SENDING, FlowState.PREFLIGHT_BLOCKED, FlowState.IDLE),
    FlowState.PREFLIGHT_BLOCKED: (FlowState.IDLE,),
    FlowState.SENDING: (FlowState.SENT, FlowState.SEND_FAILED),
    FlowState.SEND_FAILED: (FlowState.PREFLIGHT_READY,),
    FlowState.SENT: (FlowState.IDLE,),
}

# Local input is frozen from here on
_LOCKED_STATES = (FlowState.SENDING, FlowState.SENT)


class SendOutcome(BaseModel):
    """Result of a send attempt."""
    status: SendOutcomeStatus
    state: FlowState
    message: Optional[str] = None
    fax_id: Optional[str] = None
    reasons: List[str] = Field(default_factory=list)
    stats: Optional[PrescriberVolumeStats] = None


class FlowSnapshot(BaseModel):
    flow_id: str
    opportunity_id: str
    opportunity_status: OpportunityStatus
    prescriber_name: Optional[str] = None
    prescriber_npi: Optional[str] = None
    state: FlowState
    fax_number: str = ""
    npi_confirmed: bool = False
    can_send: bool = False
    warnings: List[str] = Field(default_factory=list)
    error: Optional[str] = None
    daily_count: Optional[int] = None
    daily_limit: Optional[int] = None
    fax_id: Optional[str] = None


class FaxSendFlow:
    """
    Controller for one opportunity's fax dialog.

    Args:
        opportunity: Opportunity being faxed; its status is mirrored locally
            after the store confirms a send
        store: Opportunity store client (preflight, send_fax, stats)
        gate: Prescriber volume gate consulted before transmitting
        history: Optional fax history, entries are marked submitted on success
        audit: Optional audit repository for transmission outcomes
    """

    def __init__(
        self,
        opportunity: Opportunity,
        store,
        gate: PrescriberVolumeGate,
        history=None,
        audit=None,
        flow_id: Optional[str] = None,
    ):
        self.flow_id = flow_id or str(uuid4())
        self.opportunity = opportunity
        self.store = store
        self.gate = gate
        self.history = history
        self.audit = audit

        self.state = FlowState.IDLE
        self.transitions: List[Tuple[FlowState, FlowState]] = []
        self.preflight_result: Optional[PreflightResult] = None
        self.warnings: List[str] = []
        self.error: Optional[str] = None
        self.fax_number = ""
        self.npi_confirmed = False
        self.fax_id: Optional[str] = None
        self._send_lock = asyncio.Lock()

    def _transition(self, target: FlowState) -> None:
        if target not in _ALLOWED_TRANSITIONS[self.state]:
            raise InvalidFlowTransition(f"Cannot move fax flow from {self.state.value} to {target.value}")
        logger.debug(
            "Fax flow transition",
            flow_id=self.flow_id,
            from_state=self.state.value,
            to_state=target.value,
        )
        self.transitions.append((self.state, target))
        self.state = target

    def _block(self, warnings: List[str]) -> None:
        self.warnings = warnings
        self._transition(FlowState.PREFLIGHT_BLOCKED)

    async def open(self) -> FlowSnapshot:
        """Run preflight. Always a fresh remote call; results are never cached."""
        self._transition(FlowState.PREFLIGHT_PENDING)
        self.preflight_result = None
        self.warnings = []
        self.error = None

        if self.opportunity.status != OpportunityStatus.NOT_SUBMITTED:
            self._block([
                f"This opportunity is already {self.opportunity.status.value}. "
                f"Faxes can only be sent for Not Submitted opportunities."
            ])
            return self.snapshot()

        try:
            result = await self.store.preflight(self.opportunity.opportunity_id, self.opportunity.prescriber_npi)
        except StoreNetworkError as e:
            logger.warning("Fax preflight unreachable", flow_id=self.flow_id, error=str(e))
            outcome: Optional[PreflightResult] = None
            warnings = [user_message(e, PREFLIGHT_FAILED_MESSAGE)]
        except OpportunityStoreError as e:
            logger.warning("Fax preflight rejected by store", flow_id=self.flow_id, status_code=e.status_code)
            outcome = None
            warnings = [user_message(e, PREFLIGHT_FAILED_MESSAGE)]
        else:
            outcome = result
            warnings = list(result.warnings)

        # Flow was closed while preflight was in flight
        if self.state != FlowState.PREFLIGHT_PENDING:
            return self.snapshot()

        if outcome is None or not outcome.can_send:
            self.preflight_result = outcome
            self._block(warnings or ["Sending is not permitted for this opportunity."])
            logger.info("Fax preflight blocked", flow_id=self.flow_id, warnings=len(self.warnings))
            return self.snapshot()

        self.preflight_result = outcome
        self.warnings = warnings
        if not self.fax_number:
            self.fax_number = (outcome.saved_fax_number or self.opportunity.prescriber_fax or "").strip()
        self._transition(FlowState.PREFLIGHT_READY)
        logger.info(
            "Fax preflight ready",
            flow_id=self.flow_id,
            opportunity_id=self.opportunity.opportunity_id,
            daily_count=outcome.daily_count,
            daily_limit=outcome.daily_limit,
        )
        return self.snapshot()

    @property
    def busy(self) -> bool:
        """True from the moment send() starts checking until it returns."""
        return self._send_lock.locked() or self.state == FlowState.SENDING

    @property
    def inputs_locked(self) -> bool:
        return self.busy or self.state in _LOCKED_STATES

    def set_fax_number(self, value: str) -> bool:
        if self.inputs_locked:
            return False
        self.fax_number = (value or "").strip()
        return True

    def set_npi_confirmed(self, confirmed: bool) -> bool:
        if self.inputs_locked:
            return False
        self.npi_confirmed = bool(confirmed)
        return True

    def _input_reasons(self) -> List[str]:
        reasons = []
        if self.state != FlowState.PREFLIGHT_READY:
            reasons.append(f"Fax flow is {self.state.value.replace('_', ' ')}")
        if not self.fax_number:
            reasons.append("Enter the prescriber fax number")
        if not self.npi_confirmed:
            reasons.append("Confirm the prescriber NPI matches the hardcopy")
        return reasons

    def disabled_reasons(self) -> List[str]:
        reasons = self._input_reasons()
        if self._send_lock.locked():
            reasons.append("A send is already in progress")
        return reasons

    @property
    def can_send(self) -> bool:
        return not self.disabled_reasons()

    def _outcome(self, status: SendOutcomeStatus, **kwargs) -> SendOutcome:
        return SendOutcome(status=status, state=self.state, **kwargs)

    async def send(self, acknowledge_volume_warning: bool = False) -> SendOutcome:
        """
        Check prescriber volume, then issue exactly one transmission.

        Guard failures come back as a ``disabled`` outcome, not an exception.
        """
        reasons = self.disabled_reasons()
        if reasons:
            return self._outcome(SendOutcomeStatus.DISABLED, reasons=reasons)

        async with self._send_lock:
            gate_outcome, overridden = await self._check_volume(acknowledge_volume_warning)
            if gate_outcome is not None:
                return gate_outcome
            reasons = self._input_reasons()
            if reasons:
                return self._outcome(SendOutcomeStatus.DISABLED, reasons=reasons)
            return await self._transmit(overridden)

    async def _check_volume(
        self, acknowledged: bool
    ) -> Tuple[Optional[SendOutcome], Optional[PrescriberVolumeStats]]:
        """
        Returns:
            (outcome that ends the send, stats of an acknowledged warning)
        """
        prescriber = self.opportunity.prescriber_name
        if not prescriber:
            return None, None

        try:
            assessment = await self.gate.assess(prescriber)
        except OpportunityStoreError as e:
            logger.error("Prescriber stats lookup failed before send", flow_id=self.flow_id, error=str(e))
            self.error = STATS_UNAVAILABLE_MESSAGE
            return self._outcome(SendOutcomeStatus.FAILED, message=STATS_UNAVAILABLE_MESSAGE), None

        if assessment.verdict == GateVerdict.BLOCKED:
            self._block([BLOCK_MESSAGE])
            return self._outcome(SendOutcomeStatus.BLOCKED, message=BLOCK_MESSAGE, stats=assessment.stats), None

        if assessment.verdict == GateVerdict.WARNED:
            if not acknowledged:
                message = (
                    f"You have actioned {assessment.stats.unique_patients_actioned} unique patients "
                    f"to {prescriber}. {WARN_MESSAGE}"
                )
                outcome = self._outcome(
                    SendOutcomeStatus.NEEDS_ACKNOWLEDGEMENT, message=message, stats=assessment.stats
                )
                return outcome, None
            return None, assessment.stats

        return None, None

    async def _transmit(self, overridden: Optional[PrescriberVolumeStats] = None) -> SendOutcome:
        self._transition(FlowState.SENDING)
        self.error = None
        opportunity_id = self.opportunity.opportunity_id
        logger.info(
            "Sending fax",
            flow_id=self.flow_id,
            opportunity_id=opportunity_id,
            fax=mask_fax_number(self.fax_number),
        )

        try:
            result = await self.store.send_fax(opportunity_id, self.fax_number, self.opportunity.prescriber_npi)
        except OpportunityStoreError as e:
            message = user_message(e, SEND_FAILED_MESSAGE)
            self._transition(FlowState.SEND_FAILED)
            logger.warning("Fax send failed", flow_id=self.flow_id, opportunity_id=opportunity_id, error=str(e))
            await self._audit_transmission("failed", None, message)
            self.error = message
            self._transition(FlowState.PREFLIGHT_READY)
            return self._outcome(SendOutcomeStatus.FAILED, message=message)

        self.fax_id = result.fax_id
        self._transition(FlowState.SENT)
        # Store moved the status as part of the send
        self.opportunity.status = OpportunityStatus.SUBMITTED
        if self.history is not None:
            self.history.mark_submitted_for_opportunity(opportunity_id)
        logger.info("Fax sent", flow_id=self.flow_id, opportunity_id=opportunity_id, fax_id=result.fax_id)
        # Overrides are only audited for sends that actually went out
        if overridden is not None:
            await self.gate.record_override(self.opportunity, OpportunityStatus.SUBMITTED, overridden)
        await self._audit_transmission("sent", result.fax_id, result.message)
        return self._outcome(SendOutcomeStatus.SENT, fax_id=result.fax_id, message=result.message)

    async def _audit_transmission(self, outcome: str, fax_id: Optional[str], message: Optional[str]) -> None:
        if self.audit is None:
            return
        try:
            await self.audit.record_transmission(
                opportunity_id=self.opportunity.opportunity_id,
                prescriber_name=self.opportunity.prescriber_name or "",
                fax_number=self.fax_number,
                outcome=outcome,
                fax_id=fax_id,
                message=message,
            )
        except Exception as e:
            logger.error("Failed to audit fax transmission", flow_id=self.flow_id, error=str(e))

    def cancel(self) -> bool:
        """Close the dialog. Refused while a send is being checked or transmitted."""
        if self.busy:
            return False
        if self.state != FlowState.IDLE:
            self._transition(FlowState.IDLE)
        self.fax_number = ""
        self.npi_confirmed = False
        self.warnings = []
        self.error = None
        self.preflight_result = None
        return True

    def snapshot(self) -> FlowSnapshot:
        preflight = self.preflight_result
        return FlowSnapshot(
            flow_id=self.flow_id,
            opportunity_id=self.opportunity.opportunity_id,
            opportunity_status=self.opportunity.status,
            prescriber_name=self.opportunity.prescriber_name,
            prescriber_npi=self.opportunity.prescriber_npi,
            state=self.state,
            fax_number=self.fax_number,
            npi_confirmed=self.npi_confirmed,
            can_send=self.can_send,
            warnings=list(self.warnings),
            error=self.error,
            daily_count=preflight.daily_count if preflight else None,
            daily_limit=preflight.daily_limit if preflight else None,
            fax_id=self.fax_id,
        )


class FaxFlowRegistry:
    """
    Open fax flows by id. Flows share no state with each other.

    Holds at most ``max_flows``; opening one more evicts the oldest flows
    that are not mid-send.
    """

    def __init__(self, store, gate: PrescriberVolumeGate, history=None, audit=None, max_flows: int = MAX_OPEN_FLOWS):
        self.store = store
        self.gate = gate
        self.history = history
        self.audit = audit
        self.max_flows = max_flows
        self._flows: "OrderedDict[str, FaxSendFlow]" = OrderedDict()

    def __len__(self) -> int:
        return len(self._flows)

    async def open(self, opportunity: Opportunity) -> FaxSendFlow:
        flow = FaxSendFlow(opportunity, self.store, self.gate, history=self.history, audit=self.audit)
        self._flows[flow.flow_id] = flow
        self._evict(keep=flow.flow_id)
        await flow.open()
        return flow

    def get(self, flow_id: str) -> Optional[FaxSendFlow]:
        return self._flows.get(flow_id)

    def discard(self, flow_id: str) -> bool:
        """Cancel and forget a flow. Returns False if unknown or mid-send."""
        flow = self._flows.get(flow_id)
        if flow is None or not flow.cancel():
            return False
        del self._flows[flow_id]
        return True

    def _evict(self, keep: str) -> None:
        excess = len(self._flows) - self.max_flows
        if excess <= 0:
            return
        for flow_id in list(self._flows):
            if excess <= 0:
                break
            flow = self._flows[flow_id]
            if flow.busy or flow_id == keep:
                continue
            del self._flows[flow_id]
            excess -= 1
            logger.debug("Fax flow evicted", flow_id=flow_id, state=flow.state.value)
