"""Prescriber Volume Safety Gate.

Intercepts every status change that lands in an actioned status (Submitted,
Approved, Completed) and checks how many distinct patients have already been
actioned against the opportunity's prescriber:

- at or over the block threshold: refused, no override in this flow
- at or over the warn threshold: held until the user explicitly proceeds
- otherwise: applied

The check runs before the status-changing call, never after it.
"""
from collections import OrderedDict
from typing import Optional
from uuid import uuid4

from pydantic import BaseModel

from backend.models.enums import GateDecisionStatus, GateVerdict, OpportunityStatus
from backend.models.opportunity import Opportunity, PrescriberVolumeStats
from backend.fax.exceptions import InvalidStatusTransition, OpportunityStoreError, user_message
from backend.fax.status_rules import is_actioned, validate_status_transition
from backend.config.logging_config import get_logger

logger = get_logger(__name__)

MAX_PENDING_OVERRIDES = 500

BLOCK_MESSAGE = "This prescriber has reached the block threshold. Please contact your administrator to proceed."
WARN_MESSAGE = "Consider spacing out submissions to this prescriber to avoid overwhelming their office."
STATS_UNAVAILABLE_MESSAGE = "Could not check prescriber volume. The status was not changed; please try again."
UPDATE_FAILED_MESSAGE = "Failed to update status. Please try again."


def evaluate_volume(stats: PrescriberVolumeStats) -> GateVerdict:
    """
    Classify prescriber volume.

    Thresholds are re-applied locally on top of the server flags, so a count
    at or past the block threshold always blocks.
    """
    unique = stats.unique_patients_actioned
    if stats.should_block or (stats.block_threshold is not None and unique >= stats.block_threshold):
        return GateVerdict.BLOCKED
    if stats.should_warn or (stats.warn_threshold > 0 and unique >= stats.warn_threshold):
        return GateVerdict.WARNED
    return GateVerdict.CLEAR


class VolumeAssessment(BaseModel):
    prescriber_name: str
    verdict: GateVerdict
    stats: PrescriberVolumeStats


class GateDecision(BaseModel):
    """What happened to a requested status change."""
    status: GateDecisionStatus
    opportunity_id: str
    target_status: OpportunityStatus
    gate_invoked: bool = False
    prescriber_name: Optional[str] = None
    stats: Optional[PrescriberVolumeStats] = None
    can_proceed: bool = False
    override_token: Optional[str] = None
    message: Optional[str] = None


class _PendingOverride(BaseModel):
    opportunity: Opportunity
    target_status: OpportunityStatus


class PrescriberVolumeGate:
    """Pre-commit gate for actioning status changes."""

    def __init__(self, store, audit=None):
        self.store = store
        self.audit = audit
        self._pending: "OrderedDict[str, _PendingOverride]" = OrderedDict()

    async def assess(self, prescriber_name: str) -> VolumeAssessment:
        """
        Fetch stats for a prescriber and classify them.

        Raises:
            OpportunityStoreError: If the stats lookup fails
        """
        stats = await self.store.get_prescriber_stats(prescriber_name)
        verdict = evaluate_volume(stats)
        logger.info(
            "Prescriber volume assessed",
            prescriber=prescriber_name,
            unique_patients=stats.unique_patients_actioned,
            warn_threshold=stats.warn_threshold,
            block_threshold=stats.block_threshold,
            verdict=verdict.value,
        )
        return VolumeAssessment(prescriber_name=prescriber_name, verdict=verdict, stats=stats)

    async def check_and_apply(
        self,
        opportunity: Opportunity,
        target_status: OpportunityStatus,
        reopen: bool = False,
    ) -> GateDecision:
        """
        Apply a status change, gating it when it lands in an actioned status.

        Args:
            opportunity: Current opportunity record
            target_status: Requested status
            reopen: Explicit reopen back to Not Submitted

        Returns:
            GateDecision; a WARNED decision carries an override token for proceed()
        """
        decision = GateDecision(
            status=GateDecisionStatus.REJECTED,
            opportunity_id=opportunity.opportunity_id,
            target_status=target_status,
            prescriber_name=opportunity.prescriber_name,
        )

        try:
            validate_status_transition(opportunity.status, target_status, reopen=reopen)
        except InvalidStatusTransition as e:
            decision.message = str(e)
            return decision

        if not is_actioned(target_status):
            return await self._apply(opportunity, target_status, decision)

        if not opportunity.prescriber_name:
            logger.info("No prescriber on record, applying without volume check",
                        opportunity_id=opportunity.opportunity_id)
            return await self._apply(opportunity, target_status, decision)

        decision.gate_invoked = True
        try:
            assessment = await self.assess(opportunity.prescriber_name)
        except OpportunityStoreError as e:
            logger.error("Prescriber stats lookup failed", opportunity_id=opportunity.opportunity_id, error=str(e))
            decision.status = GateDecisionStatus.FAILED
            decision.message = STATS_UNAVAILABLE_MESSAGE
            return decision

        decision.stats = assessment.stats

        if assessment.verdict == GateVerdict.BLOCKED:
            decision.status = GateDecisionStatus.BLOCKED
            decision.message = BLOCK_MESSAGE
            return decision

        if assessment.verdict == GateVerdict.WARNED:
            token = uuid4().hex
            self._remember(token, _PendingOverride(opportunity=opportunity, target_status=target_status))
            decision.status = GateDecisionStatus.WARNED
            decision.can_proceed = True
            decision.override_token = token
            decision.message = (
                f"You have actioned {assessment.stats.unique_patients_actioned} unique patients "
                f"to {opportunity.prescriber_name}. {WARN_MESSAGE}"
            )
            return decision

        return await self._apply(opportunity, target_status, decision)

    async def proceed(self, override_token: str) -> GateDecision:
        """
        Perform a warned status change after the user chose to proceed.

        The token is consumed on first use. The opportunity is reloaded and
        the status rules are checked again, so a change made since the
        warning (for example a Denied outcome) is not overwritten. Stats are
        read again too, so a prescriber that crossed the block threshold in
        the meantime is refused.
        """
        pending = self._pending.pop(override_token, None)
        if pending is None:
            return GateDecision(
                status=GateDecisionStatus.REJECTED,
                opportunity_id="",
                target_status=OpportunityStatus.SUBMITTED,
                message="This warning has already been handled or has expired.",
            )

        decision = GateDecision(
            status=GateDecisionStatus.REJECTED,
            opportunity_id=pending.opportunity.opportunity_id,
            target_status=pending.target_status,
            prescriber_name=pending.opportunity.prescriber_name,
            gate_invoked=True,
        )

        try:
            opportunity = await self.store.get_opportunity(pending.opportunity.opportunity_id)
        except OpportunityStoreError as e:
            logger.error("Could not reload opportunity for override", opportunity_id=decision.opportunity_id,
                         error=str(e))
            decision.status = GateDecisionStatus.FAILED
            decision.message = user_message(e, UPDATE_FAILED_MESSAGE)
            return decision

        try:
            if opportunity.status == pending.target_status:
                raise InvalidStatusTransition(f"Opportunity is already '{opportunity.status.value}'")
            validate_status_transition(opportunity.status, pending.target_status)
        except InvalidStatusTransition as e:
            logger.info(
                "Override no longer applicable",
                opportunity_id=opportunity.opportunity_id,
                current_status=opportunity.status.value,
                target_status=pending.target_status.value,
            )
            decision.message = str(e)
            return decision

        if not opportunity.prescriber_name:
            return await self._apply(opportunity, pending.target_status, decision)

        decision.prescriber_name = opportunity.prescriber_name
        try:
            assessment = await self.assess(opportunity.prescriber_name)
        except OpportunityStoreError as e:
            logger.error("Prescriber stats lookup failed", opportunity_id=opportunity.opportunity_id, error=str(e))
            decision.status = GateDecisionStatus.FAILED
            decision.message = STATS_UNAVAILABLE_MESSAGE
            return decision

        decision.stats = assessment.stats
        if assessment.verdict == GateVerdict.BLOCKED:
            decision.status = GateDecisionStatus.BLOCKED
            decision.message = BLOCK_MESSAGE
            return decision

        await self.record_override(opportunity, pending.target_status, assessment.stats)
        return await self._apply(opportunity, pending.target_status, decision)

    async def record_override(
        self,
        opportunity: Opportunity,
        target_status: OpportunityStatus,
        stats: PrescriberVolumeStats,
    ) -> None:
        """Log (and audit, when configured) a "proceed anyway" choice."""
        logger.warning(
            "Prescriber volume warning overridden",
            opportunity_id=opportunity.opportunity_id,
            prescriber=opportunity.prescriber_name,
            target_status=target_status.value,
            unique_patients=stats.unique_patients_actioned,
            warn_threshold=stats.warn_threshold,
        )
        if self.audit is None:
            return
        try:
            await self.audit.record_override(
                opportunity_id=opportunity.opportunity_id,
                prescriber_name=opportunity.prescriber_name or "",
                target_status=target_status,
                stats=stats,
            )
        except Exception as e:
            logger.error("Failed to audit override", opportunity_id=opportunity.opportunity_id, error=str(e))

    def _remember(self, token: str, pending: _PendingOverride) -> None:
        self._pending[token] = pending
        while len(self._pending) > MAX_PENDING_OVERRIDES:
            self._pending.popitem(last=False)

    async def _apply(
        self,
        opportunity: Opportunity,
        target_status: OpportunityStatus,
        decision: GateDecision,
    ) -> GateDecision:
        try:
            await self.store.update_status(opportunity.opportunity_id, target_status)
        except OpportunityStoreError as e:
            logger.error(
                "Status update failed",
                opportunity_id=opportunity.opportunity_id,
                target_status=target_status.value,
                error=str(e),
            )
            decision.status = GateDecisionStatus.FAILED
            decision.message = user_message(e, UPDATE_FAILED_MESSAGE)
            return decision

        opportunity.status = target_status
        decision.status = GateDecisionStatus.APPLIED
        decision.can_proceed = False
        decision.override_token = None
        logger.info(
            "Opportunity status updated",
            opportunity_id=opportunity.opportunity_id,
            status=target_status.value,
            gate_invoked=decision.gate_invoked,
        )
        return decision
