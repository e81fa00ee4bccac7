"""Tests for the prescriber volume safety gate."""
import pytest

from backend.fax.exceptions import OpportunityStoreError, StoreNetworkError
from backend.fax.safety_gate import PrescriberVolumeGate, evaluate_volume
from backend.models.enums import GateDecisionStatus, GateVerdict, OpportunityStatus
from backend.models.opportunity import PrescriberVolumeStats

from tests.conftest import FakeOpportunityStore, make_opportunity


def _stats(unique, warn=25, block=None, should_warn=None, should_block=None):
    return PrescriberVolumeStats(
        prescriber_name="Dr. Jane Smith",
        unique_patients_actioned=unique,
        total_opps_actioned=unique,
        warn_threshold=warn,
        block_threshold=block,
        should_warn=unique >= warn if should_warn is None else should_warn,
        should_block=(block is not None and unique >= block) if should_block is None else should_block,
    )


@pytest.fixture
def store(opportunity):
    return FakeOpportunityStore([opportunity])


@pytest.fixture
def gate(store, fake_audit):
    return PrescriberVolumeGate(store, audit=fake_audit)


class TestEvaluateVolume:

    def test_clear_below_warn(self):
        assert evaluate_volume(_stats(10)) == GateVerdict.CLEAR

    def test_warned_at_threshold(self):
        assert evaluate_volume(_stats(25)) == GateVerdict.WARNED

    def test_blocked_at_threshold(self):
        assert evaluate_volume(_stats(30, block=30)) == GateVerdict.BLOCKED

    def test_counts_block_even_when_flags_lag(self):
        stats = _stats(31, block=30, should_warn=False, should_block=False)
        assert evaluate_volume(stats) == GateVerdict.BLOCKED

    def test_server_flag_blocks(self):
        assert evaluate_volume(_stats(5, should_block=True)) == GateVerdict.BLOCKED

    def test_monotone_in_unique_patients(self):
        order = {GateVerdict.CLEAR: 0, GateVerdict.WARNED: 1, GateVerdict.BLOCKED: 2}
        verdicts = [evaluate_volume(_stats(n, warn=25, block=30)) for n in range(0, 60)]
        ranks = [order[v] for v in verdicts]

        assert ranks == sorted(ranks)
        assert all(v == GateVerdict.BLOCKED for v in verdicts[30:])


class TestCheckAndApply:

    @pytest.mark.asyncio
    async def test_clear_applies_update(self, gate, store, opportunity):
        store.stats["Dr. Jane Smith"] = _stats(3)

        decision = await gate.check_and_apply(opportunity, OpportunityStatus.SUBMITTED)

        assert decision.status == GateDecisionStatus.APPLIED
        assert decision.gate_invoked is True
        assert store.calls_named("update_status") == [("update_status", "OPP-1", OpportunityStatus.SUBMITTED)]
        assert opportunity.status == OpportunityStatus.SUBMITTED

    @pytest.mark.asyncio
    async def test_warned_then_proceed_applies_once(self, gate, store, opportunity, fake_audit):
        store.stats["Dr. Jane Smith"] = _stats(26, warn=25)

        decision = await gate.check_and_apply(opportunity, OpportunityStatus.SUBMITTED)

        assert decision.status == GateDecisionStatus.WARNED
        assert decision.can_proceed is True
        assert decision.override_token
        assert "26 unique patients" in decision.message
        assert store.calls_named("update_status") == []

        proceeded = await gate.proceed(decision.override_token)

        assert proceeded.status == GateDecisionStatus.APPLIED
        assert len(store.calls_named("update_status")) == 1
        assert len(fake_audit.overrides) == 1
        assert fake_audit.overrides[0]["opportunity_id"] == "OPP-1"

        again = await gate.proceed(decision.override_token)
        assert again.status == GateDecisionStatus.REJECTED
        assert len(store.calls_named("update_status")) == 1

    @pytest.mark.asyncio
    async def test_blocked_has_no_override(self, gate, store, opportunity):
        store.stats["Dr. Jane Smith"] = _stats(31, warn=25, block=30)

        decision = await gate.check_and_apply(opportunity, OpportunityStatus.SUBMITTED)

        assert decision.status == GateDecisionStatus.BLOCKED
        assert decision.can_proceed is False
        assert decision.override_token is None
        assert store.calls_named("update_status") == []
        assert opportunity.status == OpportunityStatus.NOT_SUBMITTED

    @pytest.mark.asyncio
    async def test_proceed_rechecks_block(self, gate, store, opportunity, fake_audit):
        store.stats["Dr. Jane Smith"] = _stats(28, warn=25, block=30)
        decision = await gate.check_and_apply(opportunity, OpportunityStatus.SUBMITTED)
        assert decision.status == GateDecisionStatus.WARNED

        store.stats["Dr. Jane Smith"] = _stats(30, warn=25, block=30)
        proceeded = await gate.proceed(decision.override_token)

        assert proceeded.status == GateDecisionStatus.BLOCKED
        assert store.calls_named("update_status") == []
        assert fake_audit.overrides == []

    @pytest.mark.asyncio
    async def test_stats_failure_fails_closed(self, gate, store, opportunity):
        store.stats_error = StoreNetworkError("Load prescriber stats timed out")

        decision = await gate.check_and_apply(opportunity, OpportunityStatus.APPROVED)

        assert decision.status == GateDecisionStatus.FAILED
        assert decision.message
        assert store.calls_named("update_status") == []

    @pytest.mark.asyncio
    async def test_non_actioned_target_skips_gate(self, gate, store, opportunity):
        decision = await gate.check_and_apply(opportunity, OpportunityStatus.FLAGGED)

        assert decision.status == GateDecisionStatus.APPLIED
        assert decision.gate_invoked is False
        assert store.calls_named("get_prescriber_stats") == []

    @pytest.mark.asyncio
    async def test_missing_prescriber_applies_directly(self, fake_audit):
        opp = make_opportunity("OPP-7", prescriber_name=None)
        store = FakeOpportunityStore([opp])
        gate = PrescriberVolumeGate(store, audit=fake_audit)

        decision = await gate.check_and_apply(opp, OpportunityStatus.SUBMITTED)

        assert decision.status == GateDecisionStatus.APPLIED
        assert store.calls_named("get_prescriber_stats") == []

    @pytest.mark.asyncio
    async def test_backwards_transition_rejected(self, gate, store):
        opp = make_opportunity("OPP-1", status="Approved")

        decision = await gate.check_and_apply(opp, OpportunityStatus.SUBMITTED)

        assert decision.status == GateDecisionStatus.REJECTED
        assert store.calls == []

    @pytest.mark.asyncio
    async def test_reopen_goes_back_to_not_submitted(self, gate, store):
        opp = make_opportunity("OPP-1", status="Denied")

        decision = await gate.check_and_apply(opp, OpportunityStatus.NOT_SUBMITTED, reopen=True)

        assert decision.status == GateDecisionStatus.APPLIED
        assert decision.gate_invoked is False

    @pytest.mark.asyncio
    async def test_update_failure_uses_server_reason(self, gate, store, opportunity):
        store.update_error = OpportunityStoreError("bad", status_code=409, server_reason="Opportunity is locked")

        decision = await gate.check_and_apply(opportunity, OpportunityStatus.FLAGGED)

        assert decision.status == GateDecisionStatus.FAILED
        assert decision.message == "Opportunity is locked"
        assert opportunity.status == OpportunityStatus.NOT_SUBMITTED

    @pytest.mark.asyncio
    async def test_unknown_token_rejected(self, gate):
        decision = await gate.proceed("no-such-token")
        assert decision.status == GateDecisionStatus.REJECTED


class TestProceedRevalidates:

    @pytest.mark.asyncio
    async def test_outcome_recorded_after_warning_is_kept(self, gate, store, fake_audit):
        store.opportunities["OPP-1"].status = OpportunityStatus.SUBMITTED
        submitted = store.opportunities["OPP-1"].model_copy(deep=True)
        store.stats["Dr. Jane Smith"] = _stats(26, warn=25)
        warned = await gate.check_and_apply(submitted, OpportunityStatus.APPROVED)
        assert warned.status == GateDecisionStatus.WARNED

        denied = await gate.check_and_apply(submitted, OpportunityStatus.DENIED)
        assert denied.status == GateDecisionStatus.APPLIED

        proceeded = await gate.proceed(warned.override_token)

        assert proceeded.status == GateDecisionStatus.REJECTED
        assert proceeded.opportunity_id == "OPP-1"
        assert store.opportunities["OPP-1"].status == OpportunityStatus.DENIED
        assert store.calls_named("update_status") == [("update_status", "OPP-1", OpportunityStatus.DENIED)]
        assert fake_audit.overrides == []

    @pytest.mark.asyncio
    async def test_already_at_target_is_rejected(self, gate, store, opportunity, fake_audit):
        store.stats["Dr. Jane Smith"] = _stats(26, warn=25)
        warned = await gate.check_and_apply(opportunity, OpportunityStatus.SUBMITTED)
        store.opportunities["OPP-1"].status = OpportunityStatus.SUBMITTED

        proceeded = await gate.proceed(warned.override_token)

        assert proceeded.status == GateDecisionStatus.REJECTED
        assert store.calls_named("update_status") == []
        assert fake_audit.overrides == []

    @pytest.mark.asyncio
    async def test_reload_failure_fails_without_update(self, gate, store, opportunity):
        store.stats["Dr. Jane Smith"] = _stats(26, warn=25)
        warned = await gate.check_and_apply(opportunity, OpportunityStatus.SUBMITTED)
        del store.opportunities["OPP-1"]

        proceeded = await gate.proceed(warned.override_token)

        assert proceeded.status == GateDecisionStatus.FAILED
        assert store.calls_named("update_status") == []
