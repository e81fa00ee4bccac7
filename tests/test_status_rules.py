"""Tests for opportunity status progression."""
import pytest

from backend.fax.exceptions import InvalidStatusTransition
from backend.fax.status_rules import is_actioned, validate_status_transition
from backend.models.enums import OpportunityStatus as S


class TestStatusTransitions:

    @pytest.mark.parametrize("current,target", [
        (S.NOT_SUBMITTED, S.SUBMITTED),
        (S.SUBMITTED, S.APPROVED),
        (S.APPROVED, S.COMPLETED),
        (S.NOT_SUBMITTED, S.COMPLETED),
        (S.SUBMITTED, S.DENIED),
        (S.NOT_SUBMITTED, S.FLAGGED),
        (S.FLAGGED, S.NOT_SUBMITTED),
        (S.FLAGGED, S.APPROVED),
        (S.SUBMITTED, S.SUBMITTED),
    ])
    def test_allowed(self, current, target):
        if target == S.NOT_SUBMITTED and current != target:
            validate_status_transition(current, target, reopen=True)
        else:
            validate_status_transition(current, target)

    @pytest.mark.parametrize("current,target", [
        (S.APPROVED, S.SUBMITTED),
        (S.COMPLETED, S.APPROVED),
        (S.DENIED, S.SUBMITTED),
        (S.DIDNT_WORK, S.APPROVED),
    ])
    def test_backwards_or_closed_rejected(self, current, target):
        with pytest.raises(InvalidStatusTransition):
            validate_status_transition(current, target)

    def test_back_to_not_submitted_needs_reopen(self):
        with pytest.raises(InvalidStatusTransition):
            validate_status_transition(S.SUBMITTED, S.NOT_SUBMITTED)
        validate_status_transition(S.SUBMITTED, S.NOT_SUBMITTED, reopen=True)
        validate_status_transition(S.DENIED, S.NOT_SUBMITTED, reopen=True)

    def test_reopen_only_targets_not_submitted(self):
        with pytest.raises(InvalidStatusTransition):
            validate_status_transition(S.DENIED, S.SUBMITTED, reopen=True)

    def test_actioned_statuses(self):
        assert {s for s in S if is_actioned(s)} == {S.SUBMITTED, S.APPROVED, S.COMPLETED}
