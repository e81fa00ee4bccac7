"""Opportunity status progression rules.

Progression statuses only move forward (Not Submitted -> Submitted ->
Approved -> Completed). Denied and Didn't Work are outcomes that only a
reopen can leave; Flagged is a review hold that may be resolved to any
status. Moving back to Not Submitted always requires an explicit reopen.
"""
from backend.models.enums import OpportunityStatus
from backend.fax.exceptions import InvalidStatusTransition

ACTIONED_STATUSES = frozenset({
    OpportunityStatus.SUBMITTED,
    OpportunityStatus.APPROVED,
    OpportunityStatus.COMPLETED,
})

_PROGRESSION_RANK = {
    OpportunityStatus.NOT_SUBMITTED: 0,
    OpportunityStatus.SUBMITTED: 1,
    OpportunityStatus.APPROVED: 2,
    OpportunityStatus.COMPLETED: 3,
}

_CLOSED_OUTCOMES = frozenset({OpportunityStatus.DENIED, OpportunityStatus.DIDNT_WORK})


def is_actioned(status: OpportunityStatus) -> bool:
    """Whether landing in this status counts against the prescriber."""
    return status in ACTIONED_STATUSES


def validate_status_transition(
    current: OpportunityStatus,
    target: OpportunityStatus,
    reopen: bool = False,
) -> None:
    """
    Raise InvalidStatusTransition unless ``current -> target`` is allowed.

    Args:
        current: Status on record
        target: Requested status
        reopen: Explicit reopen action (the only way back to Not Submitted)
    """
    if current == target:
        return

    if target == OpportunityStatus.NOT_SUBMITTED:
        if not reopen:
            raise InvalidStatusTransition(
                f"Moving from '{current.value}' back to 'Not Submitted' requires reopening the opportunity"
            )
        return

    if reopen:
        raise InvalidStatusTransition("Reopen always returns an opportunity to 'Not Submitted'")

    if current in _CLOSED_OUTCOMES:
        raise InvalidStatusTransition(
            f"Opportunity is '{current.value}'; reopen it before changing status"
        )

    if current in _PROGRESSION_RANK and target in _PROGRESSION_RANK:
        if _PROGRESSION_RANK[target] < _PROGRESSION_RANK[current]:
            raise InvalidStatusTransition(
                f"Status cannot move backwards from '{current.value}' to '{target.value}'"
            )
