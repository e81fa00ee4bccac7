"""Batch selection for one patient's opportunities.

A batch document covers several opportunities for exactly one patient and
exactly one prescriber. Batch selection is therefore only exposed while the
dashboard is grouped by patient, and a selection can never mix prescribers.
"""
from collections import OrderedDict
from typing import Dict, Iterable, List, Optional, Sequence

from pydantic import BaseModel, Field

from backend.models.enums import DocumentMode, GroupingContext
from backend.models.opportunity import Opportunity
from backend.fax.exceptions import DocumentScopeError

UNKNOWN_PRESCRIBER = "Unknown Prescriber"


def prescriber_key(opportunity: Opportunity) -> str:
    return opportunity.prescriber_name or UNKNOWN_PRESCRIBER


def group_by_prescriber(opportunities: Iterable[Opportunity]) -> "OrderedDict[str, List[Opportunity]]":
    """Group opportunities by prescriber, keeping first-seen order."""
    groups: "OrderedDict[str, List[Opportunity]]" = OrderedDict()
    for opp in opportunities:
        groups.setdefault(prescriber_key(opp), []).append(opp)
    return groups


def batch_mode_available(grouping_context: GroupingContext, opportunity_count: int) -> bool:
    """Batch mode needs the patient grouping and more than one opportunity."""
    return grouping_context == GroupingContext.PATIENT and opportunity_count > 1


def validate_document_scope(opportunities: Sequence[Opportunity], mode: DocumentMode) -> None:
    """
    Reject opportunity sets that cannot share one document.

    Raises:
        DocumentScopeError: empty set, several patients, several prescribers,
            or a single-mode request carrying more than one opportunity
    """
    if not opportunities:
        raise DocumentScopeError("A fax document needs at least one opportunity")

    patients = {o.patient_id for o in opportunities}
    if len(patients) > 1:
        raise DocumentScopeError("A fax document may only cover one patient")

    prescribers = {prescriber_key(o) for o in opportunities}
    if len(prescribers) > 1:
        raise DocumentScopeError("A fax document may only cover one prescriber")

    ids = [o.opportunity_id for o in opportunities]
    if len(set(ids)) != len(ids):
        raise DocumentScopeError("Duplicate opportunity in fax document")

    if mode == DocumentMode.SINGLE and len(opportunities) != 1:
        raise DocumentScopeError("Single mode takes exactly one opportunity")


class SelectionResult(BaseModel):
    """Outcome of a selection action, as shown to the user."""
    accepted: bool
    selected_ids: List[str] = Field(default_factory=list)
    selected_prescriber: Optional[str] = None
    notice: Optional[str] = None


class BatchSelectionModel:
    """Interactive multi-select over one patient's opportunities."""

    def __init__(self, opportunities: Sequence[Opportunity], selected_ids: Iterable[str] = ()):
        patients = {o.patient_id for o in opportunities}
        if len(patients) > 1:
            raise DocumentScopeError("Batch selection works on a single patient's opportunities")

        self._by_id: Dict[str, Opportunity] = OrderedDict((o.opportunity_id, o) for o in opportunities)
        self._groups = group_by_prescriber(opportunities)
        self._selected: List[str] = []

        # Restore a previous selection, keeping the single-prescriber rule
        for opp_id in selected_ids:
            if opp_id in self._by_id and opp_id not in self._selected:
                if self._selected and self.selected_prescriber != prescriber_key(self._by_id[opp_id]):
                    continue
                self._selected.append(opp_id)

    @property
    def groups(self) -> "OrderedDict[str, List[Opportunity]]":
        return self._groups

    @property
    def selected_ids(self) -> List[str]:
        return list(self._selected)

    @property
    def selected_opportunities(self) -> List[Opportunity]:
        return [self._by_id[i] for i in self._selected]

    @property
    def selected_prescriber(self) -> Optional[str]:
        if not self._selected:
            return None
        return prescriber_key(self._by_id[self._selected[0]])

    def _result(self, accepted: bool, notice: Optional[str] = None) -> SelectionResult:
        return SelectionResult(
            accepted=accepted,
            selected_ids=self.selected_ids,
            selected_prescriber=self.selected_prescriber,
            notice=notice,
        )

    def toggle(self, opportunity_id: str) -> SelectionResult:
        """Add or remove one opportunity; cross-prescriber additions are refused."""
        opp = self._by_id.get(opportunity_id)
        if opp is None:
            return self._result(False, "That opportunity is not part of this patient's list")

        if opportunity_id in self._selected:
            self._selected.remove(opportunity_id)
            return self._result(True)

        current = self.selected_prescriber
        if current is not None and current != prescriber_key(opp):
            return self._result(
                False,
                f"Batch faxes can only include one prescriber. Clear the selection for "
                f"{current} before adding opportunities for {prescriber_key(opp)}.",
            )

        self._selected.append(opportunity_id)
        return self._result(True)

    def select_all_for_prescriber(self, prescriber_name: str) -> SelectionResult:
        """Select every opportunity of a prescriber, or clear if already selected."""
        group = self._groups.get(prescriber_name)
        if not group:
            return self._result(False, f"No opportunities for {prescriber_name}")

        group_ids = [o.opportunity_id for o in group]
        if set(group_ids) == set(self._selected):
            self._selected = []
        else:
            self._selected = group_ids
        return self._result(True)

    def clear(self) -> SelectionResult:
        self._selected = []
        return self._result(True)
