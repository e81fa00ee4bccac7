"""Pytest fixtures for the test suite."""
import sys
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import pytest

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from backend.fax.exceptions import OpportunityStoreError  # noqa: E402
from backend.models.enums import OpportunityStatus  # noqa: E402
from backend.models.opportunity import (  # noqa: E402
    Opportunity, PatientSummary, PharmacyProfile, PreflightResult, PrescriberSummary,
    PrescriberVolumeStats, SendResult,
)

GENERATED_AT = datetime(2026, 1, 15, 9, 30, tzinfo=timezone.utc)


class FakeOpportunityStore:
    """In-memory stand-in for the opportunity store client."""

    def __init__(self, opportunities=(), pharmacy: Optional[PharmacyProfile] = None):
        self.opportunities: Dict[str, Opportunity] = {o.opportunity_id: o for o in opportunities}
        self.pharmacy = pharmacy or PharmacyProfile()
        self.stats: Dict[str, PrescriberVolumeStats] = {}
        self.preflight_result = PreflightResult(can_send=True, daily_count=3, daily_limit=50)
        self.preflight_error: Optional[Exception] = None
        self.stats_error: Optional[Exception] = None
        self.send_error: Optional[Exception] = None
        self.update_error: Optional[Exception] = None
        self.calls: List[Tuple] = []

    def calls_named(self, name: str) -> List[Tuple]:
        return [c for c in self.calls if c[0] == name]

    async def get_opportunity(self, opportunity_id: str) -> Opportunity:
        self.calls.append(("get_opportunity", opportunity_id))
        if opportunity_id not in self.opportunities:
            raise OpportunityStoreError("Opportunity not found", status_code=404, server_reason="Opportunity not found")
        return self.opportunities[opportunity_id].model_copy(deep=True)

    async def list_patient_opportunities(self, patient_id: str) -> List[Opportunity]:
        self.calls.append(("list_patient_opportunities", patient_id))
        return [o.model_copy(deep=True) for o in self.opportunities.values() if o.patient_id == patient_id]

    async def get_pharmacy_profile(self) -> PharmacyProfile:
        return self.pharmacy

    async def get_prescriber_stats(self, prescriber_name: str) -> PrescriberVolumeStats:
        self.calls.append(("get_prescriber_stats", prescriber_name))
        if self.stats_error is not None:
            raise self.stats_error
        return self.stats.get(prescriber_name, PrescriberVolumeStats(prescriber_name=prescriber_name))

    async def preflight(self, opportunity_id: str, prescriber_npi: Optional[str]) -> PreflightResult:
        self.calls.append(("preflight", opportunity_id, prescriber_npi))
        if self.preflight_error is not None:
            raise self.preflight_error
        return self.preflight_result

    async def send_fax(self, opportunity_id: str, fax_number: str, prescriber_npi: Optional[str]) -> SendResult:
        self.calls.append(("send_fax", opportunity_id, fax_number, prescriber_npi))
        if self.send_error is not None:
            raise self.send_error
        if opportunity_id in self.opportunities:
            self.opportunities[opportunity_id].status = OpportunityStatus.SUBMITTED
        return SendResult(success=True, fax_id="fax-001", status=OpportunityStatus.SUBMITTED)

    async def update_status(self, opportunity_id: str, status: OpportunityStatus) -> dict:
        self.calls.append(("update_status", opportunity_id, status))
        if self.update_error is not None:
            raise self.update_error
        if opportunity_id in self.opportunities:
            self.opportunities[opportunity_id].status = status
        return {"success": True}

    async def update_notes(self, opportunity_id: str, notes: str) -> dict:
        self.calls.append(("update_notes", opportunity_id, notes))
        if opportunity_id in self.opportunities:
            self.opportunities[opportunity_id].staff_notes = notes
        return {"success": True}


class FakeAuditRepository:
    """Collects audit calls instead of writing them to a database."""

    def __init__(self):
        self.overrides: List[dict] = []
        self.transmissions: List[dict] = []

    async def record_override(self, **kwargs) -> str:
        self.overrides.append(kwargs)
        return f"override-{len(self.overrides)}"

    async def record_transmission(self, **kwargs) -> str:
        self.transmissions.append(kwargs)
        return f"transmission-{len(self.transmissions)}"


def make_opportunity(opportunity_id: str, **overrides) -> Opportunity:
    data = {
        "opportunity_id": opportunity_id,
        "patient_id": "P-1001",
        "opportunity_type": "generic_substitution",
        "current_ndc": "00093-7180-56",
        "current_drug_name": "Lipitor 20mg Tablet",
        "recommended_drug_name": "Atorvastatin 20mg Tablet",
        "clinical_rationale": "Therapeutically equivalent generic with lower patient copay.",
        "potential_margin_gain": 12.5,
        "insurance_bin": "610014",
        "insurance_group": "RX1234",
        "insurance_pcn": "MEDDPRIME",
        "contract_id": "H2226",
        "plan_name": "1",
        "prescriber_name": "Dr. Jane Smith",
        "prescriber_npi": "1234567890",
        "prescriber_fax": "(555) 123-4567",
        "patient_first_name": "Steven",
        "patient_last_name": "Rogers",
        "patient_dob": "1948-07-04",
    }
    data.update(overrides)
    return Opportunity.model_validate(data)


@pytest.fixture
def generated_at() -> datetime:
    return GENERATED_AT


@pytest.fixture
def opportunity() -> Opportunity:
    """Single Not Submitted opportunity for Dr. Jane Smith."""
    return make_opportunity("OPP-1", prescriber_npi="1234567890")


@pytest.fixture
def patient_opportunities() -> List[Opportunity]:
    """One patient: two opportunities for Dr. Jane Smith, one for Dr. Alan Reed."""
    return [
        make_opportunity("OPP-1", prescriber_npi="1234567890"),
        make_opportunity(
            "OPP-2",
            opportunity_type="therapeutic_interchange",
            current_drug_name="Nexium 40mg Capsule",
            recommended_drug_name="Omeprazole 40mg Capsule",
            prescriber_npi="1234567890",
        ),
        make_opportunity(
            "OPP-3",
            opportunity_type="formulary_tier_change",
            current_drug_name="Januvia 100mg Tablet",
            recommended_drug_name="Glipizide 5mg Tablet",
            prescriber_name="Dr. Alan Reed",
            prescriber_npi="9876543210",
            prescriber_fax="(555) 987-6543",
        ),
    ]


@pytest.fixture
def patient() -> PatientSummary:
    return PatientSummary(
        patient_id="P-1001",
        display_name="ROG,STE",
        date_of_birth=date(1948, 7, 4),
        insurance_bin="610014",
        insurance_group="RX1234",
        insurance_pcn="MEDDPRIME",
        contract_id="H2226",
        plan_name="1",
    )


@pytest.fixture
def prescriber() -> PrescriberSummary:
    return PrescriberSummary(name="Dr. Jane Smith", npi="1234567890", fax_number="(555) 123-4567")


@pytest.fixture
def pharmacy() -> PharmacyProfile:
    return PharmacyProfile(
        name="Main Street Pharmacy",
        address="100 Main St, Springfield, IL 62701",
        phone="(217) 555-0100",
        fax="(217) 555-0101",
        npi="1234567893",
    )


@pytest.fixture
def fake_store(patient_opportunities, pharmacy) -> FakeOpportunityStore:
    return FakeOpportunityStore(patient_opportunities, pharmacy=pharmacy)


@pytest.fixture
def fake_audit() -> FakeAuditRepository:
    return FakeAuditRepository()
