"""Records read from (and written to) the external opportunity store."""
from datetime import date, datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from backend.models.enums import OpportunityStatus


class Opportunity(BaseModel):
    """A single proposed drug-therapy change for one patient."""
    model_config = ConfigDict(extra="ignore")

    opportunity_id: str
    patient_id: str
    prescription_id: Optional[str] = None
    opportunity_type: Optional[str] = None

    current_ndc: Optional[str] = None
    current_drug_name: Optional[str] = None
    recommended_drug_name: Optional[str] = None
    clinical_rationale: Optional[str] = None
    clinical_priority: Optional[str] = None

    potential_margin_gain: Optional[float] = None  # per fill
    annual_margin_gain: Optional[float] = None

    # Insurance
    insurance_bin: Optional[str] = None
    insurance_group: Optional[str] = None
    insurance_pcn: Optional[str] = None
    contract_id: Optional[str] = None
    plan_name: Optional[str] = None

    # Prescriber
    prescriber_name: Optional[str] = None
    prescriber_npi: Optional[str] = None
    prescriber_fax: Optional[str] = None

    # Patient identity (display is masked downstream)
    patient_hash: Optional[str] = None
    patient_first_name: Optional[str] = None
    patient_last_name: Optional[str] = None
    patient_dob: Optional[date] = None

    status: OpportunityStatus = OpportunityStatus.NOT_SUBMITTED
    staff_notes: Optional[str] = None
    created_at: Optional[datetime] = None
    actioned_at: Optional[datetime] = None

    @field_validator("potential_margin_gain", "annual_margin_gain", mode="before")
    @classmethod
    def _blank_money_is_none(cls, value):
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @field_validator("patient_dob", mode="before")
    @classmethod
    def _trim_timestamp_dob(cls, value):
        # The store sometimes serializes dates as midnight timestamps
        if isinstance(value, str) and "T" in value:
            return value.split("T", 1)[0]
        return value


class PatientSummary(BaseModel):
    """Patient block of a fax document. Never mutated by this service."""
    patient_id: str
    display_name: str
    date_of_birth: Optional[date] = None
    insurance_bin: Optional[str] = None
    insurance_group: Optional[str] = None
    insurance_pcn: Optional[str] = None
    contract_id: Optional[str] = None
    plan_name: Optional[str] = None


class PrescriberSummary(BaseModel):
    """Prescriber block; missing NPI or fax renders as a blank field."""
    name: str
    npi: Optional[str] = None
    fax_number: Optional[str] = None


class PharmacyProfile(BaseModel):
    """Read-only pharmacy profile used to prefill every document."""
    model_config = ConfigDict(extra="ignore")

    name: str = ""
    address: str = ""
    phone: str = ""
    fax: str = ""
    npi: str = ""


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class PreflightResult(_CamelModel):
    """Response of the remote preflight validation."""
    can_send: bool = False
    warnings: List[str] = Field(default_factory=list)
    saved_fax_number: Optional[str] = None
    daily_count: int = 0
    daily_limit: int = 0


class PrescriberVolumeStats(_CamelModel):
    """How many patients have been actioned against one prescriber."""
    prescriber_name: Optional[str] = None
    unique_patients_actioned: int = 0
    total_opps_actioned: int = 0
    warn_threshold: int = 0
    block_threshold: Optional[int] = None
    should_warn: bool = False
    should_block: bool = False


class SendResult(_CamelModel):
    """Acknowledgement of a fax transmission."""
    success: bool = False
    fax_id: Optional[str] = None
    status: Optional[OpportunityStatus] = None
    message: Optional[str] = None
