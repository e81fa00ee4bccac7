"""Display helpers shared by the composer, exporter and history."""
import re
from datetime import date, datetime
from typing import List, Optional, Sequence, Union

from backend.models.opportunity import Opportunity, PatientSummary, PrescriberSummary

_SLUG_STRIP = re.compile(r"[^A-Za-z0-9]+")


def mask_patient_name(
    first_name: Optional[str],
    last_name: Optional[str],
    patient_hash: Optional[str] = None,
    is_demo: bool = False,
) -> str:
    """
    Patient name as shown on screen and on documents.

    Real accounts get a fixed-length masked form (``ROG,STE``); only the
    designated demo account shows full names.
    """
    if first_name and last_name:
        if is_demo:
            return f"{first_name} {last_name}"
        return f"{last_name[:3].upper()},{first_name[:3].upper()}"
    if last_name:
        return last_name if is_demo else last_name[:6].upper()
    if patient_hash:
        return patient_hash[:8]
    return "Unknown"


def annual_value(opportunity: Opportunity) -> float:
    """Annual margin, falling back to twelve fills of the per-fill margin."""
    annual = opportunity.annual_margin_gain
    if annual is not None and annual > 0:
        return float(annual)
    per_fill = opportunity.potential_margin_gain
    if per_fill is not None and per_fill > 0:
        return float(per_fill) * 12
    return 0.0


def format_currency(value: Optional[float]) -> str:
    if value is None:
        return "$0.00"
    return f"${value:,.2f}"


def format_contract_pbp(contract_id: Optional[str], plan_name: Optional[str]) -> Optional[str]:
    """Contract ID plus PBP as ``H2226-001``."""
    if not contract_id or not contract_id.strip():
        return None
    pbp = plan_name.strip().rjust(3, "0") if plan_name and plan_name.strip() else "001"
    return f"{contract_id.strip()}-{pbp}"


def format_date(value: Union[date, datetime, None]) -> str:
    if value is None:
        return ""
    return value.strftime("%m/%d/%Y")


def slugify(value: str, fallback: str = "unknown") -> str:
    slug = _SLUG_STRIP.sub("-", value or "").strip("-").lower()
    return slug or fallback


def mask_fax_number(number: Optional[str]) -> str:
    """Keep only the last four digits, for logs and audit rows."""
    digits = re.sub(r"\D", "", number or "")
    if not digits:
        return ""
    return f"***{digits[-4:]}"


def build_patient_summary(opportunities: Sequence[Opportunity], is_demo: bool = False) -> PatientSummary:
    """Patient block from the first opportunity carrying identity fields."""
    if not opportunities:
        raise ValueError("At least one opportunity is required")
    first = opportunities[0]
    source = next(
        (o for o in opportunities if o.patient_first_name or o.patient_last_name),
        first,
    )
    return PatientSummary(
        patient_id=first.patient_id,
        display_name=mask_patient_name(
            source.patient_first_name, source.patient_last_name, source.patient_hash, is_demo
        ),
        date_of_birth=source.patient_dob,
        insurance_bin=source.insurance_bin,
        insurance_group=source.insurance_group,
        insurance_pcn=source.insurance_pcn,
        contract_id=source.contract_id,
        plan_name=source.plan_name,
    )


def build_prescriber_summary(opportunities: Sequence[Opportunity]) -> PrescriberSummary:
    """Prescriber block; the first non-empty NPI and fax on record win."""
    if not opportunities:
        raise ValueError("At least one opportunity is required")
    npis: List[str] = [o.prescriber_npi for o in opportunities if o.prescriber_npi]
    faxes: List[str] = [o.prescriber_fax for o in opportunities if o.prescriber_fax]
    return PrescriberSummary(
        name=opportunities[0].prescriber_name or "Unknown Prescriber",
        npi=npis[0] if npis else None,
        fax_number=faxes[0] if faxes else None,
    )
