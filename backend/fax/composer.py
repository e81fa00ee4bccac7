"""Fax Document Composer - deterministic page layout, NO rendering.

Maps (patient, prescriber, pharmacy, opportunities, mode) to an ordered list
of fixed-size pages holding absolute draw operations.

Design principles:
- Pure function: no clock, no randomness, no I/O (``generated_at`` is passed in)
- Same inputs always produce the same layout
- Field names are ``<key>_<counter>`` from one document-wide counter
- The prescriber response section always comes last, on a new page if needed
"""
from datetime import datetime
from typing import List, Optional, Sequence, Tuple

from reportlab.lib.utils import simpleSplit
from reportlab.pdfbase.pdfmetrics import stringWidth

from backend.models.document import (
    PAGE_HEIGHT, PAGE_WIDTH, CheckboxOp, DocumentPage, FaxDocument, FieldOp, LineOp, RectOp, TextOp,
)
from backend.models.enums import ChangeKind, DocumentMode
from backend.models.opportunity import Opportunity, PatientSummary, PharmacyProfile, PrescriberSummary
from backend.fax.classification import classify_change
from backend.fax.formatting import format_contract_pbp, format_date
from backend.fax.exceptions import DocumentScopeError
from backend.fax.selection import prescriber_key, validate_document_scope

# --- Page geometry (points) ---

MARGIN_X = 36.0
TOP_MARGIN = 36.0
FOOTER_RESERVE = 54.0
CONTENT_WIDTH = PAGE_WIDTH - 2 * MARGIN_X
CONTENT_BOTTOM = PAGE_HEIGHT - FOOTER_RESERVE

BAND_HEIGHT = 16.0
BAND_GAP = 6.0
SECTION_GAP = 8.0
FIELD_ROW_HEIGHT = 30.0   # label line + field box
FIELD_HEIGHT = 15.0
TABLE_HEADER_HEIGHT = 18.0
TABLE_ROW_HEIGHT = 22.0
RATIONALE_HEIGHT = 64.0
RATIONALE_FONT_SIZE = 8.0
COMMENTS_HEIGHT = 40.0
FIELD_FONT = "Helvetica"

BAND_COLOR = "#003366"
TABLE_HEADER_COLOR = "#D9E2F3"
LABEL_COLOR = "#333333"
MUTED_COLOR = "#666666"

# Minimum heights checked before each section starts
TITLE_MIN_HEIGHT = 64.0
PRESCRIBER_MIN_HEIGHT = BAND_HEIGHT + BAND_GAP + FIELD_ROW_HEIGHT + SECTION_GAP
PHARMACY_MIN_HEIGHT = BAND_HEIGHT + BAND_GAP + 3 * FIELD_ROW_HEIGHT + SECTION_GAP
PATIENT_MIN_HEIGHT = BAND_HEIGHT + BAND_GAP + 2 * FIELD_ROW_HEIGHT + SECTION_GAP
CHANGE_MIN_HEIGHT = BAND_HEIGHT + BAND_GAP + FIELD_ROW_HEIGHT + 16.0 + SECTION_GAP
RATIONALE_MIN_HEIGHT = BAND_HEIGHT + BAND_GAP + RATIONALE_HEIGHT + SECTION_GAP
TABLE_MIN_HEIGHT = BAND_HEIGHT + BAND_GAP + TABLE_HEADER_HEIGHT + TABLE_ROW_HEIGHT
RESPONSE_MIN_HEIGHT = BAND_HEIGHT + BAND_GAP + 2 * 18.0 + 11.0 + COMMENTS_HEIGHT + 24.0 + 22.0 + 14.0

CONFIDENTIALITY_NOTICE = (
    "CONFIDENTIAL: This fax contains protected health information. If you received it in error, "
    "notify the sender and destroy all copies."
)

CHANGE_KIND_LABELS = {
    ChangeKind.GENERIC_SUBSTITUTION: "Generic substitution",
    ChangeKind.THERAPEUTIC_ALTERNATIVE: "Therapeutic alternative",
    ChangeKind.FORMULARY_CHANGE: "Formulary / coverage change",
    ChangeKind.UNCLASSIFIED: "Therapy change",
}


def wrap_text(text: str, width: float, font_size: float, max_lines: int, font_name: str = FIELD_FONT) -> List[str]:
    """
    Wrap text to a box width and truncate to ``max_lines``.

    Widths come from the standard Type 1 font metrics bundled with
    reportlab, so wrapping matches what the exporter draws.
    """
    lines: List[str] = []
    for paragraph in (text or "").split("\n\n"):
        collapsed = " ".join(paragraph.split())
        if collapsed:
            lines.extend(simpleSplit(collapsed, font_name, font_size, width))

    if len(lines) > max_lines:
        lines = lines[:max_lines]
        last = lines[-1]
        while last and stringWidth(last + "...", font_name, font_size) > width:
            last = last[:-1]
        lines[-1] = last.rstrip() + "..."
    return lines


class _FieldNamer:
    """Document-wide monotonic counter for unique field names."""

    def __init__(self):
        self._counter = 0

    def next(self, key: str) -> str:
        self._counter += 1
        return f"{key}_{self._counter}"


class _PageBuilder:
    """Vertical cursor over a sequence of fixed-size pages."""

    def __init__(self):
        self.pages: List[list] = []
        self.ops: list = []
        self.y = TOP_MARGIN
        self.names = _FieldNamer()
        self.new_page()

    def new_page(self) -> None:
        self.ops = []
        self.pages.append(self.ops)
        self.y = TOP_MARGIN

    @property
    def remaining(self) -> float:
        return CONTENT_BOTTOM - self.y

    def ensure(self, height: float) -> bool:
        """Open a new page when ``height`` does not fit. Returns True on break."""
        if height > self.remaining:
            self.new_page()
            return True
        return False

    def text(self, x: float, y: float, text: str, **style) -> None:
        self.ops.append(TextOp(x=x, y=y, text=text, **style))

    def band(self, label: str) -> None:
        self.ops.append(RectOp(
            x=MARGIN_X, y=self.y, width=CONTENT_WIDTH, height=BAND_HEIGHT, fill_color=BAND_COLOR,
        ))
        self.text(MARGIN_X + 6, self.y + 11.5, label, font_size=9.5, bold=True, color="#FFFFFF")
        self.y += BAND_HEIGHT + BAND_GAP

    def field_row(self, items: Sequence[Tuple[str, str, Optional[str]]]) -> None:
        """Row of labeled fillable fields sharing the content width."""
        gap = 8.0
        width = (CONTENT_WIDTH - gap * (len(items) - 1)) / len(items)
        for index, (key, label, value) in enumerate(items):
            x = MARGIN_X + index * (width + gap)
            self.text(x, self.y + 8, label, font_size=7.0, bold=True, color=LABEL_COLOR)
            self.ops.append(FieldOp(
                name=self.names.next(key),
                x=x, y=self.y + 11, width=width, height=FIELD_HEIGHT,
                value=value or "", label=label,
            ))
        self.y += FIELD_ROW_HEIGHT

    def checkbox(self, key: str, x: float, label: str, checked: bool = False) -> None:
        self.ops.append(CheckboxOp(
            name=self.names.next(key), x=x, y=self.y, size=10.0, checked=checked, label=label,
        ))
        self.text(x + 14, self.y + 8.5, label, font_size=8.5)

    def gap(self, height: float = SECTION_GAP) -> None:
        self.y += height


# --- Sections ---

def _title_section(page: _PageBuilder, mode: DocumentMode, count: int, generated_at: datetime) -> None:
    page.ensure(TITLE_MIN_HEIGHT)
    page.text(MARGIN_X, page.y + 18, "PRESCRIPTION CHANGE REQUEST", font_size=16.0, bold=True, color=BAND_COLOR)
    subtitle = "Pharmacy request for prescriber authorization"
    if mode == DocumentMode.BATCH:
        subtitle += f" ({count} medications)"
    page.text(MARGIN_X, page.y + 32, subtitle, font_size=8.5, color=MUTED_COLOR)
    page.text(MARGIN_X + CONTENT_WIDTH - 110, page.y + 18, f"Date: {format_date(generated_at)}", font_size=9.0)
    page.ops.append(LineOp(
        x1=MARGIN_X, y1=page.y + 42, x2=MARGIN_X + CONTENT_WIDTH, y2=page.y + 42, width=1.0,
    ))
    page.y += 52


def _prescriber_section(page: _PageBuilder, prescriber: PrescriberSummary) -> None:
    page.ensure(PRESCRIBER_MIN_HEIGHT)
    page.band("TO: PRESCRIBER")
    page.field_row([
        ("prescriber_name", "Prescriber", prescriber.name),
        ("prescriber_npi", "NPI", prescriber.npi),
        ("prescriber_fax", "Fax", prescriber.fax_number),
    ])
    page.gap()


def _pharmacy_section(page: _PageBuilder, pharmacy: PharmacyProfile) -> None:
    page.ensure(PHARMACY_MIN_HEIGHT)
    page.band("FROM: PHARMACY")
    page.field_row([
        ("pharmacy_name", "Pharmacy", pharmacy.name),
        ("pharmacy_npi", "Pharmacy NPI", pharmacy.npi),
    ])
    page.field_row([("pharmacy_address", "Address", pharmacy.address)])
    page.field_row([
        ("pharmacy_phone", "Phone", pharmacy.phone),
        ("pharmacy_fax", "Fax", pharmacy.fax),
    ])
    page.gap()


def _patient_section(page: _PageBuilder, patient: PatientSummary) -> None:
    page.ensure(PATIENT_MIN_HEIGHT)
    page.band("PATIENT")
    page.field_row([
        ("patient_name", "Patient", patient.display_name),
        ("patient_dob", "Date of Birth", format_date(patient.date_of_birth)),
    ])
    page.field_row([
        ("insurance_bin", "BIN", patient.insurance_bin),
        ("insurance_pcn", "PCN", patient.insurance_pcn),
        ("insurance_group", "Group", patient.insurance_group),
        ("contract_pbp", "Contract-PBP", format_contract_pbp(patient.contract_id, patient.plan_name)),
    ])
    page.gap()


def _single_change_sections(page: _PageBuilder, opportunity: Opportunity, kind: ChangeKind) -> None:
    page.ensure(CHANGE_MIN_HEIGHT)
    page.band("REQUESTED CHANGE")
    page.field_row([
        ("current_drug", "Current Medication", opportunity.current_drug_name),
        ("recommended_drug", "Recommended Medication", opportunity.recommended_drug_name),
    ])
    page.text(MARGIN_X, page.y + 10, f"Change type: {CHANGE_KIND_LABELS[kind]}", font_size=8.5, color=LABEL_COLOR)
    page.y += 16
    page.gap()

    page.ensure(RATIONALE_MIN_HEIGHT)
    page.band("CLINICAL RATIONALE")
    max_lines = int(RATIONALE_HEIGHT // (RATIONALE_FONT_SIZE * 1.25))
    lines = wrap_text(opportunity.clinical_rationale or "", CONTENT_WIDTH - 8, RATIONALE_FONT_SIZE, max_lines)
    page.ops.append(FieldOp(
        name=page.names.next("clinical_rationale"),
        x=MARGIN_X, y=page.y, width=CONTENT_WIDTH, height=RATIONALE_HEIGHT,
        value="\n".join(lines), label="Clinical Rationale",
        font_size=RATIONALE_FONT_SIZE, multiline=True,
    ))
    page.y += RATIONALE_HEIGHT
    page.gap()


def _table_header(page: _PageBuilder, column_width: float) -> None:
    page.ops.append(RectOp(
        x=MARGIN_X, y=page.y, width=CONTENT_WIDTH, height=TABLE_HEADER_HEIGHT, fill_color=TABLE_HEADER_COLOR,
    ))
    page.text(MARGIN_X + 4, page.y + 12, "Current Medication", font_size=8.0, bold=True)
    page.text(MARGIN_X + column_width + 4, page.y + 12, "Recommended Medication", font_size=8.0, bold=True)
    page.y += TABLE_HEADER_HEIGHT


def _batch_table_section(page: _PageBuilder, opportunities: Sequence[Opportunity], repeat_header: bool) -> None:
    column_width = CONTENT_WIDTH / 2
    page.ensure(TABLE_MIN_HEIGHT)
    page.band(f"REQUESTED CHANGES ({len(opportunities)})")
    _table_header(page, column_width)

    for opp in opportunities:
        if page.ensure(TABLE_ROW_HEIGHT) and repeat_header:
            _table_header(page, column_width)
        field_y = page.y + (TABLE_ROW_HEIGHT - FIELD_HEIGHT) / 2
        page.ops.append(FieldOp(
            name=page.names.next("current_drug"),
            x=MARGIN_X + 2, y=field_y, width=column_width - 6, height=FIELD_HEIGHT,
            value=opp.current_drug_name or "", label="Current Medication",
        ))
        page.ops.append(FieldOp(
            name=page.names.next("recommended_drug"),
            x=MARGIN_X + column_width + 2, y=field_y, width=column_width - 6, height=FIELD_HEIGHT,
            value=opp.recommended_drug_name or "", label="Recommended Medication",
        ))
        page.y += TABLE_ROW_HEIGHT
        page.ops.append(LineOp(
            x1=MARGIN_X, y1=page.y, x2=MARGIN_X + CONTENT_WIDTH, y2=page.y, width=0.5,
        ))
    page.gap()


def _response_section(page: _PageBuilder, kinds: Sequence[ChangeKind], pharmacy: PharmacyProfile) -> None:
    page.ensure(RESPONSE_MIN_HEIGHT)
    page.band("PRESCRIBER RESPONSE")

    page.checkbox("change_generic_substitution", MARGIN_X, "Generic substitution",
                  checked=ChangeKind.GENERIC_SUBSTITUTION in kinds)
    page.checkbox("change_therapeutic_alternative", MARGIN_X + CONTENT_WIDTH / 2, "Therapeutic alternative",
                  checked=ChangeKind.THERAPEUTIC_ALTERNATIVE in kinds)
    page.y += 18

    page.checkbox("response_approved", MARGIN_X, "APPROVED - dispense recommended medication")
    page.checkbox("response_denied", MARGIN_X + CONTENT_WIDTH / 2, "DENIED - continue current therapy")
    page.y += 18

    page.text(MARGIN_X, page.y + 8, "Comments", font_size=7.0, bold=True, color=LABEL_COLOR)
    page.y += 11
    page.ops.append(FieldOp(
        name=page.names.next("prescriber_comments"),
        x=MARGIN_X, y=page.y, width=CONTENT_WIDTH, height=COMMENTS_HEIGHT,
        label="Comments", multiline=True,
    ))
    page.y += COMMENTS_HEIGHT + 24

    signature_width = CONTENT_WIDTH * 0.6
    page.ops.append(LineOp(x1=MARGIN_X, y1=page.y, x2=MARGIN_X + signature_width, y2=page.y, width=0.75))
    page.text(MARGIN_X, page.y + 10, "Prescriber Signature", font_size=7.0, color=LABEL_COLOR)
    date_x = MARGIN_X + signature_width + 16
    page.ops.append(FieldOp(
        name=page.names.next("signature_date"),
        x=date_x, y=page.y - FIELD_HEIGHT, width=MARGIN_X + CONTENT_WIDTH - date_x, height=FIELD_HEIGHT,
        label="Date",
    ))
    page.text(date_x, page.y + 10, "Date", font_size=7.0, color=LABEL_COLOR)
    page.y += 22

    fax_back = f"Please sign and fax back to {pharmacy.fax}." if pharmacy.fax else "Please sign and fax back."
    page.text(MARGIN_X, page.y + 8, fax_back, font_size=8.5, bold=True)
    page.y += 14


def _add_footers(pages: List[list]) -> None:
    total = len(pages)
    for number, ops in enumerate(pages, start=1):
        ops.append(TextOp(
            x=MARGIN_X, y=PAGE_HEIGHT - 40, text=CONFIDENTIALITY_NOTICE, font_size=6.5, color=MUTED_COLOR,
        ))
        ops.append(TextOp(
            x=MARGIN_X + CONTENT_WIDTH - 60, y=PAGE_HEIGHT - 26, text=f"Page {number} of {total}", font_size=7.5,
        ))


def compose_fax_document(
    patient: PatientSummary,
    prescriber: PrescriberSummary,
    pharmacy: PharmacyProfile,
    opportunities: Sequence[Opportunity],
    mode: DocumentMode,
    generated_at: datetime,
    *,
    repeat_table_header: bool = False,
) -> FaxDocument:
    """
    Lay out a prescriber fax request.

    Args:
        patient: Patient block (display name already masked)
        prescriber: Prescriber block; missing NPI/fax render blank
        pharmacy: Pharmacy profile used for the FROM block
        opportunities: Non-empty, one patient, one prescriber
        mode: SINGLE (exactly one opportunity) or BATCH
        generated_at: Timestamp printed on the document
        repeat_table_header: Redraw the batch table header after a page break

    Returns:
        FaxDocument with ordered pages of draw operations

    Raises:
        DocumentScopeError: If the opportunities cannot share one document
    """
    validate_document_scope(opportunities, mode)
    if opportunities[0].patient_id != patient.patient_id:
        raise DocumentScopeError("Patient block does not match the opportunities' patient")
    if prescriber_key(opportunities[0]) != prescriber.name:
        raise DocumentScopeError("Prescriber block does not match the opportunities' prescriber")

    page = _PageBuilder()
    _title_section(page, mode, len(opportunities), generated_at)
    _prescriber_section(page, prescriber)
    _pharmacy_section(page, pharmacy)
    _patient_section(page, patient)

    kinds = [
        classify_change(o.opportunity_type, o.current_drug_name, o.recommended_drug_name)
        for o in opportunities
    ]
    if mode == DocumentMode.SINGLE:
        _single_change_sections(page, opportunities[0], kinds[0])
    else:
        _batch_table_section(page, opportunities, repeat_table_header)

    _response_section(page, kinds, pharmacy)
    _add_footers(page.pages)

    return FaxDocument(
        mode=mode,
        patient_id=patient.patient_id,
        prescriber_name=prescriber.name,
        opportunity_ids=[o.opportunity_id for o in opportunities],
        generated_at=generated_at,
        pages=[
            DocumentPage(number=number, operations=ops)
            for number, ops in enumerate(page.pages, start=1)
        ],
    )
