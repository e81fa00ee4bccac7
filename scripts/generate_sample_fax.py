#!/usr/bin/env python3
"""
Generate sample prescriber fax PDFs from a JSON file of opportunities.

The input is a list of opportunity records as returned by the opportunity
store. Records are grouped by patient and prescriber; each group produces one
single-mode PDF per opportunity plus one batch PDF when the group has more
than one opportunity.

Usage:
    python scripts/generate_sample_fax.py opportunities.json --out data/sample_faxes
"""

import argparse
import json
import sys
from collections import OrderedDict
from datetime import datetime, timezone
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from backend.fax.composer import compose_fax_document  # noqa: E402
from backend.fax.exporter import build_export_filename, render_pdf  # noqa: E402
from backend.fax.formatting import build_patient_summary, build_prescriber_summary  # noqa: E402
from backend.fax.selection import group_by_prescriber  # noqa: E402
from backend.models.enums import DocumentMode  # noqa: E402
from backend.models.opportunity import Opportunity, PharmacyProfile  # noqa: E402

SAMPLE_PHARMACY = PharmacyProfile(
    name="Main Street Pharmacy",
    address="100 Main St, Springfield, IL 62701",
    phone="(217) 555-0100",
    fax="(217) 555-0101",
    npi="1234567893",
)


def _write(document, patient, out_dir: Path) -> Path:
    path = out_dir / build_export_filename(document, patient)
    if document.mode == DocumentMode.SINGLE:
        path = path.with_name(f"{path.stem}_{document.opportunity_ids[0]}.pdf")
    path.write_bytes(render_pdf(document))
    return path


def main():
    parser = argparse.ArgumentParser(description="Generate sample prescriber fax PDFs")
    parser.add_argument("input", type=Path, help="JSON file with a list of opportunities")
    parser.add_argument("--out", type=Path, default=PROJECT_ROOT / "data" / "sample_faxes")
    parser.add_argument("--demo", action="store_true", help="Show unmasked patient names")
    args = parser.parse_args()

    with open(args.input, encoding="utf-8") as f:
        raw = json.load(f)
    rows = raw.get("opportunities", []) if isinstance(raw, dict) else raw
    opportunities = [Opportunity.model_validate(row) for row in rows]

    by_patient = OrderedDict()
    for opp in opportunities:
        by_patient.setdefault(opp.patient_id, []).append(opp)

    args.out.mkdir(parents=True, exist_ok=True)
    generated_at = datetime.now(timezone.utc)
    written = 0

    print(f"Generating faxes for {len(by_patient)} patients -> {args.out}/")
    for patient_id, patient_opps in by_patient.items():
        for prescriber_name, group in group_by_prescriber(patient_opps).items():
            patient = build_patient_summary(group, is_demo=args.demo)
            prescriber = build_prescriber_summary(group)

            for opp in group:
                document = compose_fax_document(
                    patient, prescriber, SAMPLE_PHARMACY, [opp], DocumentMode.SINGLE, generated_at
                )
                print(f"  {_write(document, patient, args.out).name}")
                written += 1

            if len(group) > 1:
                document = compose_fax_document(
                    patient, prescriber, SAMPLE_PHARMACY, group, DocumentMode.BATCH, generated_at
                )
                print(f"  {_write(document, patient, args.out).name} ({document.page_count} pages)")
                written += 1

    print(f"Done: {written} PDFs")


if __name__ == "__main__":
    main()
