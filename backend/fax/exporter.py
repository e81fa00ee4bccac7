"""PDF export of composed fax documents (reportlab).

The composer works in a top-left coordinate system; reportlab's origin is the
bottom-left corner, so every ``y`` is flipped against the page height here.
"""
from io import BytesIO

from reportlab.lib import colors
from reportlab.pdfgen import canvas

from backend.models.document import CheckboxOp, DocumentPage, FaxDocument, FieldOp, LineOp, RectOp, TextOp
from backend.models.opportunity import PatientSummary
from backend.fax.composer import FIELD_FONT
from backend.fax.formatting import slugify
from backend.config.logging_config import get_logger

logger = get_logger(__name__)

FIELD_BORDER = colors.HexColor("#999999")
FIELD_FILL = colors.HexColor("#F5F8FC")
FIELD_MAX_LENGTH = 2000


def _draw_page(pdf: canvas.Canvas, page: DocumentPage) -> None:
    height = page.height
    form = pdf.acroForm

    for op in page.operations:
        if isinstance(op, TextOp):
            pdf.setFillColor(colors.HexColor(op.color))
            pdf.setFont("Helvetica-Bold" if op.bold else "Helvetica", op.font_size)
            pdf.drawString(op.x, height - op.y, op.text)

        elif isinstance(op, LineOp):
            pdf.setStrokeColor(colors.black)
            pdf.setLineWidth(op.width)
            pdf.line(op.x1, height - op.y1, op.x2, height - op.y2)

        elif isinstance(op, RectOp):
            if op.fill_color:
                pdf.setFillColor(colors.HexColor(op.fill_color))
            pdf.rect(
                op.x, height - op.y - op.height, op.width, op.height,
                stroke=1 if op.stroke else 0,
                fill=1 if op.fill_color else 0,
            )

        elif isinstance(op, CheckboxOp):
            form.checkbox(
                name=op.name,
                tooltip=op.label or op.name,
                x=op.x,
                y=height - op.y - op.size,
                size=op.size,
                checked=op.checked,
                buttonStyle="check",
                borderColor=colors.black,
                fillColor=colors.white,
                textColor=colors.black,
                forceBorder=True,
            )

        elif isinstance(op, FieldOp):
            form.textfield(
                name=op.name,
                tooltip=op.label or op.name,
                value=op.value,
                x=op.x,
                y=height - op.y - op.height,
                width=op.width,
                height=op.height,
                fontName=FIELD_FONT,
                fontSize=op.font_size,
                fieldFlags="multiline" if op.multiline else "",
                maxlen=FIELD_MAX_LENGTH,
                borderWidth=0.5,
                borderColor=FIELD_BORDER,
                fillColor=FIELD_FILL,
                textColor=colors.black,
                forceBorder=True,
            )


def render_pdf(document: FaxDocument) -> bytes:
    """
    Encode a composed document as a fillable PDF.

    The canvas runs in invariant mode, so equal documents give equal bytes.
    """
    buffer = BytesIO()
    first = document.pages[0] if document.pages else DocumentPage(number=1)
    pdf = canvas.Canvas(buffer, pagesize=(first.width, first.height), invariant=1)
    pdf.setTitle("Prescription Change Request")
    pdf.setSubject(f"{document.mode.value} fax request")

    for page in document.pages:
        pdf.setPageSize((page.width, page.height))
        _draw_page(pdf, page)
        pdf.showPage()

    pdf.save()
    data = buffer.getvalue()
    logger.info(
        "Fax PDF rendered",
        mode=document.mode.value,
        pages=document.page_count,
        opportunities=len(document.opportunity_ids),
        size_bytes=len(data),
    )
    return data


def build_export_filename(document: FaxDocument, patient: PatientSummary) -> str:
    """File name encoding mode, patient, prescriber and date."""
    return "fax_{mode}_{patient}_{prescriber}_{day}.pdf".format(
        mode=document.mode.value,
        patient=slugify(patient.display_name, fallback=slugify(patient.patient_id)),
        prescriber=slugify(document.prescriber_name),
        day=document.generated_at.strftime("%Y-%m-%d"),
    )
