"""Abstract page layout produced by the fax composer.

Coordinates are in PDF points with a top-left origin: ``y`` grows down the
page. Encoders flip the axis themselves.
"""
from datetime import datetime
from typing import Annotated, List, Literal, Optional, Union

from pydantic import BaseModel, Field

from backend.models.enums import DocumentMode

PAGE_WIDTH = 612.0   # US Letter
PAGE_HEIGHT = 792.0


class TextOp(BaseModel):
    kind: Literal["text"] = "text"
    x: float
    y: float  # baseline
    text: str
    font_size: float = 9.0
    bold: bool = False
    color: str = "#000000"


class LineOp(BaseModel):
    kind: Literal["line"] = "line"
    x1: float
    y1: float
    x2: float
    y2: float
    width: float = 0.75


class RectOp(BaseModel):
    kind: Literal["rect"] = "rect"
    x: float
    y: float
    width: float
    height: float
    fill_color: Optional[str] = None
    stroke: bool = False


class CheckboxOp(BaseModel):
    kind: Literal["checkbox"] = "checkbox"
    name: str
    x: float
    y: float
    size: float = 10.0
    checked: bool = False
    label: str = ""


class FieldOp(BaseModel):
    """Fillable text field."""
    kind: Literal["field"] = "field"
    name: str
    x: float
    y: float
    width: float
    height: float
    value: str = ""
    label: str = ""
    font_size: float = 9.0
    multiline: bool = False


DrawOp = Annotated[Union[TextOp, LineOp, RectOp, CheckboxOp, FieldOp], Field(discriminator="kind")]


class DocumentPage(BaseModel):
    number: int
    width: float = PAGE_WIDTH
    height: float = PAGE_HEIGHT
    operations: List[DrawOp] = Field(default_factory=list)


class FaxDocument(BaseModel):
    """A generated, fillable request for one patient and one prescriber."""
    mode: DocumentMode
    patient_id: str
    prescriber_name: str
    opportunity_ids: List[str]
    generated_at: datetime
    pages: List[DocumentPage] = Field(default_factory=list)

    @property
    def page_count(self) -> int:
        return len(self.pages)

    def fields(self) -> List[FieldOp]:
        return [op for page in self.pages for op in page.operations if isinstance(op, FieldOp)]

    def checkboxes(self) -> List[CheckboxOp]:
        return [op for page in self.pages for op in page.operations if isinstance(op, CheckboxOp)]

    def field_names(self) -> List[str]:
        """Names of every fillable control, in drawing order."""
        return [
            op.name
            for page in self.pages
            for op in page.operations
            if isinstance(op, (FieldOp, CheckboxOp))
        ]
