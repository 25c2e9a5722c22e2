"""Print-ready document model produced by the report composer.

Blocks inside a :class:`Section` are a flat list in display order; ``depth``
is the bundle nesting level a renderer may use for indentation.
"""

from __future__ import annotations

from typing import Annotated, Literal, Union

from pydantic import Field

from lab_reporting.schemas.base import CamelModel
from lab_reporting.schemas.print_settings import Signature

AbnormalFlag = Literal["high", "low"]


class BundleHeader(CamelModel):
    kind: Literal["bundle"] = "bundle"
    title: str
    depth: int = 0
    is_panel: bool = False
    is_package: bool = False


class TestHeader(CamelModel):
    kind: Literal["test"] = "test"
    title: str
    depth: int = 0


class GroupHeader(CamelModel):
    kind: Literal["group"] = "group"
    title: str
    depth: int = 0


class ParamRow(CamelModel):
    kind: Literal["param"] = "param"
    name: str
    value: str = "-"
    unit: str = "-"
    reference: str = "-"
    flag: AbnormalFlag | None = None
    marker: str = ""  # arrow appended to the value when flagged
    bold: bool = False
    red: bool = False
    indented: bool = False
    depth: int = 0


class InterpretationBlock(CamelModel):
    kind: Literal["interpretation"] = "interpretation"
    owner: str
    text: str
    depth: int = 0


Block = Annotated[
    Union[BundleHeader, TestHeader, GroupHeader, ParamRow, InterpretationBlock],
    Field(discriminator="kind"),
]


class Section(CamelModel):
    category_name: str
    new_page: bool = True
    blocks: list[Block] = []


class PatientHeader(CamelModel):
    name: str
    age_sex: str
    referred_by: str = "-"
    report_date: str
    report_time: str
    reg_no: str = ""
    uhid: str = ""
    tat: str | None = None


class PageLayout(CamelModel):
    """Vertical page bands in centimetres."""

    page_height: float
    header_height: float
    case_info_height: float
    signature_height: float
    footer_height: float
    body_height: float


class ReportSummary(CamelModel):
    """Patient-facing summary for the public sharing page."""

    patient_name: str
    age_sex: str
    report_date: str
    test_count: int
    abnormal_count: int
    abnormal_tests: list[str] = []


class DocumentModel(CamelModel):
    report_id: str
    patient: PatientHeader
    sections: list[Section] = []
    layout: PageLayout
    with_letterhead: bool = True
    header_image: str | None = None
    footer_image: str | None = None
    signatures: list[Signature] = []  # left, right
    barcode_text: str = ""
    qr_text: str | None = None
    show_page_number: bool = True
    font_family: str = "Arial"
    font_size: int = 12
    spacing: float = 1
    summary: ReportSummary
