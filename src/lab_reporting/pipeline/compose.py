"""Report composition: stored result + print settings -> DocumentModel.

The composer decides ordering, grouping, abnormal flags, emphasis and page
breaks. Turning the model into HTML/PDF is left to the renderer.
"""

from __future__ import annotations

import logging
import re
from datetime import datetime
from typing import Iterable

from lab_reporting.layout.letterhead import page_layout
from lab_reporting.pipeline.formula import parse_value
from lab_reporting.schemas.config import ReportingConfig
from lab_reporting.schemas.document import (
    AbnormalFlag,
    BundleHeader,
    DocumentModel,
    GroupHeader,
    InterpretationBlock,
    ParamRow,
    PatientHeader,
    ReportSummary,
    Section,
    TestHeader,
)
from lab_reporting.schemas.print_settings import Letterhead, PrintSettings, Signature
from lab_reporting.schemas.result import (
    BundleEntry,
    CategoryResult,
    ParamEntry,
    Result,
    TestEntry,
)

logger = logging.getLogger(__name__)

_RANGE_RE = re.compile(r"\s*(-?\d+(?:\.\d+)?)\s*-\s*(-?\d+(?:\.\d+)?)\s*")
_MARKERS = {"high": "↑", "low": "↓"}


def abnormal_flag(value: str | None, reference: str | None) -> AbnormalFlag | None:
    """Return "high" or "low" for a numeric value outside a ``<lower>-<upper>`` reference."""
    if not value or not reference:
        return None
    match = _RANGE_RE.fullmatch(reference)
    if match is None:
        return None
    number = parse_value(value)
    if number is None:
        return None
    lower, upper = float(match.group(1)), float(match.group(2))
    if number < lower:
        return "low"
    if number > upper:
        return "high"
    return None


def capitalize_text(text: str) -> str:
    """Title-case words, leaving acronyms and numbers alone."""
    words = []
    for word in text.split(" "):
        if word.isupper() or re.fullmatch(r"[0-9.:-]+", word):
            words.append(word)
        else:
            words.append(word[:1].upper() + word[1:].lower())
    return " ".join(words)


def _local_naive(moment: datetime) -> datetime:
    return moment.astimezone().replace(tzinfo=None) if moment.tzinfo else moment


def calculate_tat(start: datetime, end: datetime | None) -> str:
    """Turnaround time as ``"3h 5m"``-style text, ``"--"`` when unknown.

    Timezone-aware stamps are compared in local time, like naive ones.
    """
    if end is None:
        return "--"
    start, end = _local_naive(start), _local_naive(end)
    if end < start:
        return "--"
    minutes = int((end - start).total_seconds() // 60)
    hours, minutes = divmod(minutes, 60)
    return f"{hours}h {minutes}m" if hours else f"{minutes}m"


class ReportComposer:
    def __init__(self, settings: PrintSettings, config: ReportingConfig | None = None) -> None:
        self.settings = settings
        self.config = config or ReportingConfig()
        self.abnormal_tests: list[str] = []
        self.test_count = 0

    def _name(self, text: str) -> str:
        return capitalize_text(text) if self.settings.general.capitalize_tests else text

    def section(self, category: CategoryResult) -> Section:
        blocks: list = []
        for item in category.items:
            self._item(item, 0, blocks)
        return Section(category_name=category.category_name, new_page=True, blocks=blocks)

    def _item(self, item: TestEntry | BundleEntry, depth: int, blocks: list) -> None:
        if isinstance(item, BundleEntry):
            self._bundle(item, depth, blocks)
        else:
            self._test(item, depth, blocks)

    def _bundle(self, bundle: BundleEntry, depth: int, blocks: list) -> None:
        blocks.append(
            BundleHeader(
                title=bundle.name,
                depth=depth,
                is_panel=bundle.is_panel,
                is_package=bundle.is_package,
            )
        )
        for child in bundle.tests:
            self._item(child, depth + 1, blocks)
        if bundle.interpretation:
            blocks.append(InterpretationBlock(owner=bundle.name, text=bundle.interpretation, depth=depth))

    def _row(self, param: ParamEntry, indented: bool, depth: int) -> ParamRow:
        design = self.settings.design
        flag = abnormal_flag(param.value, param.reference) if self.settings.general.use_hl_markers else None
        return ParamRow(
            name=self._name(param.name),
            value=param.value or "-",
            unit=param.unit or "-",
            reference=param.reference or "-",
            flag=flag,
            marker=_MARKERS.get(flag, "") if flag else "",
            bold=design.bold_abnormal if flag else design.bold_values,
            red=bool(flag) and design.red_abnormal,
            indented=indented,
            depth=depth,
        )

    def _test(self, test: TestEntry, depth: int, blocks: list) -> None:
        if not test.display_in_report:
            return
        self.test_count += 1
        default_group = self.config.default_group

        groups: dict[str, list[ParamEntry]] = {}
        for param in test.params:
            groups.setdefault(param.group_by or default_group, []).append(param)

        multi = len(test.params) > 1
        if multi:
            blocks.append(TestHeader(title=self._name(test.test_name), depth=depth))

        flagged = False
        for group, params in groups.items():
            grouped = group != default_group
            if grouped:
                blocks.append(GroupHeader(title=group, depth=depth))
            indented = self.settings.design.indent_nested and grouped and multi
            for param in params:
                row = self._row(param, indented, depth)
                flagged = flagged or row.flag is not None
                blocks.append(row)

        if flagged:
            self.abnormal_tests.append(test.test_name)
        if test.interpretation:
            blocks.append(InterpretationBlock(owner=test.test_name, text=test.interpretation, depth=depth))


def _patient_header(result: Result, settings: PrintSettings, now: datetime | None) -> PatientHeader:
    patient = result.patient
    age = f"{patient.age:g} {patient.age_unit or 'Yrs'}" if patient.age is not None else "-"
    tat = None
    if settings.show_hide.show_tat_time:
        tat = calculate_tat(result.created_at, result.updated_at or now)
    return PatientHeader(
        name=" ".join(p for p in (patient.first_name, patient.last_name) if p),
        age_sex=f"{age} / {patient.sex or '-'}",
        referred_by=patient.doctor or "-",
        report_date=result.created_at.strftime("%d/%m/%Y"),
        report_time=result.created_at.strftime("%I:%M %p"),
        reg_no=patient.reg_no or result.report_no,
        uhid=patient.uhid,
        tat=tat,
    )


def compose_report(
    result: Result,
    print_settings: PrintSettings,
    letterhead: Letterhead | None = None,
    signatures: Iterable[Signature] = (),
    public_url: str | None = None,
    config: ReportingConfig | None = None,
    now: datetime | None = None,
) -> DocumentModel:
    # Read settings from a private snapshot
    settings = print_settings.model_copy(deep=True)
    config = config or ReportingConfig()
    composer = ReportComposer(settings, config)

    sections = [composer.section(category) for category in result.categories]
    header = _patient_header(result, settings, now)
    with_letterhead = settings.with_letterhead and letterhead is not None

    document = DocumentModel(
        report_id=result.report_id,
        patient=header,
        sections=sections,
        layout=page_layout(settings, letterhead, config),
        with_letterhead=with_letterhead,
        header_image=letterhead.header_image if with_letterhead else None,
        footer_image=letterhead.footer_image if with_letterhead else None,
        signatures=list(signatures)[:2],
        barcode_text=result.report_no or result.patient.reg_no,
        qr_text=public_url if settings.show_hide.show_qr_code and public_url else None,
        show_page_number=settings.show_hide.show_page_number,
        font_family=settings.design.font_family,
        font_size=settings.design.font_size,
        spacing=settings.design.spacing,
        summary=ReportSummary(
            patient_name=header.name,
            age_sex=header.age_sex,
            report_date=header.report_date,
            test_count=composer.test_count,
            abnormal_count=len(composer.abnormal_tests),
            abnormal_tests=composer.abnormal_tests,
        ),
    )
    logger.info(
        "compose: %d sections, %d tests, %d abnormal",
        len(sections),
        composer.test_count,
        len(composer.abnormal_tests),
    )
    return document
