from __future__ import annotations

from datetime import datetime
from typing import Annotated, Iterator, Literal, Union

from pydantic import Field

from lab_reporting.schemas.base import CamelModel


class ParamEntry(CamelModel):
    param_id: str
    name: str
    unit: str = ""
    group_by: str = "Ungrouped"
    value: str = ""
    reference: str = ""
    which: Literal["Numeric", "Text"] = "Numeric"
    is_optional: bool = False
    error: str | None = None  # set when a derived value is unavailable


class TestEntry(CamelModel):
    kind: Literal["test"] = "test"
    test_id: str
    test_name: str
    short_name: str | None = None
    category: str = "Other"
    interpretation: str = ""
    is_formula: bool = False
    display_in_report: bool = True
    params: list[ParamEntry] = []


class BundleEntry(CamelModel):
    """A panel or package with its expanded contents."""

    kind: Literal["bundle"] = "bundle"
    item_id: str
    name: str
    is_panel: bool = False
    is_package: bool = False
    interpretation: str = ""
    tests: list[ResultItem] = []


ResultItem = Annotated[Union[TestEntry, BundleEntry], Field(discriminator="kind")]


class CategoryResult(CamelModel):
    category_name: str
    items: list[ResultItem] = []


class ResultPatient(CamelModel):
    first_name: str
    last_name: str = ""
    age: float | None = None
    age_unit: str = "Years"
    sex: str | None = None
    doctor: str = ""
    uhid: str = ""
    reg_no: str = ""


class Result(CamelModel):
    report_id: str
    report_no: str = ""
    branch_id: str | None = None
    patient: ResultPatient
    categories: list[CategoryResult] = []
    entered_by: str | None = None
    status: Literal["Pending", "Completed"] = "Pending"
    created_at: datetime = Field(default_factory=datetime.now)
    updated_at: datetime | None = None


BundleEntry.model_rebuild()


def iter_test_entries(
    items: list[TestEntry | BundleEntry], path: tuple[str, ...] = ()
) -> Iterator[tuple[tuple[str, ...], TestEntry]]:
    """Yield ``(path, entry)`` for every leaf test, depth-first in display order.

    ``path`` holds the ids of the enclosing bundles followed by the test id.
    """
    for item in items:
        if isinstance(item, BundleEntry):
            yield from iter_test_entries(item.tests, path + (item.item_id,))
        else:
            yield path + (item.test_id,), item


def iter_category_tests(
    categories: list[CategoryResult],
) -> Iterator[tuple[tuple[str, ...], TestEntry]]:
    for category in categories:
        yield from iter_test_entries(category.items, (category.category_name,))
