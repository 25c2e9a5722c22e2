from __future__ import annotations

from datetime import datetime
from typing import Literal, Union

from lab_reporting.schemas.base import CamelModel

RangeSex = Literal["Any", "Male", "Female", "Other"]
ValueType = Literal["Numeric", "Text"]
InputType = Literal["Single Line", "Numeric", "Paragraph"]


class ReferenceRange(CamelModel):
    parameter_name: str | None = None  # None: applies to the test itself
    which: ValueType = "Numeric"
    sex: RangeSex = "Any"
    min_age: float = 0
    min_unit: Literal["Days", "Months", "Years"] = "Years"
    max_age: float | None = None  # open-ended when missing
    max_unit: Literal["Days", "Months", "Years"] = "Years"
    lower: float | None = None
    upper: float | None = None
    text_value: str | None = None
    display_text: str | None = None
    created_at: datetime | None = None


class Parameter(CamelModel):
    id: str | None = None
    order: int | None = None
    name: str
    short_name: str | None = None
    unit: str = ""
    input_type: InputType = "Single Line"
    value_type: ValueType = "Numeric"
    default_result: str | None = None
    is_optional: bool = False
    group_by: str | None = None


class TestDefinition(CamelModel):
    id: str
    type: Literal["single", "multi", "nested", "document"]
    name: str
    short_name: str | None = None
    category: str | None = None
    unit: str = ""
    input_type: InputType = "Single Line"
    value_type: ValueType = "Numeric"
    method: str | None = None
    interpretation: str = ""
    default_result: str | None = None
    display_in_report: bool = True
    parameters: list[Parameter] = []
    reference_ranges: list[ReferenceRange] = []
    is_formula: bool = False


class Panel(CamelModel):
    id: str
    name: str
    category: str | None = None
    interpretation: str = ""
    hide_interpretation: bool = False
    tests: list[str] = []  # test or panel ids


class Package(CamelModel):
    id: str
    name: str
    interpretation: str = ""
    tests: list[str] = []
    panels: list[str] = []


class FormulaDependency(CamelModel):
    test_id: str
    test_name: str | None = None
    short_name: str | None = None

    @property
    def token(self) -> str:
        return self.short_name or self.test_name or self.test_id


class Formula(CamelModel):
    id: str | None = None
    test_id: str
    test_name: str
    short_name: str | None = None
    formula_string: str
    dependencies: list[FormulaDependency] = []
    remarks: str | None = None
    branch_id: str | None = None
    status: Literal["Active", "Inactive"] = "Active"


CatalogEntry = Union[TestDefinition, Panel, Package]
