"""Shared pytest fixtures for lab_reporting tests."""

import pytest
from lab_reporting.catalog import InMemoryCatalog
from lab_reporting.pipeline.cases import InMemoryCaseStore
from lab_reporting.pipeline.formula import FormulaRegistry
from lab_reporting.pipeline.identifiers import InMemoryCounterStore
from lab_reporting.schemas.case import Case, Patient, Payment
from lab_reporting.schemas.catalog import (
    Formula,
    FormulaDependency,
    Package,
    Panel,
    Parameter,
    ReferenceRange,
    TestDefinition,
)
from lab_reporting.schemas.config import ReportingConfig
from lab_reporting.schemas.print_settings import PrintSettings


def single_test(test_id, name, short_name, unit, ranges=(), **extra) -> TestDefinition:
    return TestDefinition(
        id=test_id,
        type="single",
        name=name,
        short_name=short_name,
        unit=unit,
        reference_ranges=list(ranges),
        **extra,
    )


@pytest.fixture
def config() -> ReportingConfig:
    return ReportingConfig()


@pytest.fixture
def cbc() -> TestDefinition:
    """Multi-parameter test with grouped parameters and per-parameter ranges."""
    return TestDefinition(
        id="cbc",
        type="multi",
        name="Complete Blood Count",
        short_name="CBC",
        category="Haematology",
        interpretation="Correlate clinically.",
        parameters=[
            Parameter(id="cbc-rbc", order=1, name="RBC", unit="mill/cumm", group_by="Red Cells"),
            Parameter(id="cbc-pcv", order=2, name="PCV", unit="%", group_by="Red Cells"),
            Parameter(id="cbc-wbc", order=3, name="WBC", unit="cells/cumm"),
            Parameter(id="cbc-neu", order=4, name="Neutrophils", unit="%", group_by="Differential"),
        ],
        reference_ranges=[
            ReferenceRange(parameter_name="RBC", sex="Female", lower=3.8, upper=4.8),
            ReferenceRange(parameter_name="RBC", sex="Male", lower=4.5, upper=5.5),
            ReferenceRange(parameter_name="PCV", lower=36, upper=46),
            ReferenceRange(parameter_name="WBC", lower=4000, upper=11000),
            ReferenceRange(parameter_name="Neutrophils", lower=40, upper=75),
        ],
    )


@pytest.fixture
def catalog(cbc) -> InMemoryCatalog:
    tests = [
        cbc,
        single_test(
            "hb",
            "Hemoglobin",
            "HB",
            "g/dL",
            [
                ReferenceRange(sex="Any", max_age=100, lower=10, upper=20),
                ReferenceRange(sex="Female", max_age=100, lower=12, upper=18),
            ],
        ),
        single_test("glu", "Glucose Fasting", "GLU", "mg/dL", [ReferenceRange(lower=70, upper=100)]),
        single_test("tc", "Total Cholesterol", "TC", "mg/dL", [ReferenceRange(upper=200)]),
        single_test("hdl", "HDL Cholesterol", "HDL", "mg/dL", [ReferenceRange(lower=40, upper=60)]),
        single_test("tg", "Triglycerides", "TG", "mg/dL", [ReferenceRange(lower=0, upper=150)]),
        single_test(
            "ldl", "LDL Cholesterol", "LDL", "mg/dL", [ReferenceRange(lower=0, upper=130)], is_formula=True
        ),
        single_test(
            "urine-colour",
            "Urine Colour",
            "UCOL",
            "",
            [ReferenceRange(which="Text", text_value="Pale Yellow")],
            value_type="Text",
        ),
    ]
    panels = [
        Panel(
            id="lipid",
            name="Lipid Profile",
            interpretation="12 hour fasting sample recommended.",
            tests=["tc", "hdl", "tg", "ldl"],
        ),
    ]
    packages = [Package(id="wellness", name="Wellness Package", tests=["glu"], panels=["lipid"])]
    return InMemoryCatalog(tests=tests, panels=panels, packages=packages, formulas=[ldl_formula()])


def ldl_formula() -> Formula:
    return Formula(
        id="f-ldl",
        test_id="ldl",
        test_name="LDL Cholesterol",
        short_name="LDL",
        formula_string="TC - HDL - TG / 5",
        dependencies=[
            FormulaDependency(test_id="tc", test_name="Total Cholesterol", short_name="TC"),
            FormulaDependency(test_id="hdl", test_name="HDL Cholesterol", short_name="HDL"),
            FormulaDependency(test_id="tg", test_name="Triglycerides", short_name="TG"),
        ],
    )


@pytest.fixture
def formulas(catalog) -> FormulaRegistry:
    return FormulaRegistry(catalog.formulas)


@pytest.fixture
def patient() -> Patient:
    return Patient(mobile="9876543210", first_name="Asha", last_name="Rao", age=30, sex="Female")


@pytest.fixture
def case(patient) -> Case:
    """Saved case: a CBC and hemoglobin under Haematology, the lipid panel under Biochemistry."""
    return Case(
        id="case-1",
        reg_no="712345678",
        dcn="L01",
        branch_id="branch-1",
        patient=patient,
        tests={"Haematology": ["cbc", "hb"], "Biochemistry": ["lipid"]},
        categories=["LAB"],
        payment=Payment(total=1000, discount=100, received=900),
    )


@pytest.fixture
def counters() -> InMemoryCounterStore:
    return InMemoryCounterStore()


@pytest.fixture
def case_store() -> InMemoryCaseStore:
    return InMemoryCaseStore()


@pytest.fixture
def print_settings() -> PrintSettings:
    return PrintSettings()
