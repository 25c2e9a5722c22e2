"""Tests for result tree building and rebuilding."""

import pytest
from lab_reporting.catalog import InMemoryCatalog
from lab_reporting.schemas.catalog import Panel, Parameter, TestDefinition
from lab_reporting.schemas.result import BundleEntry, TestEntry, iter_category_tests
from lab_reporting.pipeline.tree import (
    build_result_tree,
    carry_over_values,
    enter_values,
    rebuild_result_tree,
)


def entries_by_id(categories) -> dict[str, TestEntry]:
    return {entry.test_id: entry for _, entry in iter_category_tests(categories)}


def test_tree_mirrors_case_selection(case, catalog):
    """Categories and items follow the case's selection order."""
    categories, issues = build_result_tree(case, catalog)
    assert issues == []
    assert [c.category_name for c in categories] == ["Haematology", "Biochemistry"]
    assert [item.test_id for item in categories[0].items] == ["cbc", "hb"]

    lipid = categories[1].items[0]
    assert isinstance(lipid, BundleEntry)
    assert lipid.is_panel and not lipid.is_package
    assert lipid.interpretation == "12 hour fasting sample recommended."
    assert [t.test_id for t in lipid.tests] == ["tc", "hdl", "tg", "ldl"]


def test_leaf_params_from_declared_parameters(case, catalog):
    """Multi-parameter tests carry one entry per parameter, in declared order."""
    categories, _ = build_result_tree(case, catalog)
    cbc = entries_by_id(categories)["cbc"]
    assert [p.name for p in cbc.params] == ["RBC", "PCV", "WBC", "Neutrophils"]
    assert [p.group_by for p in cbc.params] == ["Red Cells", "Red Cells", "Ungrouped", "Differential"]
    assert all(p.value == "" for p in cbc.params)
    assert cbc.params[0].param_id == "cbc-rbc"


def test_single_test_has_implicit_param(case, catalog):
    """A test without parameters reports one value under its own name."""
    categories, _ = build_result_tree(case, catalog)
    hb = entries_by_id(categories)["hb"]
    assert len(hb.params) == 1
    assert hb.params[0].name == "Hemoglobin"
    assert hb.params[0].unit == "g/dL"
    assert hb.params[0].param_id == "hb"


def test_references_resolved_for_patient(case, catalog):
    """References use the patient's sex and age at build time."""
    categories, _ = build_result_tree(case, catalog)
    found = entries_by_id(categories)
    assert found["hb"].params[0].reference == "12 - 18"
    assert found["cbc"].params[0].reference == "3.8 - 4.8"
    assert found["tc"].params[0].reference == "< 200"

    case.patient.sex = "Male"
    categories, _ = build_result_tree(case, catalog)
    found = entries_by_id(categories)
    assert found["hb"].params[0].reference == "10 - 20"
    assert found["cbc"].params[0].reference == "4.5 - 5.5"


def test_missing_reference_is_placeholder(case, catalog):
    """Tests without any matching range show "-" and build normally."""
    catalog.add(TestDefinition(id="esr", type="single", name="ESR", unit="mm/hr"))
    case.tests = {"Haematology": ["esr"]}
    categories, issues = build_result_tree(case, catalog)
    assert issues == []
    assert categories[0].items[0].params[0].reference == "-"


def test_package_expands_tests_and_panels(case, catalog):
    """Packages nest their panels, which nest their tests."""
    case.tests = {"Packages": ["wellness"]}
    categories, _ = build_result_tree(case, catalog)
    package = categories[0].items[0]
    assert package.is_package
    assert [getattr(i, "test_id", None) or i.item_id for i in package.tests] == ["glu", "lipid"]
    assert isinstance(package.tests[1], BundleEntry)
    assert len(package.tests[1].tests) == 4


def test_hidden_panel_interpretation(case, catalog):
    """hideInterpretation blanks the panel interpretation."""
    catalog.add(Panel(id="lipid", name="Lipid Profile", interpretation="x", hide_interpretation=True, tests=["tc"]))
    categories, _ = build_result_tree(case, catalog)
    assert categories[1].items[0].interpretation == ""


def test_cyclic_panel_dropped_siblings_build(case, catalog):
    """A self-containing panel is reported and skipped; its siblings still build."""
    catalog.add(Panel(id="loop-a", name="Loop A", tests=["tc", "loop-b"]))
    catalog.add(Panel(id="loop-b", name="Loop B", tests=["loop-a"]))
    case.tests = {"Biochemistry": ["glu", "loop-a", "hdl"]}

    categories, issues = build_result_tree(case, catalog)
    assert [getattr(i, "test_id", None) for i in categories[0].items] == ["glu", "hdl"]
    assert len(issues) == 1
    assert issues[0].item_id == "loop-a"
    assert issues[0].code == "CyclicCatalogReference"


def test_nested_cycle_drops_only_offending_subtree(case, catalog):
    """An outer panel survives when a panel inside it loops back on itself."""
    catalog.add(Panel(id="outer", name="Outer", tests=["hdl", "inner"]))
    catalog.add(Panel(id="inner", name="Inner", tests=["tg", "inner-2"]))
    catalog.add(Panel(id="inner-2", name="Inner 2", tests=["inner"]))
    case.tests = {"Biochemistry": ["outer"]}

    categories, issues = build_result_tree(case, catalog)
    outer = categories[0].items[0]
    assert [getattr(i, "test_id", None) for i in outer.tests] == ["hdl"]
    assert [issue.item_id for issue in issues] == ["inner"]


def test_same_panel_twice_is_not_a_cycle(case, catalog):
    """Repeating a panel as a sibling is allowed."""
    catalog.add(Panel(id="twice", name="Twice", tests=["lipid", "lipid"]))
    case.tests = {"Biochemistry": ["twice"]}
    categories, issues = build_result_tree(case, catalog)
    assert issues == []
    assert len(categories[0].items[0].tests) == 2


def test_unknown_item_reported(case, catalog):
    """Ids missing from the catalog are skipped and reported."""
    case.tests = {"Haematology": ["hb", "does-not-exist"]}
    categories, issues = build_result_tree(case, catalog)
    assert [i.test_id for i in categories[0].items] == ["hb"]
    assert issues[0].code == "UnknownCatalogItem"


def test_enter_values_by_param_id_and_name(case, catalog):
    """Values are matched by parameter id or name; unknown tests are reported."""
    categories, _ = build_result_tree(case, catalog)
    applied, issues = enter_values(
        categories,
        {"cbc": {"cbc-rbc": "4.2", "WBC": " 7000 "}, "hb": "13.1", "nope": "1"},
    )
    found = entries_by_id(categories)
    assert applied == 3
    assert found["cbc"].params[0].value == "4.2"
    assert found["cbc"].params[2].value == "7000"
    assert found["hb"].params[0].value == "13.1"
    assert [i.item_id for i in issues] == ["nope"]


def test_rebuild_keeps_values_and_adds_new_parameter(case, catalog, cbc):
    """Values survive a rebuild after the catalog adds a parameter to the test."""
    categories, _ = build_result_tree(case, catalog)
    enter_values(categories, {"cbc": {"WBC": "7000"}, "hb": "13.1"})

    cbc.parameters.append(Parameter(id="cbc-plt", order=5, name="Platelets", unit="lakh/cumm"))
    catalog.add(cbc)
    rebuilt, _ = rebuild_result_tree(case, catalog, categories)

    found = entries_by_id(rebuilt)
    params = {p.name: p.value for p in found["cbc"].params}
    assert params["WBC"] == "7000"
    assert params["Platelets"] == ""
    assert found["hb"].params[0].value == "13.1"


def test_carry_over_matches_by_identity_not_position(case, catalog):
    """Reordering the selection does not shift values between tests."""
    categories, _ = build_result_tree(case, catalog)
    enter_values(categories, {"hb": "13.1", "tc": "180"})

    case.tests = {"Biochemistry": ["lipid"], "Haematology": ["hb", "cbc"]}
    rebuilt, _ = build_result_tree(case, catalog)
    kept = carry_over_values(rebuilt, categories)

    found = entries_by_id(rebuilt)
    assert kept == 2
    assert found["hb"].params[0].value == "13.1"
    assert found["tc"].params[0].value == "180"
    assert found["cbc"].params[0].value == ""


@pytest.mark.parametrize("dob, reference", [("2024-01-01", "-"), ("1990-01-01", "12 - 18")])
def test_age_from_date_of_birth(case, catalog, dob, reference):
    """Date of birth, when present, decides the age used for ranges."""
    from datetime import date

    case.patient.date_of_birth = dob
    case.tests = {"Haematology": ["hb"]}
    catalog.add(
        TestDefinition.model_validate(
            {
                "id": "hb",
                "type": "single",
                "name": "Hemoglobin",
                "referenceRanges": [{"sex": "Female", "minAge": 12, "maxAge": 100, "lower": 12, "upper": 18}],
            }
        )
    )
    categories, _ = build_result_tree(case, catalog, on=date(2025, 6, 1))
    assert categories[0].items[0].params[0].reference == reference


def test_catalog_fixture_loaded(catalog):
    """The shared catalog holds tests, panels and packages."""
    assert isinstance(catalog, InMemoryCatalog)
    assert len(catalog) == 10


def test_enter_numeric_and_unusable_values(case, catalog):
    """Numbers from JSON bundles are stored as text; other shapes are reported per test."""
    categories, _ = build_result_tree(case, catalog)
    applied, issues = enter_values(categories, {"hb": 13.4, "tc": 190, "hdl": ["50"]})

    found = entries_by_id(categories)
    assert applied == 2
    assert found["hb"].params[0].value == "13.4"
    assert found["tc"].params[0].value == "190"
    assert found["hdl"].params[0].value == ""
    assert [(i.item_id, i.code) for i in issues] == [("hdl", "InvalidResultValue")]
