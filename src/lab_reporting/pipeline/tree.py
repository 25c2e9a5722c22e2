"""Result tree building: case selection + catalog -> nested result categories.

Panels and packages are expanded recursively. The catalog is a graph of
references between documents and may contain cycles, so expansion tracks
the bundles currently being expanded and refuses to re-enter one of them.
"""

from __future__ import annotations

import logging
from datetime import date
from typing import Mapping

from lab_reporting.catalog import CatalogLookup
from lab_reporting.errors import StructuralError, StructuralErrorKind
from lab_reporting.pipeline.reference import resolve_parameter_reference
from lab_reporting.schemas.case import Case
from lab_reporting.schemas.catalog import Package, Panel, Parameter, TestDefinition
from lab_reporting.schemas.config import ReportingConfig
from lab_reporting.schemas.pipeline import ItemIssue
from lab_reporting.schemas.result import (
    BundleEntry,
    CategoryResult,
    ParamEntry,
    TestEntry,
    iter_category_tests,
)

logger = logging.getLogger(__name__)


class ResultTreeBuilder:
    def __init__(
        self,
        catalog: CatalogLookup,
        sex: str | None,
        age_in_days: float | None,
        config: ReportingConfig | None = None,
    ) -> None:
        self.catalog = catalog
        self.sex = sex
        self.age_in_days = age_in_days
        self.config = config or ReportingConfig()
        self.issues: list[ItemIssue] = []
        self._expanding: set[str] = set()
        self._path: list[str] = []

    def build(self, selection: Mapping[str, list[str]]) -> list[CategoryResult]:
        categories = []
        for category_name, item_ids in selection.items():
            items = self._build_items(list(item_ids), category_name)
            categories.append(CategoryResult(category_name=category_name, items=items))
        return categories

    def _build_items(self, item_ids: list[str], category_name: str) -> list[TestEntry | BundleEntry]:
        entries = self.catalog.get_many(item_ids)
        items: list[TestEntry | BundleEntry] = []

        for item_id in item_ids:
            entry = entries.get(item_id)
            if entry is None:
                logger.warning("tree: %s not found in catalog, skipped", item_id)
                self.issues.append(
                    ItemIssue(item_id=item_id, code="UnknownCatalogItem", message=f"{item_id} not in catalog")
                )
                continue

            if isinstance(entry, TestDefinition):
                items.append(self._test_entry(entry, category_name))
                continue

            if item_id in self._expanding:
                cycle = self._path[self._path.index(item_id):] + [item_id]
                raise StructuralError(StructuralErrorKind.CYCLIC_CATALOG_REFERENCE, item_id, cycle)

            self._expanding.add(item_id)
            self._path.append(item_id)
            try:
                items.append(self._bundle_entry(entry, category_name))
            except StructuralError as exc:
                if exc.item_id != item_id:
                    raise
                logger.warning("tree: dropped %s, %s", entry.name, exc.message)
                self.issues.append(
                    ItemIssue(item_id=item_id, item_name=entry.name, code=exc.kind.value, message=exc.message)
                )
            finally:
                self._expanding.discard(item_id)
                self._path.pop()

        return items

    def _bundle_entry(self, bundle: Panel | Package, category_name: str) -> BundleEntry:
        if isinstance(bundle, Panel):
            child_ids = bundle.tests
            interpretation = "" if bundle.hide_interpretation else bundle.interpretation
        else:
            child_ids = [*bundle.tests, *bundle.panels]
            interpretation = bundle.interpretation

        return BundleEntry(
            item_id=bundle.id,
            name=bundle.name,
            is_panel=isinstance(bundle, Panel),
            is_package=isinstance(bundle, Package),
            interpretation=interpretation,
            tests=self._build_items(child_ids, category_name),
        )

    def _reference_text(self, test: TestDefinition, parameter: Parameter | None) -> str:
        resolved = resolve_parameter_reference(
            test, parameter, self.sex, self.age_in_days, self.config
        )
        return resolved.display_text if resolved.found else self.config.no_reference_text

    def _test_entry(self, test: TestDefinition, category_name: str) -> TestEntry:
        if test.parameters:
            ordered = sorted(test.parameters, key=lambda p: (p.order is None, p.order or 0))
            params = [
                ParamEntry(
                    param_id=p.id or f"{test.id}_{p.name}",
                    name=p.name,
                    unit=p.unit,
                    group_by=(p.group_by or "").strip() or self.config.default_group,
                    reference=self._reference_text(test, p),
                    which=p.value_type,
                    is_optional=p.is_optional,
                )
                for p in ordered
            ]
        else:
            params = [
                ParamEntry(
                    param_id=test.id,
                    name=test.name,
                    unit=test.unit,
                    group_by=self.config.default_group,
                    value=(test.default_result or "") if test.type == "document" else "",
                    reference=self._reference_text(test, None),
                    which=test.value_type,
                )
            ]

        return TestEntry(
            test_id=test.id,
            test_name=test.name,
            short_name=test.short_name,
            category=test.category or category_name or "Other",
            interpretation=test.interpretation,
            is_formula=test.is_formula,
            display_in_report=test.display_in_report,
            params=params,
        )


def build_result_tree(
    case: Case,
    catalog: CatalogLookup,
    config: ReportingConfig | None = None,
    on: date | None = None,
) -> tuple[list[CategoryResult], list[ItemIssue]]:
    """Expand the case's selection into result categories.

    References are resolved for the patient's sex and age on ``on``
    (default today). Returns the categories and any per-item issues.
    """
    config = config or ReportingConfig()
    age_days = case.patient.age_in_days(on, config.days_per_month, config.days_per_year)
    builder = ResultTreeBuilder(catalog, case.patient.sex, age_days, config)
    categories = builder.build(case.tests)
    logger.info(
        "tree: built %d categories, %d tests, %d issues",
        len(categories),
        sum(1 for _ in iter_category_tests(categories)),
        len(builder.issues),
    )
    return categories, builder.issues


def _param_lookup(entry: TestEntry) -> dict:
    lookup: dict = {}
    for param in entry.params:
        lookup.setdefault(("id", param.param_id), param)
        lookup.setdefault(("name", param.name), param)
    return lookup


def carry_over_values(
    categories: list[CategoryResult], previous: list[CategoryResult]
) -> int:
    """Copy entered values from ``previous`` into freshly built ``categories``.

    Tests are matched by their position-independent identity (enclosing
    bundle ids + test id, falling back to the test id alone) and parameters
    by parameter id, falling back to name. Returns the number of values kept.
    """
    by_path: dict[tuple[str, ...], TestEntry] = {}
    by_test: dict[str, TestEntry] = {}
    for path, entry in iter_category_tests(previous):
        by_path.setdefault(path, entry)
        by_test.setdefault(entry.test_id, entry)

    kept = 0
    for path, entry in iter_category_tests(categories):
        old = by_path.get(path) or by_test.get(entry.test_id)
        if old is None:
            continue
        old_params = _param_lookup(old)
        for param in entry.params:
            prev = old_params.get(("id", param.param_id)) or old_params.get(("name", param.name))
            if prev is not None and prev.value:
                param.value = prev.value
                kept += 1
    return kept


def rebuild_result_tree(
    case: Case,
    catalog: CatalogLookup,
    previous: list[CategoryResult],
    config: ReportingConfig | None = None,
    on: date | None = None,
) -> tuple[list[CategoryResult], list[ItemIssue]]:
    """Rebuild the whole tree from the current catalog, keeping entered values."""
    categories, issues = build_result_tree(case, catalog, config, on)
    kept = carry_over_values(categories, previous)
    logger.info("tree: rebuild kept %d entered values", kept)
    return categories, issues


def enter_values(
    categories: list[CategoryResult],
    values: Mapping[str, str | float | Mapping[str, str]],
) -> tuple[int, list[ItemIssue]]:
    """Apply submitted values keyed by test id.

    A plain string or number sets the test's first parameter; a mapping is
    keyed by parameter id or name. Ids that match no test in the tree, and
    values of any other shape, are reported.
    """
    seen: set[str] = set()
    rejected: set[str] = set()
    issues: list[ItemIssue] = []
    applied = 0
    for _, entry in iter_category_tests(categories):
        submitted = values.get(entry.test_id)
        if submitted is None:
            continue
        seen.add(entry.test_id)
        if isinstance(submitted, (str, int, float)):
            if entry.params:
                entry.params[0].value = str(submitted).strip()
                applied += 1
            continue
        if not isinstance(submitted, Mapping):
            if entry.test_id not in rejected:
                rejected.add(entry.test_id)
                logger.warning("tree: unusable value for %s (%s)", entry.test_name, type(submitted).__name__)
                issues.append(
                    ItemIssue(
                        item_id=entry.test_id,
                        item_name=entry.test_name,
                        code="InvalidResultValue",
                        message=f"{type(submitted).__name__} is not a result value",
                    )
                )
            continue
        lookup = _param_lookup(entry)
        for key, value in submitted.items():
            param = lookup.get(("id", key)) or lookup.get(("name", key))
            if param is None:
                logger.debug("tree: %s has no parameter %r", entry.test_name, key)
                continue
            param.value = str(value).strip()
            applied += 1

    issues.extend(
        ItemIssue(item_id=test_id, code="UnknownResultTarget", message=f"{test_id} is not part of this result")
        for test_id in values
        if test_id not in seen
    )
    return applied, issues
