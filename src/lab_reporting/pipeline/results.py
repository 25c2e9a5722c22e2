from __future__ import annotations

import logging
import time
from datetime import date, datetime
from typing import Mapping

from lab_reporting.catalog import CatalogLookup
from lab_reporting.errors import InvalidInputError
from lab_reporting.pipeline.formula import FormulaRegistry, apply_formulas
from lab_reporting.pipeline.tree import build_result_tree, enter_values, rebuild_result_tree
from lab_reporting.schemas.case import Case
from lab_reporting.schemas.config import ReportingConfig
from lab_reporting.schemas.pipeline import ResultOutcome, StageResult
from lab_reporting.schemas.result import CategoryResult, Result, ResultPatient, iter_category_tests

logger = logging.getLogger(__name__)


def patient_snapshot(case: Case) -> ResultPatient:
    patient = case.patient
    return ResultPatient(
        first_name=patient.first_name,
        last_name=patient.last_name or "",
        age=patient.age,
        age_unit=patient.age_unit,
        sex=patient.sex,
        doctor=patient.doctor or "",
        uhid=patient.uhid or "",
        reg_no=case.reg_no or "",
    )


def derive_result_status(categories: list[CategoryResult]) -> str:
    """Completed once every required parameter of every displayed test has a value."""
    for _, entry in iter_category_tests(categories):
        if not entry.display_in_report:
            continue
        if any(not p.value and not p.is_optional for p in entry.params):
            return "Pending"
    return "Completed"


def run_result_pipeline(
    case: Case,
    catalog: CatalogLookup,
    formulas: FormulaRegistry,
    values: Mapping[str, str | Mapping[str, str]] | None = None,
    previous: Result | None = None,
    entered_by: str | None = None,
    config: ReportingConfig | None = None,
    on: date | None = None,
) -> ResultOutcome:
    """Build (or rebuild) the result of ``case`` and fill in entered and derived values.

    Stages: tree -> values -> formulas. Per-item problems are reported on
    the stage that found them; only a case without id/regNo or patient is
    rejected outright.
    """
    config = config or ReportingConfig()
    report_id = case.id or case.reg_no
    if not report_id:
        raise InvalidInputError("Case must be saved before results are entered")
    if not case.branch_id:
        raise InvalidInputError("Branch ID is required")

    stages: list[StageResult] = []

    start = time.time()
    if previous is None:
        categories, issues = build_result_tree(case, catalog, config, on)
    else:
        categories, issues = rebuild_result_tree(case, catalog, previous.categories, config, on)
    test_count = sum(1 for _ in iter_category_tests(categories))
    stages.append(
        StageResult(
            stage_name="tree",
            input_summary=f"{sum(len(ids) for ids in case.tests.values())} selected items in {len(case.tests)} categories",
            output={"categories": len(categories), "tests": test_count, "rebuilt": previous is not None},
            issues=issues,
            reasoning=f"Expanded selection into {test_count} tests ({len(issues)} items skipped)",
            timing_seconds=time.time() - start,
        )
    )

    start = time.time()
    applied, issues = enter_values(categories, values or {})
    stages.append(
        StageResult(
            stage_name="values",
            input_summary=f"{len(values or {})} submitted tests",
            output={"applied": applied},
            issues=issues,
            reasoning=f"Applied {applied} entered values",
            timing_seconds=time.time() - start,
        )
    )

    start = time.time()
    computed, issues = apply_formulas(categories, formulas, config.formula_precision)
    stages.append(
        StageResult(
            stage_name="formulas",
            input_summary=f"{len(formulas)} registered formulas",
            output={"computed": computed, "failed": len(issues)},
            issues=issues,
            reasoning=f"Computed {computed} derived values, {len(issues)} unavailable",
            timing_seconds=time.time() - start,
        )
    )

    now = datetime.now(previous.created_at.tzinfo if previous else None)
    result = Result(
        report_id=report_id,
        report_no=case.reg_no or "",
        branch_id=case.branch_id,
        patient=patient_snapshot(case),
        categories=categories,
        entered_by=entered_by or (previous.entered_by if previous else None),
        status=derive_result_status(categories),
        created_at=previous.created_at if previous else now,
        updated_at=now if previous else None,
    )
    logger.info(
        "results: %s %s - %d tests, status %s",
        "rebuilt" if previous else "built",
        result.report_no,
        test_count,
        result.status,
    )
    return ResultOutcome(result=result, stages=stages)
