from __future__ import annotations

import logging
import time
from datetime import date
from typing import Any

from lab_reporting.catalog import InMemoryCatalog
from lab_reporting.errors import EvaluationError
from lab_reporting.pipeline.cases import InMemoryCaseStore, create_case
from lab_reporting.pipeline.compose import compose_report
from lab_reporting.pipeline.formula import FormulaRegistry
from lab_reporting.pipeline.identifiers import CounterStore, InMemoryCounterStore
from lab_reporting.pipeline.results import run_result_pipeline
from lab_reporting.schemas.config import ReportingConfig
from lab_reporting.schemas.pipeline import ItemIssue, RunOutcome, StageResult
from lab_reporting.schemas.print_settings import Letterhead, PrintSettings, Signature

logger = logging.getLogger(__name__)


def load_formulas(catalog: InMemoryCatalog) -> tuple[FormulaRegistry, list[ItemIssue]]:
    """Register the catalog's formulas, reporting the ones that are rejected."""
    registry = FormulaRegistry()
    issues = []
    for formula in catalog.formulas:
        try:
            registry.register(formula)
        except EvaluationError as exc:
            issues.append(
                ItemIssue(
                    item_id=formula.test_id,
                    item_name=formula.test_name,
                    code=exc.kind.value,
                    message=exc.message,
                )
            )
    return registry, issues


def run_bundle(
    bundle: dict[str, Any],
    source: str = "<bundle>",
    config: ReportingConfig | None = None,
    counters: CounterStore | None = None,
    on: date | None = None,
) -> RunOutcome:
    """Run a case through registration, result building and report composition.

    ``bundle`` holds ``case``, ``catalog``, ``values``, ``printSettings``,
    ``letterhead``, ``signatures`` and ``publicUrl`` documents.
    """
    config = config or ReportingConfig()
    counters = counters or InMemoryCounterStore()
    run_start = time.time()
    stages: list[StageResult] = []
    case = result = None

    try:
        catalog = InMemoryCatalog.from_documents(bundle.get("catalog", {}))
        registry, formula_issues = load_formulas(catalog)

        logger.info("runner: [1/3] case")
        start = time.time()
        case = create_case(bundle.get("case") or {}, InMemoryCaseStore(), counters, config)
        stages.append(
            StageResult(
                stage_name="case",
                input_summary=f"case for branch {case.branch_id}",
                output={"regNo": case.reg_no, "dcn": case.dcn, "balance": case.payment.balance},
                issues=formula_issues,
                reasoning=f"Registered {case.reg_no} ({case.status}), {len(registry)} formulas active",
                timing_seconds=time.time() - start,
            )
        )

        logger.info("runner: [2/3] result")
        outcome = run_result_pipeline(
            case, catalog, registry, bundle.get("values") or {}, config=config, on=on
        )
        stages.extend(outcome.stages)
        result = outcome.result

        logger.info("runner: [3/3] compose")
        start = time.time()
        document = compose_report(
            result,
            PrintSettings.model_validate(bundle.get("printSettings") or {}),
            Letterhead.model_validate(bundle["letterhead"]) if bundle.get("letterhead") else None,
            [Signature.model_validate(s) for s in bundle.get("signatures", [])],
            public_url=bundle.get("publicUrl"),
            config=config,
        )
        stages.append(
            StageResult(
                stage_name="compose",
                input_summary=f"{len(result.categories)} result categories",
                output={"sections": len(document.sections), "abnormal": document.summary.abnormal_count},
                reasoning=f"Composed {len(document.sections)} sections, {document.summary.abnormal_count} abnormal tests",
                timing_seconds=time.time() - start,
            )
        )

        total_time = time.time() - run_start
        logger.info("runner: complete in %.2fs", total_time)
        return RunOutcome(
            source=source,
            case=case,
            result=result,
            document=document,
            stages=stages,
            total_time_seconds=total_time,
            success=True,
        )
    except Exception as exc:
        logger.error("runner: %s failed - %s", source, exc)
        return RunOutcome(
            source=source,
            case=case,
            result=result,
            stages=stages,
            total_time_seconds=time.time() - run_start,
            success=False,
            error=str(exc),
        )
