"""Case creation and editing."""

from __future__ import annotations

import logging
import random
import threading
from typing import Any, Protocol

from pydantic import ValidationError

from lab_reporting.errors import InvalidInputError
from lab_reporting.pipeline.identifiers import CaseIndex, CounterStore, assign_identifiers
from lab_reporting.pipeline.payment import apply_payment
from lab_reporting.schemas.case import Case
from lab_reporting.schemas.config import ReportingConfig

logger = logging.getLogger(__name__)

_EDITABLE = ("patient", "tests", "categories", "created_at", "report_status", "whatsapp_triggers")


class CaseStore(CaseIndex, Protocol):
    def save(self, case: Case) -> Case: ...


class InMemoryCaseStore:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._cases: dict[str, Case] = {}
        self._reg_nos: set[tuple[str, str]] = set()

    def reg_no_exists(self, branch_id: str, reg_no: str) -> bool:
        with self._lock:
            return (branch_id, reg_no) in self._reg_nos

    def save(self, case: Case) -> Case:
        with self._lock:
            if case.id is None:
                case.id = f"case-{len(self._cases) + 1}"
            self._cases[case.id] = case
            self._reg_nos.add((case.branch_id, case.reg_no))
        return case

    def get(self, case_id: str) -> Case | None:
        with self._lock:
            return self._cases.get(case_id)

    def __len__(self) -> int:
        return len(self._cases)


def normalize_tests(tests: Any) -> dict[str, list[str]]:
    """Category -> id list; anything that is not a list becomes empty."""
    if not isinstance(tests, dict):
        return {}
    return {
        str(category): [str(i) for i in ids] if isinstance(ids, list) else []
        for category, ids in tests.items()
    }


def _check_top_level(payload: dict[str, Any]) -> None:
    if not payload.get("branch_id") and not payload.get("branchId"):
        raise InvalidInputError("Branch ID is required")
    if not payload.get("patient"):
        raise InvalidInputError("Patient details are required")


def create_case(
    payload: dict[str, Any] | Case,
    store: CaseStore,
    counters: CounterStore,
    config: ReportingConfig | None = None,
    rng: random.Random | None = None,
) -> Case:
    """Validate a submitted case, stamp identifiers and payment, and save it."""
    if isinstance(payload, Case):
        if not payload.branch_id:
            raise InvalidInputError("Branch ID is required")
        case = payload
    else:
        _check_top_level(payload)
        data = dict(payload)
        data["tests"] = normalize_tests(data.get("tests"))
        try:
            case = Case.model_validate(data)
        except ValidationError as exc:
            raise InvalidInputError("Invalid case data", {"errors": exc.errors()}) from exc

    apply_payment(case, status=None)
    assign_identifiers(case, store, counters, config, rng)
    store.save(case)
    logger.info("cases: created %s for branch %s (%s)", case.reg_no, case.branch_id, case.status)
    return case


def update_case(case: Case, changes: dict[str, Any]) -> Case:
    """Apply an edit to ``case``; reg_no and dcn are never regenerated.

    Payment changes recompute balance and, unless ``status`` is part of the
    same edit, re-derive the status. A status edited on its own is stored
    as given.
    """
    status = changes.get("status")
    try:
        for field in _EDITABLE:
            if field in changes:
                value = changes[field]
                setattr(case, field, normalize_tests(value) if field == "tests" else value)

        if changes.get("payment") is not None:
            apply_payment(case, changes["payment"], status=status)
        elif status is not None:
            case.status = status
    except ValidationError as exc:
        raise InvalidInputError("Invalid case edit", {"errors": exc.errors()}) from exc

    logger.debug("cases: updated %s (%s)", case.reg_no, ", ".join(sorted(changes)))
    return case
