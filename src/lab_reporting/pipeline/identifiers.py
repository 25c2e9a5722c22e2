"""Registration number and document control number (DCN) generation."""

from __future__ import annotations

import logging
import random
import threading
from collections import defaultdict
from typing import Iterable, Protocol

from lab_reporting.errors import IdentifierExhaustion
from lab_reporting.schemas.case import Case
from lab_reporting.schemas.config import ReportingConfig

logger = logging.getLogger(__name__)

DCN_PREFIXES = {
    "LAB": "L",
    "TMT": "T",
    "ECG": "E",
    "ECHO": "EH",
    "USG": "U",
    "XRAY": "X",
    "OUTSOURCE": "O",
    "OTHERS": "OT",
}


class CounterStore(Protocol):
    def increment_and_get(self, name: str) -> int:
        """Atomically increment the named counter (created at 0) and return the new value."""
        ...


class CaseIndex(Protocol):
    def reg_no_exists(self, branch_id: str, reg_no: str) -> bool: ...


class InMemoryCounterStore:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._counters: dict[str, int] = defaultdict(int)

    def increment_and_get(self, name: str) -> int:
        with self._lock:
            self._counters[name] += 1
            return self._counters[name]

    def peek(self, name: str) -> int:
        with self._lock:
            return self._counters[name]


def dcn_counter_name(category: str) -> str:
    return f"dcn:{category}"


def generate_reg_no(
    branch_id: str,
    index: CaseIndex,
    config: ReportingConfig | None = None,
    rng: random.Random | None = None,
) -> str:
    """Draw a 9-digit registration number not yet used within ``branch_id``.

    Check-and-retry, not a transaction: concurrent creations only collide if
    two draws pick the same number between check and save.
    """
    config = config or ReportingConfig()
    rng = rng or random.SystemRandom()

    for attempt in range(1, config.reg_no_max_attempts + 1):
        reg_no = str(rng.randint(config.reg_no_min, config.reg_no_max))
        if not index.reg_no_exists(branch_id, reg_no):
            if attempt > 1:
                logger.info("identifiers: regNo for branch %s found after %d draws", branch_id, attempt)
            return reg_no

    logger.error(
        "identifiers: regNo space exhausted for branch %s (%d attempts)",
        branch_id,
        config.reg_no_max_attempts,
    )
    raise IdentifierExhaustion(branch_id, config.reg_no_max_attempts)


def generate_dcn(categories: Iterable[str], counters: CounterStore) -> str:
    codes: list[str] = []
    for category in categories:
        prefix = DCN_PREFIXES.get(category)
        if prefix is None:
            logger.debug("identifiers: no DCN prefix for category %r, skipped", category)
            continue
        seq = counters.increment_and_get(dcn_counter_name(category))
        codes.append(f"{prefix}{seq:02d}")
    return ", ".join(codes)


def assign_identifiers(
    case: Case,
    index: CaseIndex,
    counters: CounterStore,
    config: ReportingConfig | None = None,
    rng: random.Random | None = None,
) -> Case:
    """Stamp ``reg_no`` and ``dcn`` on a new case; identifiers already set are kept."""
    if not case.reg_no:
        case.reg_no = generate_reg_no(case.branch_id, index, config, rng)
    if case.dcn is None:
        case.dcn = generate_dcn(case.categories, counters)
    logger.info("identifiers: case regNo=%s dcn=%r", case.reg_no, case.dcn)
    return case
