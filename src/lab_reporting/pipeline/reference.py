"""Reference range resolution for test parameters.

A range matches a patient when its sex is "Any" or the patient's own and
the patient's age (in days) lies inside the range's age window. When
several match, the most specific one wins: exact sex before "Any", then the
narrowest window, then the most recently defined range. Text ranges carry
no sex or age window and are chosen by recency alone.
"""

from __future__ import annotations

import logging
import math
from typing import Literal

from pydantic import BaseModel

from lab_reporting.schemas.catalog import Parameter, ReferenceRange, TestDefinition
from lab_reporting.schemas.config import ReportingConfig

logger = logging.getLogger(__name__)


class ResolvedReference(BaseModel):
    which: Literal["Numeric", "Text", "None"]
    lower: float | None = None
    upper: float | None = None
    text_value: str | None = None
    display_text: str

    @property
    def found(self) -> bool:
        return self.which != "None"


NO_REFERENCE = ResolvedReference(which="None", display_text="-")


def age_to_days(age: float, unit: str, config: ReportingConfig | None = None) -> float:
    config = config or ReportingConfig()
    if unit == "Days":
        return age
    if unit == "Months":
        return age * config.days_per_month
    return age * config.days_per_year


def format_number(value: float) -> str:
    return f"{value:g}"


def format_numeric(lower: float | None, upper: float | None) -> str:
    if lower is not None and upper is not None:
        return f"{format_number(lower)} - {format_number(upper)}"
    if lower is not None:
        return f"> {format_number(lower)}"
    if upper is not None:
        return f"< {format_number(upper)}"
    return "-"


def _window(rng: ReferenceRange, config: ReportingConfig) -> tuple[float, float]:
    low = age_to_days(rng.min_age, rng.min_unit, config)
    high = math.inf if rng.max_age is None else age_to_days(rng.max_age, rng.max_unit, config)
    return low, high


def _to_resolved(rng: ReferenceRange) -> ResolvedReference:
    if rng.which == "Text":
        display = rng.display_text or rng.text_value or "-"
        return ResolvedReference(which="Text", text_value=rng.text_value, display_text=display)
    display = rng.display_text or format_numeric(rng.lower, rng.upper)
    return ResolvedReference(
        which="Numeric", lower=rng.lower, upper=rng.upper, display_text=display
    )


def _recency(position: int, rng: ReferenceRange) -> tuple[float, int]:
    stamp = rng.created_at.timestamp() if rng.created_at else -math.inf
    return stamp, position


def resolve_reference(
    ranges: list[ReferenceRange],
    sex: str | None,
    age_in_days: float | None,
    which: Literal["Numeric", "Text"] = "Numeric",
    config: ReportingConfig | None = None,
) -> ResolvedReference:
    config = config or ReportingConfig()
    candidates = [(i, r) for i, r in enumerate(ranges) if r.which == which]

    if which == "Text":
        if not candidates:
            return NO_REFERENCE
        _, best = max(candidates, key=lambda c: _recency(*c))
        return _to_resolved(best)

    if age_in_days is None:
        logger.debug("reference: patient age unknown, numeric ranges skipped")
        return NO_REFERENCE

    scored = []
    for position, rng in candidates:
        if rng.sex != "Any" and rng.sex != sex:
            continue
        low, high = _window(rng, config)
        if not low <= age_in_days <= high:
            continue
        specificity = 0 if rng.sex == "Any" else 1
        scored.append(((specificity, -(high - low)), _recency(position, rng), rng))

    if not scored:
        return NO_REFERENCE

    scored.sort(key=lambda s: (s[0], s[1]), reverse=True)
    if len(scored) > 1 and scored[0][0] == scored[1][0]:
        logger.warning(
            "reference: %d ranges equally specific for sex=%s age=%.0fd, using most recent",
            sum(1 for s in scored if s[0] == scored[0][0]),
            sex,
            age_in_days,
        )
    return _to_resolved(scored[0][2])


def resolve_parameter_reference(
    test: TestDefinition,
    parameter: Parameter | None,
    sex: str | None,
    age_in_days: float | None,
    config: ReportingConfig | None = None,
) -> ResolvedReference:
    """Resolve a parameter's range, falling back to the test-level ranges.

    ``parameter`` is None for tests reported as a single implicit value.
    """
    which = parameter.value_type if parameter else test.value_type
    if parameter is not None:
        specific = [r for r in test.reference_ranges if r.parameter_name == parameter.name]
        resolved = resolve_reference(specific, sex, age_in_days, which, config)
        if resolved.found:
            return resolved

    generic = [r for r in test.reference_ranges if r.parameter_name is None]
    resolved = resolve_reference(generic, sex, age_in_days, which, config)
    if not resolved.found:
        logger.info(
            "reference: no range for %s%s (sex=%s)",
            test.name,
            f" / {parameter.name}" if parameter else "",
            sex,
        )
    return resolved
