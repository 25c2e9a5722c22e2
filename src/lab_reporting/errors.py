"""
Exception hierarchy for the reporting core.

Exception Tree::

    LabReportingError (base)
    ├── InvalidInputError
    ├── IdentifierExhaustion
    ├── EvaluationError      (kind: EvaluationErrorKind)
    └── StructuralError      (kind: StructuralErrorKind)

Only ``InvalidInputError`` and ``IdentifierExhaustion`` are request-fatal.
Evaluation and structural errors are caught per item by the result builder
and recorded as :class:`~lab_reporting.schemas.pipeline.ItemIssue` entries.
"""

from __future__ import annotations

from enum import Enum


class LabReportingError(Exception):
    """Base exception for all reporting-core errors.

    Attributes:
        message: Human-readable error description.
        details: Structured error context.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.message: str = message
        self.details: dict = details or {}
        super().__init__(self.message)

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(message={self.message!r}, details={self.details!r})"


class InvalidInputError(LabReportingError):
    """Raised when top-level input (branch, patient, case id) is missing or malformed."""


class IdentifierExhaustion(LabReportingError):
    """Raised when no unused registration number was found within the retry budget.

    Attributes:
        branch_id: Branch the registration number was drawn for.
        attempts: Number of draws made before giving up.
    """

    def __init__(self, branch_id: str, attempts: int) -> None:
        self.branch_id = branch_id
        self.attempts = attempts
        super().__init__(
            message=f"No free registration number for branch {branch_id} after {attempts} attempts",
            details={"branch_id": branch_id, "attempts": attempts},
        )


class EvaluationErrorKind(str, Enum):
    MISSING_DEPENDENCY = "MissingDependency"
    CYCLIC_DEPENDENCY = "CyclicDependency"
    DIVISION_BY_ZERO = "DivisionByZero"
    INVALID_EXPRESSION = "InvalidExpression"


class EvaluationError(LabReportingError):
    """Raised when a formula cannot be compiled, registered or evaluated."""

    def __init__(
        self, kind: EvaluationErrorKind, message: str, details: dict | None = None
    ) -> None:
        self.kind = kind
        super().__init__(message=f"{kind.value}: {message}", details=details)


class StructuralErrorKind(str, Enum):
    CYCLIC_CATALOG_REFERENCE = "CyclicCatalogReference"


class StructuralError(LabReportingError):
    """Raised when a panel or package (directly or indirectly) contains itself.

    Attributes:
        item_id: Catalog id of the bundle that closes the cycle.
        path: Ids from the outermost bundle down to the repeated one.
    """

    def __init__(self, kind: StructuralErrorKind, item_id: str, path: list[str]) -> None:
        self.kind = kind
        self.item_id = item_id
        self.path = path
        super().__init__(
            message=f"{kind.value}: {' -> '.join(path)}",
            details={"item_id": item_id, "path": path},
        )
