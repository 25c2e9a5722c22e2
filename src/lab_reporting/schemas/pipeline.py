from __future__ import annotations

from typing import Any

from pydantic import BaseModel

from lab_reporting.schemas.case import Case
from lab_reporting.schemas.document import DocumentModel
from lab_reporting.schemas.result import Result


class ItemIssue(BaseModel):
    """A per-item problem that did not stop the rest of the build."""

    item_id: str
    item_name: str | None = None
    code: str
    message: str


class StageResult(BaseModel):
    stage_name: str
    input_summary: str
    output: dict[str, Any] = {}
    issues: list[ItemIssue] = []
    reasoning: str
    timing_seconds: float


class ResultOutcome(BaseModel):
    result: Result
    stages: list[StageResult]

    @property
    def issues(self) -> list[ItemIssue]:
        return [issue for stage in self.stages for issue in stage.issues]


class RunOutcome(BaseModel):
    source: str
    case: Case | None = None
    result: Result | None = None
    document: DocumentModel | None = None
    stages: list[StageResult] = []
    total_time_seconds: float
    success: bool
    error: str | None = None
