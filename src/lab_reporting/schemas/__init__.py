"""Schema definitions for cases, catalog entries, results and report documents."""
from lab_reporting.schemas.case import Case, Patient, Payment, WhatsappTrigger
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
from lab_reporting.schemas.document import DocumentModel
from lab_reporting.schemas.pipeline import ItemIssue, ResultOutcome, RunOutcome, StageResult
from lab_reporting.schemas.print_settings import Letterhead, PrintSettings, Signature
from lab_reporting.schemas.result import (
    BundleEntry,
    CategoryResult,
    ParamEntry,
    Result,
    ResultPatient,
    TestEntry,
)

__all__ = [
    "Case", "Patient", "Payment", "WhatsappTrigger",
    "Formula", "FormulaDependency", "Package", "Panel", "Parameter",
    "ReferenceRange", "TestDefinition",
    "ReportingConfig",
    "DocumentModel",
    "ItemIssue", "ResultOutcome", "RunOutcome", "StageResult",
    "Letterhead", "PrintSettings", "Signature",
    "BundleEntry", "CategoryResult", "ParamEntry", "Result", "ResultPatient", "TestEntry",
]
