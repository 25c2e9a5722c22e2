from __future__ import annotations

from datetime import date, datetime
from typing import Literal

from pydantic import Field

from lab_reporting.schemas.base import CamelModel

CATEGORY_CODES = ("LAB", "TMT", "ECG", "ECHO", "USG", "XRAY", "OUTSOURCE", "OTHERS")

AgeUnit = Literal["Days", "Months", "Years"]
Sex = Literal["Male", "Female", "Other"]
CaseStatus = Literal["due", "no due", "cancelled", "refund"]
ReportStatus = Literal["New", "In Progress", "Signed Off"]
PaymentMode = Literal["cash", "card", "upi"]


class Patient(CamelModel):
    mobile: str
    title: str | None = None
    first_name: str
    last_name: str | None = None
    age: float | None = Field(default=None, ge=0)
    age_unit: AgeUnit = "Years"
    date_of_birth: date | None = None
    sex: Sex | None = None
    uhid: str | None = None
    doctor: str | None = None
    agent: str | None = None
    center: str = "Main"
    online_report: bool = False
    email: str | None = None
    address: str | None = None
    aadhaar: str | None = None
    history: str | None = None

    @property
    def full_name(self) -> str:
        return " ".join(p for p in (self.first_name, self.last_name) if p)

    def age_in_days(
        self, on: date | None = None, days_per_month: int = 30, days_per_year: int = 365
    ) -> float | None:
        """Patient age in days; date of birth wins over the recorded age."""
        if self.date_of_birth is not None:
            return float(((on or date.today()) - self.date_of_birth).days)
        if self.age is None:
            return None
        multiplier = {"Days": 1, "Months": days_per_month, "Years": days_per_year}
        return self.age * multiplier[self.age_unit]


class Payment(CamelModel):
    total: float = Field(default=0, ge=0)
    discount: float = Field(default=0, ge=0)
    received: float = Field(default=0, ge=0)
    balance: float = 0
    mode: PaymentMode = "cash"
    remarks: str | None = None


class WhatsappTrigger(CamelModel):
    trigger_type: str
    enabled: bool = True
    template_id: str | None = None


class Case(CamelModel):
    id: str | None = None
    reg_no: str | None = None
    dcn: str | None = None
    branch_id: str
    patient: Patient
    tests: dict[str, list[str]] = {}  # category name -> test/panel/package ids
    categories: list[str] = []
    payment: Payment = Field(default_factory=Payment)
    status: CaseStatus = "due"
    report_status: ReportStatus = "New"
    created_at: datetime = Field(default_factory=datetime.now)
    whatsapp_triggers: list[WhatsappTrigger] = []
