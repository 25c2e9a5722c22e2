from dataclasses import dataclass


@dataclass
class ReportingConfig:
    reg_no_min: int = 700_000_000
    reg_no_max: int = 799_999_999
    reg_no_max_attempts: int = 1000
    days_per_month: int = 30
    days_per_year: int = 365
    default_group: str = "Ungrouped"
    no_reference_text: str = "-"
    formula_precision: int = 2
    page_width_cm: float = 21.0  # A4
    page_height_cm: float = 29.7
