from __future__ import annotations

import logging
from typing import Any, Literal

from lab_reporting.schemas.case import Case, CaseStatus, Payment

logger = logging.getLogger(__name__)

_AMOUNT_FIELDS = ("total", "discount", "received")


def compute_balance(total: float, discount: float, received: float) -> float:
    """Outstanding amount; negative means the patient overpaid."""
    return round(total - discount - received, 2)


def derive_status(balance: float) -> Literal["due", "no due"]:
    return "due" if balance > 0 else "no due"


def apply_payment(
    case: Case,
    changes: dict[str, Any] | Payment | None = None,
    status: CaseStatus | None = None,
) -> Case:
    """Merge payment changes into ``case`` and recompute balance and status.

    An explicit ``status`` (e.g. an administrative "cancelled" or "refund")
    is stored as given. Without one the status is re-derived from the new
    balance, since the payment is what is being edited.
    """
    if isinstance(changes, Payment):
        changes = changes.model_dump(exclude_unset=True)
    merged = case.payment.model_dump()
    merged.update({k: v for k, v in (changes or {}).items() if v is not None})
    payment = Payment.model_validate(merged)
    payment.balance = compute_balance(payment.total, payment.discount, payment.received)

    case.payment = payment
    case.status = status or derive_status(payment.balance)
    logger.debug(
        "payment: total=%.2f discount=%.2f received=%.2f balance=%.2f status=%s",
        payment.total,
        payment.discount,
        payment.received,
        payment.balance,
        case.status,
    )
    return case
