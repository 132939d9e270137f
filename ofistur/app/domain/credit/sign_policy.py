"""
Sign policy for credit entries.

Entries store an absolute amount; their effect on the account balance is
amount * sign(doc_type). Changing an entry's doc_type therefore changes
its effect without touching the amount.
"""

import enum
from decimal import Decimal
from typing import Optional

from ofistur.app.core.exceptions import LedgerValidationError


class DocType(str, enum.Enum):
    INVESTMENT = "investment"
    RECEIPT = "receipt"
    ADJUST_UP = "adjust_up"
    ADJUST_DOWN = "adjust_down"
    MANUAL = "manual"
    OPERATOR_DUE = "operator_due"
    BOOKING = "booking"


DEFAULT_DOC_TYPE = DocType.MANUAL.value

DOC_SIGN = {
    DocType.INVESTMENT.value: -1,
    DocType.RECEIPT.value: 1,
    DocType.ADJUST_UP.value: 1,
    DocType.ADJUST_DOWN.value: -1,
}

ADJUSTMENT_DOC_TYPES = frozenset({DocType.ADJUST_UP.value, DocType.ADJUST_DOWN.value})

KNOWN_DOC_TYPES = frozenset(d.value for d in DocType)


def normalize(doc_type: Optional[str]) -> str:
    return (doc_type or "").strip().lower()


def sign_for_doc_type(doc_type: Optional[str]) -> int:
    """Multiplier for a doc_type. Empty and unknown tags count as +1."""
    return DOC_SIGN.get(normalize(doc_type), 1)


def signed_delta(amount: Decimal, doc_type: Optional[str]) -> Decimal:
    """Balance effect of an entry: abs(amount) * sign(doc_type)."""
    return abs(Decimal(amount)) * sign_for_doc_type(doc_type)


def is_adjustment(doc_type: Optional[str]) -> bool:
    return normalize(doc_type) in ADJUSTMENT_DOC_TYPES


def normalize_doc_type(
    raw: Optional[str],
    strict: bool,
    default: Optional[str] = DEFAULT_DOC_TYPE
) -> Optional[str]:
    """
    Clean a caller-supplied doc_type.

    Blank input yields `default`. With `strict`, tags outside DocType are
    rejected instead of silently counting as +1.
    """
    value = normalize(raw)
    if not value:
        return default
    if strict and value not in KNOWN_DOC_TYPES:
        raise LedgerValidationError(
            "doc_type",
            f"Unknown doc_type '{raw}'. Allowed: {', '.join(sorted(KNOWN_DOC_TYPES))}"
        )
    return value
