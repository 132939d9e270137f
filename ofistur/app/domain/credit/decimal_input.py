"""
Parsing of user-typed numbers and dates.

Amounts arrive in either Argentine ("1.234,56") or US ("1,234.56") style.
Rules:
    - whitespace is removed
    - when both ',' and '.' appear, the last one is the decimal separator
      and the other one is a thousands separator
    - a lone ',' is the decimal separator
    - the result must match -?digits(.digits)?
"""

import re
from datetime import date, datetime
from decimal import Decimal, ROUND_HALF_UP, InvalidOperation
from typing import Any, Optional

_DECIMAL_RE = re.compile(r"^-?\d+(\.\d+)?$")
_ISO_DATE_RE = re.compile(r"^(\d{4})-(\d{2})-(\d{2})$")

CENTS = Decimal("0.01")

# Exclusive bound of a NUMERIC(18,2) column
MONEY_LIMIT = Decimal("1e16")


def normalize_decimal_string(raw: Any) -> Optional[str]:
    """Return a dot-decimal string, or None when `raw` is not a number."""
    if raw is None or isinstance(raw, bool):
        return None
    if isinstance(raw, Decimal):
        if not raw.is_finite():
            return None
        raw = format(raw, "f")
    elif isinstance(raw, (int, float)):
        if isinstance(raw, float) and raw != raw:
            return None
        raw = repr(raw) if isinstance(raw, float) else str(raw)

    s = re.sub(r"\s+", "", str(raw))
    if not s:
        return None

    has_comma = "," in s
    has_dot = "." in s

    if has_comma and has_dot:
        if s.rfind(",") > s.rfind("."):
            # 1.234,56
            s = s.replace(".", "").replace(",", ".")
        else:
            # 1,234.56
            s = s.replace(",", "")
    elif has_comma:
        s = s.replace(",", ".", 1)

    if not _DECIMAL_RE.match(s):
        return None
    return s


def parse_decimal_input(raw: Any) -> Optional[Decimal]:
    normalized = normalize_decimal_string(raw)
    if normalized is None:
        return None
    try:
        return Decimal(normalized)
    except InvalidOperation:
        return None


def quantize_money(value: Decimal) -> Decimal:
    return Decimal(value).quantize(CENTS, rounding=ROUND_HALF_UP)


def to_money(value: Decimal) -> Optional[Decimal]:
    """Round to cents. None when the result does not fit the money columns."""
    try:
        amount = quantize_money(value)
    except InvalidOperation:
        return None
    if abs(amount) >= MONEY_LIMIT:
        return None
    return amount


def parse_value_date(raw: Any) -> Optional[date]:
    """
    Parse a value date. Accepts date/datetime objects, 'YYYY-MM-DD', or an
    ISO-8601 datetime string. Returns None for anything else.
    """
    if raw is None:
        return None
    if isinstance(raw, datetime):
        return raw.date()
    if isinstance(raw, date):
        return raw

    s = str(raw).strip()
    if not s:
        return None

    m = _ISO_DATE_RE.match(s)
    try:
        if m:
            return date(int(m.group(1)), int(m.group(2)), int(m.group(3)))
        return datetime.fromisoformat(s.replace("Z", "+00:00")).date()
    except ValueError:
        return None
