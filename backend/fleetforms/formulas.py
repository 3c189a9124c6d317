"""Pure formulas used by derived fields.

Every formula receives the current source values in declaration order and
returns the new value. Blank handling and rounding are applied by the
recompute engine, not here.
"""
from __future__ import annotations

import calendar
import re
from datetime import date
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Optional


def to_number(x: Any) -> Optional[float]:
    # basic helper: allow numeric strings like "12.3"
    if isinstance(x, bool):
        return None
    if isinstance(x, (int, float)):
        return x
    if isinstance(x, str):
        try:
            return float(x)
        except ValueError:
            return None
    return None


def round2(x: float) -> float:
    return float(Decimal(repr(x)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


def difference(minuend, subtrahend):
    return minuend - subtrahend


def identity(value):
    return value


def total_freight(fix_km, fix_rate, total_km, variable_rate):
    variable_km = max(0, total_km - fix_km)
    return fix_km * fix_rate + variable_km * variable_rate


def total(*charges):
    return sum(c for c in charges if c is not None)


def margin_percentage(margin, revenue):
    if not revenue:
        return None
    return 100 * margin / revenue


def add_months(start: date, months: int) -> date:
    month_index = start.month - 1 + months
    year = start.year + month_index // 12
    month = month_index % 12 + 1
    day = min(start.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def expiry_after_years(start: date, tenure_years):
    years = to_number(tenure_years)
    if years is None or years <= 0:
        return None
    return add_months(start, int(round(years * 12)))


_YEAR_RE = re.compile(r"(\d+\.?\d*)\s*(year|yr)")
_MONTH_RE = re.compile(r"(\d+\.?\d*)\s*(month|mon)")


def expiry_after_tenure(start: date, tenure_text):
    """Tenure is free text such as "1 year", "2 years" or "6 months"."""
    text = str(tenure_text).lower().strip()
    year_match = _YEAR_RE.search(text)
    if year_match:
        return add_months(start, int(round(float(year_match.group(1)) * 12)))
    month_match = _MONTH_RE.search(text)
    if month_match:
        return add_months(start, int(round(float(month_match.group(1)))))
    return None


SERVICE_CODES = {
    "Transportation": "TRANS",
    "Warehousing": "WARE",
    "Both": "BOTH",
    "Logistics": "LOG",
    "Industrial Transport": "INDTRANS",
    "Retail Distribution": "RETAIL",
    "Other": "OTHER",
}


def service_code(type_of_services):
    return SERVICE_CODES.get(type_of_services)
