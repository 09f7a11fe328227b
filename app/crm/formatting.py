"""Display helpers, registered as Jinja filters in create_app()."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal

EMPTY = "-"


def money(value) -> str:
    """5000 -> "$5,000"; 1234.5 -> "$1,234.50"; empty/zero -> "-"."""
    if not value:
        return EMPTY
    amount = Decimal(str(value))
    if amount == amount.to_integral_value():
        return f"${int(amount):,}"
    return f"${amount:,.2f}"


def money_total(value) -> str:
    """Dashboard totals always carry two decimals."""
    return f"${Decimal(str(value or 0)):,.2f}"


def stage_label(stage: str | None) -> str:
    if not stage:
        return EMPTY
    return stage.replace("_", " ", 1).upper()


def percent(value) -> str:
    if not value:
        return EMPTY
    return f"{value}%"


def _coerce(value):
    if isinstance(value, str):
        try:
            return datetime.fromisoformat(value)
        except ValueError:
            return None
    return value


def short_date(value) -> str:
    """Jan 5, 2026"""
    value = _coerce(value)
    if not isinstance(value, (date, datetime)):
        return EMPTY
    return f"{value:%b} {value.day}, {value.year}"


def short_datetime(value) -> str:
    """Jan 5, 2026 3:04 PM"""
    value = _coerce(value)
    if not isinstance(value, datetime):
        return short_date(value)
    hour = value.hour % 12 or 12
    return f"{value:%b} {value.day}, {value.year} {hour}:{value:%M} {value:%p}"
