"""Helpers for month_date keys (first day of a calendar month)."""

import re
from datetime import date, datetime, timezone
from typing import Optional, Tuple

from fastapi import status

from tarot_panel.core.exceptions import ServiceError

_MONTH_DATE_RE = re.compile(r"^(\d{4})-(\d{2})-01$")
_LOOSE_MONTH_RE = re.compile(r"^(\d{4})-(\d{2})(?:-(\d{2}))?$")

SPANISH_MONTHS = [
    "enero", "febrero", "marzo", "abril", "mayo", "junio",
    "julio", "agosto", "septiembre", "octubre", "noviembre", "diciembre",
]


def month_start(d: date) -> date:
    return date(d.year, d.month, 1)


def current_month() -> date:
    return month_start(datetime.now(timezone.utc).date())


def next_month(m: date) -> date:
    if m.month == 12:
        return date(m.year + 1, 1, 1)
    return date(m.year, m.month + 1, 1)


def previous_month(m: date) -> date:
    if m.month == 1:
        return date(m.year - 1, 12, 1)
    return date(m.year, m.month - 1, 1)


def month_bounds(m: date) -> Tuple[datetime, datetime]:
    """UTC [start, end) datetimes of the month containing ``m``."""
    start = month_start(m)
    end = next_month(start)
    return (
        datetime(start.year, start.month, 1, tzinfo=timezone.utc),
        datetime(end.year, end.month, 1, tzinfo=timezone.utc),
    )


def parse_month_date(value: Optional[str], error: str = "BAD_MONTH_DATE") -> date:
    """Strict ``YYYY-MM-01`` parser."""
    m = _MONTH_DATE_RE.match((value or "").strip())
    if not m:
        raise ServiceError(error, status.HTTP_400_BAD_REQUEST)
    year, month = int(m.group(1)), int(m.group(2))
    if not 1 <= month <= 12:
        raise ServiceError(error, status.HTTP_400_BAD_REQUEST)
    return date(year, month, 1)


def parse_month(value: Optional[str], default: Optional[date] = None, error: str = "BAD_MONTH") -> Optional[date]:
    """Loose parser for query params: ``YYYY-MM`` or any ``YYYY-MM-DD`` of the month."""
    if value is None or not str(value).strip():
        return default
    m = _LOOSE_MONTH_RE.match(str(value).strip())
    if not m:
        raise ServiceError(error, status.HTTP_400_BAD_REQUEST)
    year, month = int(m.group(1)), int(m.group(2))
    if not 1 <= month <= 12:
        raise ServiceError(error, status.HTTP_400_BAD_REQUEST)
    return date(year, month, 1)


def month_label_es(m: date) -> str:
    """Spanish long month label, e.g. ``febrero de 2026``."""
    return f"{SPANISH_MONTHS[m.month - 1]} de {m.year}"
