"""Shared date utilities for schedule calculations"""

import re
from datetime import date, datetime, timedelta
from typing import Optional, Union

from ..config import JOB_TIME_OF_DAY

DAYS_OF_WEEK = ["Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday"]

_LEGACY_DATE_RE = re.compile(r"^(\d{1,2})[/-](\d{1,2})[/-](\d{4})$")


def parse_flexible_date(value: Union[str, date, datetime, None]) -> Optional[date]:
    """
    Parse a stored date value into a calendar date.

    Accepts:
        - ``yyyy-MM-dd`` (date inputs / stored plan dates)
        - ISO datetimes (``2024-01-01T09:00:00``), time part is dropped
        - legacy ``dd/MM/yyyy`` or ``dd-MM-yyyy``

    Returns None for anything unparseable.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str):
        return None

    s = value.strip()
    if not s:
        return None

    match = _LEGACY_DATE_RE.match(s)
    if match:
        dd, mm, yyyy = (int(part) for part in match.groups())
        if yyyy < 1900:
            return None
        try:
            return date(yyyy, mm, dd)
        except ValueError:
            return None

    try:
        return date.fromisoformat(s[:10])
    except ValueError:
        return None


def date_part(value: Optional[str]) -> Optional[str]:
    """Return the ``yyyy-MM-dd`` part of a stored ISO date or datetime string"""
    if not value or not isinstance(value, str):
        return None
    return value.split("T")[0]


def format_date(value: date) -> str:
    return value.strftime("%Y-%m-%d")


def format_scheduled_time(value: date) -> str:
    """Jobs are stored at a fixed time of day"""
    return f"{format_date(value)}T{JOB_TIME_OF_DAY}"


def week_start(value: date) -> date:
    """Monday of the week containing ``value``"""
    return value - timedelta(days=value.weekday())


def weekday_name(value: date) -> str:
    return DAYS_OF_WEEK[value.weekday()]
