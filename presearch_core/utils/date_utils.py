"""
Date parsing helpers used when normalising upstream results.
"""

import re
from datetime import date, datetime, timedelta, timezone
from typing import Optional, Union

_RELATIVE_AGE = re.compile(
    r"^\s*(\d+)\s+(minute|hour|day|week|month|year)s?\s+ago\s*$", re.I
)
_UNIT_DAYS = {
    "minute": 1 / 1440,
    "hour": 1 / 24,
    "day": 1,
    "week": 7,
    "month": 30,
    "year": 365,
}


def get_current_utc() -> datetime:
    return datetime.now(timezone.utc)


def safe_parse_date(
    raw: Optional[Union[str, datetime, date]],
    *,
    now: Optional[datetime] = None,
) -> Optional[datetime]:
    """
    Parse various date formats into timezone-aware datetime.

    Supports:
    - ISO format strings
    - datetime/date objects
    - Year-only strings (YYYY)
    - Year-month strings (YYYY-MM)
    - Relative ages such as "3 days ago"

    Returns:
        Timezone-aware datetime or None if parsing fails
    """
    if raw is None:
        return None

    if isinstance(raw, datetime):
        if raw.tzinfo is None:
            return raw.replace(tzinfo=timezone.utc)
        return raw

    if isinstance(raw, date):
        return datetime(raw.year, raw.month, raw.day, tzinfo=timezone.utc)

    if not isinstance(raw, str):
        return None

    raw = raw.strip()
    if not raw:
        return None

    m = _RELATIVE_AGE.match(raw)
    if m:
        days = int(m.group(1)) * _UNIT_DAYS[m.group(2).lower()]
        return (now or get_current_utc()) - timedelta(days=days)

    try:
        dt = datetime.fromisoformat(raw.replace("Z", "+00:00"))
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=timezone.utc)
        return dt
    except ValueError:
        pass

    m = re.match(r"^\s*(\d{4})\s*$", raw)
    if m:
        return datetime(int(m.group(1)), 1, 1, tzinfo=timezone.utc)

    m = re.match(r"^\s*(\d{4})-(\d{1,2})\s*$", raw)
    if m:
        try:
            return datetime(int(m.group(1)), int(m.group(2)), 1, tzinfo=timezone.utc)
        except ValueError:
            return None

    return None


def is_recent(
    raw: Optional[Union[str, datetime, date]],
    *,
    days: int = 30,
    now: Optional[datetime] = None,
) -> bool:
    """True when ``raw`` parses to a moment within the last ``days`` days."""
    parsed = safe_parse_date(raw, now=now)
    if parsed is None:
        return False
    current = now or get_current_utc()
    return (current - parsed) < timedelta(days=days)
