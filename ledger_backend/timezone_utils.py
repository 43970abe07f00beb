from __future__ import annotations

import os
from datetime import date, datetime, time
from typing import Optional, Union

from zoneinfo import ZoneInfo

LOCAL_TZ = ZoneInfo(os.getenv("LEDGER_TIMEZONE", "Asia/Kolkata"))


DatetimeLike = Optional[Union[datetime, date]]


def now_local() -> datetime:
    return datetime.now(tz=LOCAL_TZ)


def ensure_local_datetime(value: DatetimeLike) -> Optional[datetime]:
    if value is None:
        return None
    if isinstance(value, date) and not isinstance(value, datetime):
        return datetime.combine(value, time.min, tzinfo=LOCAL_TZ)
    if value.tzinfo is None:
        # naive values coming back from the database are already shop-local
        return value.replace(tzinfo=LOCAL_TZ)
    return value.astimezone(LOCAL_TZ)


def parse_datetime_value(raw: str) -> datetime:
    """Parse a date or datetime string into a shop-local aware datetime."""
    text = (raw or "").strip()
    if not text:
        raise ValueError("Empty date value")
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        # Common case: YYYY-MM-DD input from date pickers
        return datetime.combine(date.fromisoformat(text), time.min, tzinfo=LOCAL_TZ)
    except ValueError:
        pass
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError as exc:
        raise ValueError("Invalid date format") from exc
    converted = ensure_local_datetime(parsed)
    if converted is None:
        raise ValueError("Invalid date value")
    return converted
