from dataclasses import dataclass
from datetime import date, datetime
from typing import Optional
from zoneinfo import ZoneInfo

from config import get_settings


@dataclass(frozen=True)
class DateRange:
    start: Optional[date] = None
    end: Optional[date] = None


def local_today() -> date:
    tz = ZoneInfo(get_settings().timezone)
    return datetime.now(tz).date()


def _parse_day(value: Optional[str], label: str) -> Optional[date]:
    if not value:
        return None
    raw = value.strip()
    try:
        # Accept full ISO timestamps as well as plain dates.
        if "T" in raw:
            return datetime.fromisoformat(raw.replace("Z", "+00:00")).date()
        return date.fromisoformat(raw)
    except ValueError as exc:
        raise ValueError(f"Invalid {label}: {value}") from exc


def resolve_range(start: Optional[str], end: Optional[str]) -> DateRange:
    start_date = _parse_day(start, "start date")
    end_date = _parse_day(end, "end date")
    if start_date and end_date and start_date > end_date:
        raise ValueError("Start date must be before end date")
    return DateRange(start_date, end_date)


def trailing_year(today: Optional[date] = None) -> DateRange:
    today = today or local_today()
    try:
        start = today.replace(year=today.year - 1)
    except ValueError:
        # Feb 29
        start = today.replace(year=today.year - 1, day=28)
    return DateRange(start, today)
