import re
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Optional

LOOKBACK_RE = re.compile(r"^(\d+)d$")


@dataclass(frozen=True)
class Period:
    """Half-open datetime window ``[start, end)``."""

    start: datetime
    end: datetime


def resolve_lookback(period: Optional[str], now: datetime) -> Optional[datetime]:
    if not period:
        return None
    match = LOOKBACK_RE.match(period.strip())
    if not match:
        raise ValueError("Period must look like '<N>d', e.g. '30d'")
    try:
        return now - timedelta(days=int(match.group(1)))
    except OverflowError as exc:
        raise ValueError(f"Period {period!r} reaches too far back") from exc


def _parse_day(value: str, label: str) -> date:
    try:
        return date.fromisoformat(value.strip())
    except ValueError as exc:
        raise ValueError(f"{label} must be a YYYY-MM-DD date") from exc


def resolve_report_range(start: Optional[str], end: Optional[str]) -> Period:
    if not start or not end:
        raise ValueError("startDate and endDate are required")
    start_day = _parse_day(start, "startDate")
    end_day = _parse_day(end, "endDate")
    if start_day > end_day:
        raise ValueError("startDate must not be after endDate")
    # End day is inclusive through its last instant.
    try:
        end_exclusive = end_day + timedelta(days=1)
    except OverflowError as exc:
        raise ValueError("endDate is out of range") from exc
    return Period(
        datetime.combine(start_day, time.min),
        datetime.combine(end_exclusive, time.min),
    )
