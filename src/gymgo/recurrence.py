from __future__ import annotations

import enum
import logging
import re
from dataclasses import dataclass
from datetime import UTC, date, datetime, time, timedelta, tzinfo
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dateutil import parser as date_parser
from dateutil.rrule import FR, MO, SA, SU, TH, TU, WE, WEEKLY, rrule
from dateutil.tz import datetime_exists, resolve_imaginary

from gymgo.logging_config import log_with_fields

logger = logging.getLogger("gymgo.recurrence")

# 0 = Sunday, matching the class_templates.day_of_week column.
DAY_OF_WEEK_LABELS: tuple[str, ...] = ("Sun", "Mon", "Tue", "Wed", "Thu", "Fri", "Sat")
_RRULE_WEEKDAYS = (SU, MO, TU, WE, TH, FR, SA)

_TIME_OF_DAY_RE = re.compile(r"^([01]?\d|2[0-3]):([0-5]\d)(?::([0-5]\d))?$")


class MaterializationInputError(ValueError):
    """Request input rejected before anything is read or written."""


class PeriodKeyword(enum.StrEnum):
    week = "week"
    two_weeks = "two_weeks"
    month = "month"


_PERIOD_DAYS: dict[PeriodKeyword, int] = {
    PeriodKeyword.week: 7,
    PeriodKeyword.two_weeks: 14,
    PeriodKeyword.month: 30,
}


@dataclass(frozen=True, slots=True)
class Period:
    """A half-open ``[start, end)`` window of calendar dates."""

    keyword: PeriodKeyword
    start: date
    end: date

    @property
    def last_day(self) -> date:
        return self.end - timedelta(days=1)


def parse_period_keyword(raw: str | PeriodKeyword) -> PeriodKeyword:
    if isinstance(raw, PeriodKeyword):
        return raw
    try:
        return PeriodKeyword(raw.strip().lower())
    except ValueError as exc:
        raise MaterializationInputError(f"Invalid period: {raw!r}") from exc


def parse_start_date(raw: str | date | None) -> date | None:
    if raw is None:
        return None
    if isinstance(raw, datetime):
        return raw.date()
    if isinstance(raw, date):
        return raw

    value = raw.strip()
    if not value:
        return None
    try:
        return date_parser.isoparse(value).date()
    except ValueError as exc:
        raise MaterializationInputError(f"Invalid start date: {raw!r}") from exc


def resolve_period(
    keyword: str | PeriodKeyword,
    *,
    start_date: str | date | None,
    today: date,
) -> Period:
    selected = parse_period_keyword(keyword)
    start = parse_start_date(start_date) or today
    return Period(
        keyword=selected,
        start=start,
        end=start + timedelta(days=_PERIOD_DAYS[selected]),
    )


def enumerate_weekday(weekday: int, window_start: date, window_end: date) -> list[date]:
    """Return every date in ``[window_start, window_end]`` falling on ``weekday``.

    ``weekday`` is Sunday-based (0 = Sunday .. 6 = Saturday). Both bounds are
    inclusive; an inverted window yields an empty list.
    """

    if weekday < 0 or weekday > 6:
        raise ValueError("Invalid weekday")

    rule = rrule(
        WEEKLY,
        byweekday=_RRULE_WEEKDAYS[weekday],
        dtstart=datetime.combine(window_start, time()),
        until=datetime.combine(window_end, time()),
    )
    return [dt.date() for dt in rule]


def parse_time_of_day(value: str) -> time:
    match = _TIME_OF_DAY_RE.match(value.strip())
    if match is None:
        raise ValueError(f"Invalid time of day: {value!r}")
    hours, minutes, seconds = match.groups()
    return time(int(hours), int(minutes), int(seconds or 0))


def resolve_timezone(name: str | None, default: str) -> ZoneInfo:
    selected = (name or "").strip() or default
    try:
        return ZoneInfo(selected)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise MaterializationInputError(f"Unknown timezone: {selected!r}") from exc


def combine_date_time(day: date, time_of_day: str, zone: tzinfo) -> datetime:
    """Turn a local wall-clock time on ``day`` into a UTC instant.

    Wall-clock times inside a spring-forward gap do not exist; they are moved
    forward by the size of the gap rather than rejected.
    """

    local = datetime.combine(day, parse_time_of_day(time_of_day), tzinfo=zone)
    if not datetime_exists(local):
        resolved = resolve_imaginary(local)
        log_with_fields(
            logger,
            logging.WARNING,
            "nonexistent local time moved forward",
            day=day.isoformat(),
            requested=time_of_day,
            resolved=f"{resolved:%H:%M}",
            timezone=str(zone),
        )
        local = resolved
    return local.astimezone(UTC)
