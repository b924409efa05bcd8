"""Natural-language date and time resolution.

Expressions are matched against an ordered table of ``(pattern, handler)``
pairs. Order is a precedence contract: specific phrases ("next friday") come
before the general ones they contain ("friday"), and the first handler that
produces a date wins.
"""

import calendar
import logging
import re
from dataclasses import dataclass, replace
from datetime import date, datetime, timedelta, timezone as dt_timezone
from re import Match, Pattern
from typing import Callable, List, Optional, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from ..models.context import TemporalContext

logger = logging.getLogger(__name__)

# Sunday-first, matching the week arithmetic below
WEEKDAYS = ["sunday", "monday", "tuesday", "wednesday", "thursday", "friday", "saturday"]
MONTHS = ["january", "february", "march", "april", "may", "june", "july",
          "august", "september", "october", "november", "december"]
# Years scanned for the next valid month-day; covers the 8-year leap gap around 2100
LEAP_YEAR_SEARCH = 9

_WEEKDAY = "(monday|tuesday|wednesday|thursday|friday|saturday|sunday)"
_MONTH = "(" + "|".join(MONTHS) + ")"


@dataclass(frozen=True)
class ResolvedDate:
    date: datetime
    confidence: float
    original_text: str
    interpretation: str


Handler = Callable[[Match, datetime], Optional[ResolvedDate]]


def sunday_first_weekday(value: datetime) -> int:
    """Day of week with Sunday=0 ... Saturday=6."""
    return (value.weekday() + 1) % 7


def iso_weekday(value: datetime) -> int:
    """Day of week with Monday=1 ... Sunday=7."""
    return value.isoweekday()


def add_months(value: datetime, months: int) -> datetime:
    """Shift by whole months, clamping the day to the target month's length."""
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


def end_of_month(value: datetime) -> datetime:
    return value.replace(day=calendar.monthrange(value.year, value.month)[1])


def _midnight(value: datetime, on: date) -> datetime:
    return value.replace(year=on.year, month=on.month, day=on.day,
                         hour=0, minute=0, second=0, microsecond=0)


def _clock_hour(hour: int, period: Optional[str]) -> int:
    period = (period or "").lower()
    if period == "pm" and hour < 12:
        return hour + 12
    if period == "am" and hour == 12:
        return 0
    return hour


class TemporalResolver:
    """Resolves date expressions against a ``TemporalContext``."""

    def __init__(self):
        self.patterns: List[Tuple[Pattern, Handler]] = [
            # Relative days
            (re.compile(r"\b(today|this day)\b", re.I), self._today),
            (re.compile(r"\b(tomorrow|next day)\b", re.I), self._tomorrow),
            (re.compile(r"\b(yesterday|last day)\b", re.I), self._yesterday),
            # Relative weekdays
            (re.compile(rf"\bnext {_WEEKDAY}\b", re.I), self._next_weekday),
            (re.compile(rf"\bthis {_WEEKDAY}\b", re.I), self._this_weekday),
            (re.compile(rf"\blast {_WEEKDAY}\b", re.I), self._last_weekday),
            (re.compile(rf"\b{_WEEKDAY}\b", re.I), self._bare_weekday),
            # Weeks and months
            (re.compile(r"\bnext week\b", re.I), self._next_week),
            (re.compile(r"\bthis week\b", re.I), self._this_week),
            (re.compile(r"\blast week\b", re.I), self._last_week),
            (re.compile(r"\bnext month\b", re.I), self._next_month),
            (re.compile(r"\bthis month\b", re.I), self._this_month),
            (re.compile(r"\blast month\b", re.I), self._last_month),
            # Offsets
            (re.compile(r"\bin (\d+) (day|days)\b", re.I), self._in_days),
            (re.compile(r"\bin (\d+) (week|weeks)\b", re.I), self._in_weeks),
            (re.compile(r"\bin (\d+) (month|months)\b", re.I), self._in_months),
            # Deadlines
            (re.compile(rf"\bby (next )?{_WEEKDAY}\b", re.I), self._by_weekday),
            (re.compile(r"\bby (tomorrow|next week|next month)\b", re.I), self._by_relative),
            (re.compile(r"\bby (?:the )?end of (this|next)? ?(week|month)\b", re.I), self._by_end_of),
            # Calendar dates
            (re.compile(r"\b(\d{1,2})/(\d{1,2})/(\d{4}|\d{2})\b"), self._numeric_date),
            (re.compile(rf"\b{_MONTH} (\d{{1,2}})\b", re.I), self._month_day),
            # Clock times
            (re.compile(r"\bat (\d{1,2}):(\d{2})\s?(am|pm)?\b", re.I), self._time_spec),
            (re.compile(r"\bat (\d{1,2})\s?(am|pm)\b", re.I), self._simple_time),
        ]
        self.fallback_phrases: List[Tuple[str, Callable[[datetime], datetime]]] = [
            ("end of week", lambda base: base + timedelta(days=7 - sunday_first_weekday(base))),
            ("start of week", lambda base: base + timedelta(
                days=1 if sunday_first_weekday(base) == 0 else 8 - sunday_first_weekday(base))),
            ("end of day", lambda base: base.replace(hour=23, minute=59, second=59, microsecond=999000)),
        ]

    def get_current_temporal_context(self, timezone: str = "UTC",
                                     now: Optional[datetime] = None) -> TemporalContext:
        """Snapshot "now" in the given IANA timezone, with default business hours."""
        try:
            tz = ZoneInfo(timezone)
        except (ZoneInfoNotFoundError, ValueError):
            logger.warning(f"Unknown timezone '{timezone}', using UTC")
            tz, timezone = dt_timezone.utc, "UTC"
        current = now.astimezone(tz) if now is not None else datetime.now(tz)
        return TemporalContext(current_time=current, timezone=timezone)

    def resolve_date(self, text: str, context: TemporalContext) -> Optional[ResolvedDate]:
        """Resolve one expression, trying patterns in order, then fixed phrases.

        Returns:
            ResolvedDate whose ``original_text`` is the trimmed input, or None
        """
        original_text = text.strip()
        lower_text = original_text.lower()
        base = context.current_time

        for pattern, handler in self.patterns:
            match = pattern.search(lower_text)
            if match is None:
                continue
            resolved = handler(match, base)
            if resolved is not None:
                logger.debug(f"Resolved '{original_text}' to {resolved.date.isoformat()} "
                             f"({resolved.interpretation}, {resolved.confidence})")
                return replace(resolved, original_text=original_text)

        for phrase, calculate in self.fallback_phrases:
            if phrase in lower_text:
                return ResolvedDate(calculate(base), 0.7, original_text, phrase)

        logger.debug(f"Could not resolve date expression: '{original_text}'")
        return None

    def resolve_dates_in_text(self, text: str, context: TemporalContext) -> List[ResolvedDate]:
        """Find every non-overlapping date expression in ``text``.

        Patterns claim character ranges in table order, so a span consumed by
        "next friday" is not resolved again as "friday". Results are returned
        in the order they appear in the text.
        """
        claimed: List[Tuple[int, int]] = []
        found: List[Tuple[int, ResolvedDate]] = []

        for pattern, _ in self.patterns:
            for match in pattern.finditer(text):
                start, end = match.span()
                if any(start < taken_end and end > taken_start for taken_start, taken_end in claimed):
                    continue
                resolved = self.resolve_date(match.group(0), context)
                if resolved is not None:
                    claimed.append((start, end))
                    found.append((start, resolved))

        found.sort(key=lambda item: item[0])
        return [resolved for _, resolved in found]

    # Business days

    def is_business_day(self, value: datetime, context: TemporalContext) -> bool:
        return iso_weekday(value) in context.working_days

    def get_next_business_day(self, value: datetime, context: TemporalContext) -> datetime:
        if not context.working_days:
            raise ValueError("No working days configured")
        result = value + timedelta(days=1)
        while not self.is_business_day(result, context):
            result += timedelta(days=1)
        return result

    def add_business_days(self, value: datetime, days: int, context: TemporalContext) -> datetime:
        """Advance ``days`` working days, counting only days in the working set."""
        if days > 0 and not context.working_days:
            raise ValueError("No working days configured")
        result = value
        added = 0
        while added < days:
            result += timedelta(days=1)
            if self.is_business_day(result, context):
                added += 1
        return result

    # Handlers

    def _today(self, match: Match, base: datetime) -> ResolvedDate:
        return ResolvedDate(base, 1.0, match.group(0), "Today")

    def _tomorrow(self, match: Match, base: datetime) -> ResolvedDate:
        return ResolvedDate(base + timedelta(days=1), 1.0, match.group(0), "Tomorrow")

    def _yesterday(self, match: Match, base: datetime) -> ResolvedDate:
        return ResolvedDate(base - timedelta(days=1), 1.0, match.group(0), "Yesterday")

    def _next_occurrence(self, weekday: str, base: datetime, text: str) -> ResolvedDate:
        days = WEEKDAYS.index(weekday) - sunday_first_weekday(base)
        if days <= 0:
            days += 7
        return ResolvedDate(base + timedelta(days=days), 0.95, text, f"Next {weekday}")

    def _this_occurrence(self, weekday: str, base: datetime, text: str) -> ResolvedDate:
        days = WEEKDAYS.index(weekday) - sunday_first_weekday(base)
        return ResolvedDate(base + timedelta(days=days), 0.9, text, f"This {weekday}")

    def _next_weekday(self, match: Match, base: datetime) -> ResolvedDate:
        return self._next_occurrence(match.group(1).lower(), base, match.group(0))

    def _this_weekday(self, match: Match, base: datetime) -> ResolvedDate:
        return self._this_occurrence(match.group(1).lower(), base, match.group(0))

    def _last_weekday(self, match: Match, base: datetime) -> ResolvedDate:
        weekday = match.group(1).lower()
        days = sunday_first_weekday(base) - WEEKDAYS.index(weekday)
        if days <= 0:
            days += 7
        return ResolvedDate(base - timedelta(days=days), 0.9, match.group(0), f"Last {weekday}")

    def _bare_weekday(self, match: Match, base: datetime) -> ResolvedDate:
        return self._next_occurrence(match.group(1).lower(), base, match.group(0))

    def _next_week(self, match: Match, base: datetime) -> ResolvedDate:
        return ResolvedDate(base + timedelta(days=7), 0.8, match.group(0), "Next week (same day)")

    def _this_week(self, match: Match, base: datetime) -> ResolvedDate:
        days = 5 - sunday_first_weekday(base)
        return ResolvedDate(base + timedelta(days=days), 0.7, match.group(0), "This week (Friday)")

    def _last_week(self, match: Match, base: datetime) -> ResolvedDate:
        return ResolvedDate(base - timedelta(days=7), 0.8, match.group(0), "Last week (same day)")

    def _next_month(self, match: Match, base: datetime) -> ResolvedDate:
        return ResolvedDate(add_months(base, 1), 0.8, match.group(0), "Next month (same day)")

    def _this_month(self, match: Match, base: datetime) -> ResolvedDate:
        return ResolvedDate(end_of_month(base), 0.7, match.group(0), "End of this month")

    def _last_month(self, match: Match, base: datetime) -> ResolvedDate:
        return ResolvedDate(add_months(base, -1), 0.8, match.group(0), "Last month (same day)")

    def _in_days(self, match: Match, base: datetime) -> ResolvedDate:
        days = int(match.group(1))
        return ResolvedDate(base + timedelta(days=days), 0.95, match.group(0),
                            f"In {days} day{'s' if days > 1 else ''}")

    def _in_weeks(self, match: Match, base: datetime) -> ResolvedDate:
        weeks = int(match.group(1))
        return ResolvedDate(base + timedelta(weeks=weeks), 0.9, match.group(0),
                            f"In {weeks} week{'s' if weeks > 1 else ''}")

    def _in_months(self, match: Match, base: datetime) -> ResolvedDate:
        months = int(match.group(1))
        return ResolvedDate(add_months(base, months), 0.85, match.group(0),
                            f"In {months} month{'s' if months > 1 else ''}")

    def _by_weekday(self, match: Match, base: datetime) -> ResolvedDate:
        weekday = match.group(2).lower()
        if match.group(1):
            return self._next_occurrence(weekday, base, match.group(0))
        return self._this_occurrence(weekday, base, match.group(0))

    def _by_relative(self, match: Match, base: datetime) -> ResolvedDate:
        reference = match.group(1).lower()
        if reference == "next week":
            return ResolvedDate(base + timedelta(days=7), 0.8, match.group(0), "Next week (same day)")
        if reference == "next month":
            return ResolvedDate(add_months(base, 1), 0.8, match.group(0), "Next month (same day)")
        return ResolvedDate(base + timedelta(days=1), 1.0, match.group(0), "Tomorrow")

    def _by_end_of(self, match: Match, base: datetime) -> ResolvedDate:
        is_next = (match.group(1) or "").lower() == "next"
        period = match.group(2).lower()
        if period == "week":
            # Weeks end on Sunday
            result = base + timedelta(days=7 - sunday_first_weekday(base))
            if is_next:
                result += timedelta(days=7)
        else:
            result = end_of_month(add_months(base, 1) if is_next else base)
        return ResolvedDate(result, 0.85, match.group(0),
                            f"By end of {'next' if is_next else 'this'} {period}")

    def _numeric_date(self, match: Match, base: datetime) -> Optional[ResolvedDate]:
        month, day, year = int(match.group(1)), int(match.group(2)), int(match.group(3))
        if year < 100:
            year += 2000 if year < 50 else 1900
        try:
            target = date(year, month, day)
        except ValueError:
            return None
        return ResolvedDate(_midnight(base, target), 0.95, match.group(0),
                            f"Specific date: {match.group(0)}")

    def _month_day(self, match: Match, base: datetime) -> Optional[ResolvedDate]:
        month_name = match.group(1).lower()
        day = int(match.group(2))
        month = MONTHS.index(month_name) + 1
        if day < 1:
            return None
        # Next occurrence on or after today; february 29 waits for a leap year
        for year in range(base.year, base.year + LEAP_YEAR_SEARCH):
            if day > calendar.monthrange(year, month)[1]:
                continue
            target = date(year, month, day)
            if target >= base.date():
                return ResolvedDate(_midnight(base, target), 0.9, match.group(0), f"{month_name} {day}")
        return None

    def _time_spec(self, match: Match, base: datetime) -> Optional[ResolvedDate]:
        hour, minute = int(match.group(1)), int(match.group(2))
        period = match.group(3)
        adjusted = _clock_hour(hour, period)
        if adjusted > 23 or minute > 59:
            return None
        result = base.replace(hour=adjusted, minute=minute, second=0, microsecond=0)
        return ResolvedDate(result, 0.9, match.group(0),
                            f"Time: {hour}:{minute:02d} {(period or '').lower()}".rstrip())

    def _simple_time(self, match: Match, base: datetime) -> Optional[ResolvedDate]:
        hour = int(match.group(1))
        period = match.group(2)
        adjusted = _clock_hour(hour, period)
        if adjusted > 23:
            return None
        result = base.replace(hour=adjusted, minute=0, second=0, microsecond=0)
        return ResolvedDate(result, 0.85, match.group(0), f"Time: {hour} {period.lower()}")
