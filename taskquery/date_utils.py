# taskquery/date_utils.py

from __future__ import annotations
from typing import Optional, Tuple
from datetime import datetime, date, timedelta
import calendar
import re


MONTH_PATTERN = (
    r"(jan|january|feb|february|mar|march|apr|april|may|jun|june|jul|july|aug|august|"
    r"sep|sept|september|oct|october|nov|november|dec|december)"
)
WEEKDAY_PATTERN = r"(monday|mon|tuesday|tue|tues|wednesday|wed|thursday|thu|thur|thurs|friday|fri|saturday|sat|sunday|sun)"

ISO_DATE_RE = re.compile(r"\b(\d{4})-(\d{1,2})-(\d{1,2})\b")
US_DATE_RE = re.compile(r"\b(\d{1,2})/(\d{1,2})(?:/(\d{2,4}))?\b")
MONTH_DAY_RE = re.compile(MONTH_PATTERN + r"\s+(\d{1,2})(?:st|nd|rd|th)?(?:,?\s*(\d{4}))?\b", re.IGNORECASE)
RELATIVE_RE = re.compile(r"^\+(\d+)([dwm])$")
IN_N_RE = re.compile(r"^in\s+(\d+)\s+(day|week|month)s?$")
NEXT_WEEKDAY_RE = re.compile(r"\bnext\s+" + WEEKDAY_PATTERN + r"\b", re.IGNORECASE)


def today_from(now: Optional[datetime] = None) -> date:
    return (now or datetime.now()).date()


def parse_date_expression(text: str, today: date) -> Optional[date]:
    """
    Parse a single date expression.

    Accepts:
      ISO 2025-03-01, US 3/1 or 3/1/2025, "March 1" / "Mar 1, 2025",
      relative +3d / +2w / +1m, today / tomorrow / yesterday, "next friday".
    Returns None when the expression is not a date.
    """
    t = (text or "").strip().lower()
    if not t:
        return None

    if t == "today":
        return today
    if t == "tomorrow":
        return today + timedelta(days=1)
    if t == "yesterday":
        return today - timedelta(days=1)

    m = IN_N_RE.match(t)
    if m:
        t = f"+{m.group(1)}{m.group(2)[0]}"

    m = RELATIVE_RE.match(t)
    if m:
        amount, unit = int(m.group(1)), m.group(2)
        if unit == "d":
            return today + timedelta(days=amount)
        if unit == "w":
            return today + timedelta(weeks=amount)
        return add_months(today, amount)

    m = ISO_DATE_RE.search(t)
    if m:
        return _safe_date(int(m.group(1)), int(m.group(2)), int(m.group(3)))

    m = NEXT_WEEKDAY_RE.search(t)
    if m:
        return _next_weekday(today, _weekday_to_int(m.group(1)))

    m = MONTH_DAY_RE.search(t)
    if m:
        month = _month_to_int(m.group(1))
        day = int(m.group(2))
        if m.group(3):
            return _safe_date(int(m.group(3)), month, day)
        candidate = _safe_date(today.year, month, day)
        if candidate is not None and candidate < today:
            candidate = _safe_date(today.year + 1, month, day)
        return candidate

    m = US_DATE_RE.search(t)
    if m:
        mm, dd = int(m.group(1)), int(m.group(2))
        yy = m.group(3)
        if yy is None:
            candidate = _safe_date(today.year, mm, dd)
            if candidate is not None and candidate < today:
                candidate = _safe_date(today.year + 1, mm, dd)
            return candidate
        year = int(yy)
        if year < 100:
            year += 2000
        return _safe_date(year, mm, dd)

    return None


def week_range(today: date, offset_weeks: int = 0) -> Tuple[date, date]:
    """Monday..Sunday of the week containing `today`, shifted by offset_weeks."""
    start = today - timedelta(days=today.weekday()) + timedelta(weeks=offset_weeks)
    return start, start + timedelta(days=6)


def month_range(today: date, offset_months: int = 0) -> Tuple[date, date]:
    first = add_months(today.replace(day=1), offset_months)
    last_day = calendar.monthrange(first.year, first.month)[1]
    return first, first.replace(day=last_day)


def period_bounds(term: str, today: date) -> Optional[Tuple[Optional[date], date]]:
    """
    Resolve a named period to (since, until).

    Forward-looking periods have since=None: they are open toward the past so
    overdue tasks stay inside "this week". Backward-looking periods are closed.
    """
    key = re.sub(r"[\s_]+", "-", (term or "").strip().lower())
    if key in {"today"}:
        return None, today
    if key in {"tomorrow"}:
        return None, today + timedelta(days=1)
    if key in {"week", "this-week", "thisweek"}:
        return None, week_range(today)[1]
    if key in {"next-week", "nextweek"}:
        return None, week_range(today, 1)[1]
    if key in {"month", "this-month", "thismonth"}:
        return None, month_range(today)[1]
    if key in {"next-month", "nextmonth"}:
        return None, month_range(today, 1)[1]
    if key in {"year", "this-year", "thisyear"}:
        return None, date(today.year, 12, 31)
    if key in {"last-week", "lastweek"}:
        return week_range(today, -1)
    if key in {"last-month", "lastmonth"}:
        return month_range(today, -1)
    if key in {"last-year", "lastyear"}:
        return date(today.year - 1, 1, 1), date(today.year - 1, 12, 31)
    return None


def add_months(d: date, months: int) -> date:
    month_index = d.month - 1 + months
    year = d.year + month_index // 12
    month = month_index % 12 + 1
    day = min(d.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def _safe_date(year: int, month: int, day: int) -> Optional[date]:
    try:
        return date(year, month, day)
    except ValueError:
        return None


def _weekday_to_int(day: str) -> int:
    d = day[:3].lower()
    mapping = {"mon": 0, "tue": 1, "wed": 2, "thu": 3, "fri": 4, "sat": 5, "sun": 6}
    return mapping[d]


def _next_weekday(d: date, target_weekday: int) -> date:
    days_ahead = (target_weekday - d.weekday()) % 7
    if days_ahead == 0:
        days_ahead = 7
    return d + timedelta(days=days_ahead)


def _month_to_int(month_str: str) -> int:
    return {
        "jan": 1, "feb": 2, "mar": 3, "apr": 4, "may": 5, "jun": 6,
        "jul": 7, "aug": 8, "sep": 9, "oct": 10, "nov": 11, "dec": 12,
    }[month_str.strip().lower()[:3]]
