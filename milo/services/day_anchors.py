"""Calendar-day lookup for the Spanish day words the resolver handles itself.

``find_day_anchor`` maps "hoy", "mañana", "pasado mañana", weekdays,
"el 3", "20 de noviembre", "en 2 días" and "la semana que viene" onto a
date relative to ``today``. Anything it does not recognize is left to
dateparser by the caller.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import date, timedelta
import re
import unicodedata

WEEKDAY_NUMBERS = {
    "lunes": 0,
    "martes": 1,
    "miercoles": 2,
    "jueves": 3,
    "viernes": 4,
    "sabado": 5,
    "domingo": 6,
}
MONTH_NUMBERS = {
    "enero": 1,
    "febrero": 2,
    "marzo": 3,
    "abril": 4,
    "mayo": 5,
    "junio": 6,
    "julio": 7,
    "agosto": 8,
    "septiembre": 9,
    "setiembre": 9,
    "octubre": 10,
    "noviembre": 11,
    "diciembre": 12,
}
_NUMBER_WORDS = {"un": 1, "una": 1, "dos": 2, "tres": 3}

_WEEKDAYS = "|".join(WEEKDAY_NUMBERS)
_MONTHS = "|".join(MONTH_NUMBERS)

_MONTH_DATE_PATTERN = re.compile(
    rf"\b(\d{{1,2}})\s+de\s+({_MONTHS})\b(?:\s+(?:de\s+|del\s+)?(\d{{4}}))?",
)
_WEEKDAY_WITH_DAY_PATTERN = re.compile(rf"\b(?:{_WEEKDAYS})\s+(\d{{1,2}})\b(?!:)")
_DAY_OF_MONTH_PATTERN = re.compile(r"\bel\s+(?:dia\s+)?(\d{1,2})\b(?!:)")
_WEEKDAY_PATTERN = re.compile(rf"\b({_WEEKDAYS})\b")
_NEXT_WEEK_PATTERN = re.compile(r"\b(?:(?:la\s+)?semana\s+que\s+viene|(?:la\s+)?proxima\s+semana)\b")
_IN_DAYS_PATTERN = re.compile(r"\ben\s+(\d{1,3}|un|una|dos|tres)\s+dias?\b")
_DAY_AFTER_TOMORROW_PATTERN = re.compile(r"\bpasado\s+manana\b")
# "por la mañana" / "de la mañana" name a part of the day, not tomorrow.
_TOMORROW_PATTERN = re.compile(r"(?<!la )\bmanana\b")
_TODAY_PATTERN = re.compile(r"\bhoy\b")
_RELATIVE_OFFSET_PATTERN = re.compile(
    r"\ben\s+(?:(media)\s+(hora)|(\d{1,3}|un|una|dos|tres)\s+(horas?|minutos?|mins?))\b",
)


@dataclass(frozen=True)
class DayAnchor:
    day: date
    # Next candidate day when the resolved time on ``day`` already passed.
    advance: Callable[[date], date] | None = None


def fold(text: str) -> str:
    """Lowercase and drop accents so ``Miércoles`` matches ``miercoles``."""
    decomposed = unicodedata.normalize("NFKD", text.lower())
    return "".join(char for char in decomposed if not unicodedata.combining(char))


def find_day_anchor(text: str, today: date) -> DayAnchor | None:
    folded = fold(text)

    match = _MONTH_DATE_PATTERN.search(folded)
    if match:
        return _month_date_anchor(
            int(match.group(1)),
            MONTH_NUMBERS[match.group(2)],
            int(match.group(3)) if match.group(3) else None,
            today,
        )

    match = _WEEKDAY_WITH_DAY_PATTERN.search(folded) or _DAY_OF_MONTH_PATTERN.search(folded)
    if match:
        return _day_of_month_anchor(int(match.group(1)), today)

    match = _NEXT_WEEK_PATTERN.search(folded)
    if match:
        return DayAnchor(day=today + timedelta(days=7 - today.weekday()))

    match = _WEEKDAY_PATTERN.search(folded)
    if match:
        target = WEEKDAY_NUMBERS[match.group(1)]
        return DayAnchor(
            day=today + timedelta(days=(target - today.weekday()) % 7),
            advance=lambda day: day + timedelta(days=7),
        )

    match = _IN_DAYS_PATTERN.search(folded)
    if match:
        return DayAnchor(day=today + timedelta(days=_to_number(match.group(1))))

    if _DAY_AFTER_TOMORROW_PATTERN.search(folded):
        return DayAnchor(day=today + timedelta(days=2))
    if _TOMORROW_PATTERN.search(folded):
        return DayAnchor(day=today + timedelta(days=1))
    if _TODAY_PATTERN.search(folded):
        return DayAnchor(day=today)
    return None


def find_relative_offset(text: str) -> timedelta | None:
    """``en 2 horas`` -> 2h, ``en media hora`` -> 30min."""
    match = _RELATIVE_OFFSET_PATTERN.search(fold(text))
    if not match:
        return None
    if match.group(1):
        return timedelta(minutes=30)
    amount = _to_number(match.group(3))
    if match.group(4).startswith("hora"):
        return timedelta(hours=amount)
    return timedelta(minutes=amount)


def _month_date_anchor(day: int, month: int, year: int | None, today: date) -> DayAnchor | None:
    if year is not None:
        candidate = _safe_date(year, month, day)
        return DayAnchor(day=candidate) if candidate else None

    for offset in range(0, 5):
        candidate = _safe_date(today.year + offset, month, day)
        if candidate and candidate >= today:
            return DayAnchor(day=candidate, advance=_next_yearly)
    return None


def _day_of_month_anchor(day: int, today: date) -> DayAnchor | None:
    candidate = _next_monthly(today, day, include_current=True)
    if candidate is None:
        return None
    return DayAnchor(
        day=candidate,
        advance=lambda current: _next_monthly(current, day, include_current=False) or current,
    )


def _next_monthly(start: date, day: int, *, include_current: bool) -> date | None:
    year, month = start.year, start.month
    for _ in range(13):
        candidate = _safe_date(year, month, day)
        if candidate and (candidate > start or (include_current and candidate == start)):
            return candidate
        month += 1
        if month > 12:
            year, month = year + 1, 1
    return None


def _next_yearly(current: date) -> date:
    for offset in range(1, 9):
        candidate = _safe_date(current.year + offset, current.month, current.day)
        if candidate:
            return candidate
    return current


def _safe_date(year: int, month: int, day: int) -> date | None:
    try:
        return date(year, month, day)
    except ValueError:
        return None


def _to_number(raw_value: str) -> int:
    if raw_value in _NUMBER_WORDS:
        return _NUMBER_WORDS[raw_value]
    return int(raw_value)
