"""Normalization rules for Spanish time phrases.

Each rule is a pure ``str -> str`` function. ``NORMALIZATION_RULES`` lists
them in the order they must run: later rules rely on the canonical
``H:MM`` tokens produced by earlier ones.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
import re

NormalizationRule = Callable[[str], str]

DEFAULT_TIME_SUFFIX = " a las 9:00"

_WEEKDAYS = r"lunes|martes|mi[eé]rcoles|jueves|viernes|s[aá]bado|domingo"

_HOUR_MINUTES_HS_PATTERN = re.compile(r"(?<![\d:])(\d{1,2}):(\d{2})\s*hs?\b", re.IGNORECASE)
_HOUR_HS_PATTERN = re.compile(r"(?<![\d:])(\d{1,2})\s*hs?\b", re.IGNORECASE)
_AFTERNOON_PATTERN = re.compile(
    r"(?<![\d:])(\d{1,2})(?::(\d{2}))?\s*de\s+la\s+(?:tarde|noche)\b",
    re.IGNORECASE,
)
_MORNING_PATTERN = re.compile(
    r"(?<![\d:])(\d{1,2})(?::(\d{2}))?\s*de\s+la\s+ma[ñn]ana\b",
    re.IGNORECASE,
)
_A_LAS_PATTERN = re.compile(r"\ba\s+las?\s+(\d{1,2})(?![\d:])", re.IGNORECASE)
_QUE_VIENE_PATTERN = re.compile(rf"\b({_WEEKDAYS})\s+que\s+viene\b", re.IGNORECASE)
_BARE_HOUR_RANGE_PATTERN = re.compile(
    r"\bde\s+(\d{1,2})(?::(\d{2}))?\s*(-|\ba\b|\bhasta\b)\s*(?:las?\s+)?(\d{1,2})(?::(\d{2}))?(?![\d:])",
    re.IGNORECASE,
)

TIME_TOKEN_PATTERN = re.compile(r"\d{1,2}:\d{2}")
# A number counts as a day ("el 3") unless it is an hour or a duration.
DAY_TOKEN_PATTERN = re.compile(
    rf"\b(?:{_WEEKDAYS}|ma[ñn]ana|hoy|pasado"
    r"|\d{1,2}(?![\d:]|\s*(?:hs?|horas?|min|minutos?)\b))\b",
    re.IGNORECASE,
)


def collapse_hs_suffix(text: str) -> str:
    """``20:30hs`` -> ``20:30`` and ``20 hs`` -> ``20:00``."""
    text = _HOUR_MINUTES_HS_PATTERN.sub(r"\1:\2", text)
    return _HOUR_HS_PATTERN.sub(r"\1:00", text)


def rewrite_part_of_day(text: str) -> str:
    """``8 de la noche`` -> ``20:00``; ``8 de la mañana`` -> ``8:00``."""

    def _to_afternoon(match: re.Match[str]) -> str:
        hour = int(match.group(1))
        minutes = match.group(2) or "00"
        if hour < 12:
            hour += 12
        return f"{hour}:{minutes}"

    def _to_morning(match: re.Match[str]) -> str:
        return f"{int(match.group(1))}:{match.group(2) or '00'}"

    text = _AFTERNOON_PATTERN.sub(_to_afternoon, text)
    return _MORNING_PATTERN.sub(_to_morning, text)


def complete_hour_range(text: str) -> str:
    """``de 10 a 12`` -> ``de 10:00 a 12:00``."""

    def _to_clock_range(match: re.Match[str]) -> str:
        start = f"{int(match.group(1))}:{match.group(2) or '00'}"
        end = f"{int(match.group(4))}:{match.group(5) or '00'}"
        return f"de {start} a {end}"

    return _BARE_HOUR_RANGE_PATTERN.sub(_to_clock_range, text)


def complete_a_las_hour(text: str) -> str:
    """``a las 15`` -> ``a las 15:00``."""
    return _A_LAS_PATTERN.sub(r"a las \1:00", text)


def rewrite_weekday_que_viene(text: str) -> str:
    """``viernes que viene`` -> ``próximo viernes``."""
    return _QUE_VIENE_PATTERN.sub(r"próximo \1", text)


NORMALIZATION_RULES: tuple[NormalizationRule, ...] = (
    collapse_hs_suffix,
    rewrite_part_of_day,
    complete_hour_range,
    complete_a_las_hour,
    rewrite_weekday_que_viene,
)


def normalize_time_phrase(
    phrase: str,
    rules: Sequence[NormalizationRule] = NORMALIZATION_RULES,
) -> str:
    text = phrase.strip()
    for rule in rules:
        text = rule(text)
    return text


def has_time_token(text: str) -> bool:
    return TIME_TOKEN_PATTERN.search(text) is not None


def has_day_token(text: str) -> bool:
    return DAY_TOKEN_PATTERN.search(text) is not None


def apply_default_time(text: str) -> str:
    """Day without a time of day means 9 AM."""
    if has_day_token(text) and not has_time_token(text):
        return f"{text}{DEFAULT_TIME_SUFFIX}"
    return text
