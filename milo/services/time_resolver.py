from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
import logging
import re
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dateparser import DateDataParser
from dateparser.search import search_dates

from milo.services.day_anchors import DayAnchor, find_day_anchor, find_relative_offset
from milo.services.time_phrase_rules import (
    TIME_TOKEN_PATTERN,
    apply_default_time,
    has_time_token,
    normalize_time_phrase,
)

logger = logging.getLogger(__name__)

DEFAULT_EVENT_DURATION = timedelta(hours=1)
PARSER_LANGUAGES = ["es"]

_PARSER_FILLER_PATTERN = re.compile(
    r"\b(?:el|este|pr[oó]xim[oa])\s+"
    r"(?=(?:lunes|martes|mi[eé]rcoles|jueves|viernes|s[aá]bado|domingo)\b)",
    re.IGNORECASE,
)
_TIME_RANGE_PATTERN = re.compile(
    r"(?:\bde\s+)?(\d{1,2}):(\d{2})\s*(?:-|\ba\b|\bhasta\b)\s*(?:las?\s+)?(\d{1,2}):(\d{2})",
    re.IGNORECASE,
)
_TIME_ONLY_LEFTOVER_PATTERN = re.compile(r"\b(?:a|las?|de|hasta)\b|\d{1,2}:\d{2}|-", re.IGNORECASE)


class UnparseableTimeExpression(Exception):
    def __init__(self, phrase: str) -> None:
        super().__init__(f"Could not resolve a date from '{phrase}'.")
        self.phrase = phrase


@dataclass(frozen=True)
class ParsedTimeRange:
    start: datetime | None = None
    end: datetime | None = None
    timezone: str | None = None
    start_date: date | None = None
    end_date: date | None = None

    @property
    def is_all_day(self) -> bool:
        return self.start_date is not None

    @classmethod
    def timed(cls, start: datetime, end: datetime, timezone: str) -> ParsedTimeRange:
        if end <= start:
            raise ValueError("end must be after start.")
        return cls(start=start, end=end, timezone=timezone)

    @classmethod
    def all_day(cls, start_date: date) -> ParsedTimeRange:
        return cls(start_date=start_date, end_date=start_date + timedelta(days=1))

    def to_calendar_payload(self) -> dict[str, dict[str, str]]:
        if self.is_all_day:
            return {
                "start": {"date": self.start_date.isoformat()},
                "end": {"date": self.end_date.isoformat()},
            }
        return {
            "start": {"dateTime": self.start.isoformat(), "timeZone": self.timezone},
            "end": {"dateTime": self.end.isoformat(), "timeZone": self.timezone},
        }


@dataclass(frozen=True)
class _ParserOutcome:
    start: datetime
    has_explicit_hour: bool
    end_time: time | None = None


class NaturalTimeResolver:
    """Turns phrases like "mañana a las 15" into a ``ParsedTimeRange``."""

    def __init__(self, languages: list[str] | None = None) -> None:
        self.languages = languages or PARSER_LANGUAGES

    def resolve(
        self,
        phrase: str,
        *,
        reference: datetime,
        timezone: str,
    ) -> ParsedTimeRange:
        zone = _load_zone(timezone)
        normalized = normalize_time_phrase(phrase)
        prepared = apply_default_time(normalized)
        logger.info("Resolving time phrase=%r normalized=%r", phrase, prepared)

        outcome = self._parse(prepared, reference=_to_local_naive(reference, zone), zone=zone)
        if outcome is None:
            logger.warning("Unparseable time phrase=%r normalized=%r", phrase, prepared)
            raise UnparseableTimeExpression(phrase)

        if not outcome.has_explicit_hour:
            return ParsedTimeRange.all_day(outcome.start.date())

        start = outcome.start.replace(tzinfo=zone)
        end = start + DEFAULT_EVENT_DURATION
        if outcome.end_time is not None:
            explicit_end = datetime.combine(start.date(), outcome.end_time, tzinfo=zone)
            if explicit_end > start:
                end = explicit_end
        return ParsedTimeRange.timed(start, end, timezone)

    def _parse(
        self,
        text: str,
        *,
        reference: datetime,
        zone: ZoneInfo,
    ) -> _ParserOutcome | None:
        range_match = _TIME_RANGE_PATTERN.search(text)
        end_time: time | None = None
        if range_match:
            end_time = _safe_time(int(range_match.group(3)), int(range_match.group(4)))
            start_token = f"{range_match.group(1)}:{range_match.group(2)}"
            text = f"{text[: range_match.start()]}a las {start_token}{text[range_match.end() :]}"

        offset = find_relative_offset(text)
        if offset is not None:
            start = (reference + offset).replace(second=0, microsecond=0)
            return _ParserOutcome(start=start, has_explicit_hour=True)

        time_of_day = _first_time_of_day(text)
        anchor = find_day_anchor(text, reference.date())
        if anchor is None and time_of_day is not None and _is_time_only(text):
            anchor = DayAnchor(day=reference.date(), advance=lambda day: day + timedelta(days=1))
        if anchor is not None:
            return _anchored_outcome(anchor, time_of_day, end_time, reference)
        return self._parse_with_dateparser(text, time_of_day, end_time, reference, zone)

    def _parse_with_dateparser(
        self,
        text: str,
        time_of_day: time | None,
        end_time: time | None,
        reference: datetime,
        zone: ZoneInfo,
    ) -> _ParserOutcome | None:
        settings = _parser_settings(zone, reference)
        parser_input = _PARSER_FILLER_PATTERN.sub("", text).strip()

        date_data = DateDataParser(languages=self.languages, settings=settings).get_date_data(
            parser_input,
        )
        parsed = date_data.date_obj if date_data else None
        explicit_hour = date_data is not None and date_data.period == "time"
        if parsed is None:
            found = search_dates(parser_input, languages=self.languages, settings=settings)
            if not found:
                return None
            matched_text, parsed = found[0]
            explicit_hour = has_time_token(matched_text)

        start = _strip_tz(parsed, zone)
        if time_of_day is not None:
            # The normalized H:MM token wins over whatever hour the parser inferred.
            start = start.replace(
                hour=time_of_day.hour,
                minute=time_of_day.minute,
                second=0,
                microsecond=0,
            )
            explicit_hour = True
        return _ParserOutcome(start=start, has_explicit_hour=explicit_hour, end_time=end_time)


def _anchored_outcome(
    anchor: DayAnchor,
    time_of_day: time | None,
    end_time: time | None,
    reference: datetime,
) -> _ParserOutcome:
    if time_of_day is None:
        return _ParserOutcome(
            start=datetime.combine(anchor.day, time()),
            has_explicit_hour=False,
        )

    day = anchor.day
    start = datetime.combine(day, time_of_day)
    if start < reference and anchor.advance is not None:
        day = anchor.advance(day)
        start = datetime.combine(day, time_of_day)
    return _ParserOutcome(start=start, has_explicit_hour=True, end_time=end_time)


def _is_time_only(text: str) -> bool:
    return not _TIME_ONLY_LEFTOVER_PATTERN.sub("", text).strip()


def _parser_settings(zone: ZoneInfo, relative_base: datetime) -> dict[str, Any]:
    return {
        "TIMEZONE": zone.key,
        "RETURN_AS_TIMEZONE_AWARE": False,
        "PREFER_DATES_FROM": "future",
        "RELATIVE_BASE": relative_base,
        "RETURN_TIME_AS_PERIOD": True,
    }


def _load_zone(timezone: str) -> ZoneInfo:
    try:
        return ZoneInfo(timezone)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ValueError(f"Unknown timezone '{timezone}'.") from exc


def _to_local_naive(reference: datetime, zone: ZoneInfo) -> datetime:
    if reference.tzinfo is None:
        return reference
    return reference.astimezone(zone).replace(tzinfo=None)


def _strip_tz(value: datetime, zone: ZoneInfo) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(zone).replace(tzinfo=None)


def _first_time_of_day(text: str) -> time | None:
    match = TIME_TOKEN_PATTERN.search(text)
    if not match:
        return None
    raw_hour, raw_minute = match.group(0).split(":")
    return _safe_time(int(raw_hour), int(raw_minute))


def _safe_time(hour: int, minute: int) -> time | None:
    if 0 <= hour <= 23 and 0 <= minute <= 59:
        return time(hour, minute)
    return None
