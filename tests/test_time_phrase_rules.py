import pytest

from milo.services.time_phrase_rules import (
    apply_default_time,
    collapse_hs_suffix,
    complete_a_las_hour,
    complete_hour_range,
    has_day_token,
    has_time_token,
    normalize_time_phrase,
    rewrite_part_of_day,
    rewrite_weekday_que_viene,
)


@pytest.mark.parametrize(
    ("phrase", "expected"),
    [
        ("mañana 20hs", "mañana 20:00"),
        ("mañana 20 hs", "mañana 20:00"),
        ("mañana 20:00hs", "mañana 20:00"),
        ("mañana 20:30 hs", "mañana 20:30"),
    ],
)
def test_collapse_hs_suffix(phrase: str, expected: str) -> None:
    assert collapse_hs_suffix(phrase) == expected


def test_rewrite_part_of_day_moves_afternoon_and_night_to_24h() -> None:
    assert rewrite_part_of_day("hoy 8 de la noche") == "hoy 20:00"
    assert rewrite_part_of_day("hoy 4 de la tarde") == "hoy 16:00"
    assert rewrite_part_of_day("hoy 8:30 de la noche") == "hoy 20:30"


def test_rewrite_part_of_day_keeps_morning_and_late_hours() -> None:
    assert rewrite_part_of_day("hoy 8 de la mañana") == "hoy 8:00"
    assert rewrite_part_of_day("hoy 12 de la noche") == "hoy 12:00"


def test_complete_a_las_hour_adds_minutes_only_when_missing() -> None:
    assert complete_a_las_hour("mañana a las 15") == "mañana a las 15:00"
    assert complete_a_las_hour("mañana a la 1") == "mañana a las 1:00"
    assert complete_a_las_hour("mañana a las 15:30") == "mañana a las 15:30"


def test_rewrite_weekday_que_viene() -> None:
    assert rewrite_weekday_que_viene("el viernes que viene") == "el próximo viernes"
    assert rewrite_weekday_que_viene("el miércoles que viene a las 10:00") == (
        "el próximo miércoles a las 10:00"
    )


def test_normalize_time_phrase_runs_rules_in_order() -> None:
    assert normalize_time_phrase("  viernes que viene a las 5 de la tarde ") == (
        "próximo viernes a las 17:00"
    )
    assert normalize_time_phrase("mañana a las 15") == "mañana a las 15:00"


def test_normalize_time_phrase_accepts_custom_rules() -> None:
    assert normalize_time_phrase("mañana a las 15", rules=[]) == "mañana a las 15"


def test_token_detection() -> None:
    assert has_time_token("mañana a las 9:00")
    assert not has_time_token("mañana")
    assert has_day_token("el viernes")
    assert has_day_token("pasado mañana")
    assert not has_day_token("cuando puedas")


def test_apply_default_time_only_for_day_without_hour() -> None:
    assert apply_default_time("el viernes") == "el viernes a las 9:00"
    assert apply_default_time("mañana a las 15:00") == "mañana a las 15:00"
    assert apply_default_time("cuando puedas") == "cuando puedas"


@pytest.mark.parametrize(
    ("phrase", "expected"),
    [
        ("mañana de 10 a 12", "mañana de 10:00 a 12:00"),
        ("mañana de 9:30 a 11", "mañana de 9:30 a 11:00"),
        ("hoy de 10 hasta las 12", "hoy de 10:00 a 12:00"),
        ("hoy de 10-12", "hoy de 10:00 a 12:00"),
        ("20 de noviembre", "20 de noviembre"),
    ],
)
def test_complete_hour_range(phrase: str, expected: str) -> None:
    assert complete_hour_range(phrase) == expected


def test_normalize_time_phrase_completes_bare_ranges() -> None:
    assert normalize_time_phrase("mañana de 10 a 12") == "mañana de 10:00 a 12:00"


@pytest.mark.parametrize("phrase", ["el 3", "20 de noviembre", "en 2 días", "pasado mañana"])
def test_day_numbers_count_as_day_tokens(phrase: str) -> None:
    assert has_day_token(phrase)


@pytest.mark.parametrize("phrase", ["en 2 horas", "en 15 minutos", "en 10 min", "a las 15:00"])
def test_hours_and_durations_are_not_day_tokens(phrase: str) -> None:
    assert not has_day_token(phrase)


def test_apply_default_time_leaves_relative_offsets_alone() -> None:
    assert apply_default_time("en 2 horas") == "en 2 horas"
    assert apply_default_time("pasado mañana") == "pasado mañana a las 9:00"
