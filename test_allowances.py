"""
Tests for the daily meal allowance engine
"""
from datetime import date

import pytest

from allowances import DailyAllowanceMap, is_simulator_flight, is_cabin_crew
from models import NonFlightDay, CrewProfile, DailyAllowanceInfo, RateType, Settings


def _run(normalizer, segmenter, engine, settings, flights, non_flight_days=None, profile=None):
    normalized, _ = normalizer.normalize(flights)
    days = non_flight_days or []
    periods, _, _ = segmenter.segment(normalized, days)
    return engine.calculate(normalized, days, periods, settings, profile)


def test_mumbai_departure_and_return_days(normalizer, segmenter, engine, settings, make_flight):
    """City rate on both partial days; the return day uses the departed-from city"""
    flights = [
        make_flight(date(2023, 3, 10), "FRA", "BOM", "10:00", "8:30", duty_code="A"),
        make_flight(date(2023, 3, 11), "BOM", "FRA", "02:00", "9:00", duty_code="E"),
    ]
    allowances, warnings = _run(normalizer, segmenter, engine, settings, flights)

    departure = allowances.get(date(2023, 3, 10))
    back = allowances.get(date(2023, 3, 11))
    assert departure.rate_type is RateType.PARTIAL_DAY
    assert departure.is_departure_day
    assert back.rate_type is RateType.PARTIAL_DAY
    assert back.country == "Indien - Mumbai"
    assert back.is_return_day
    assert allowances.total() == 66
    assert warnings == []


def test_cape_town_tour(normalizer, segmenter, engine, settings, make_flight):
    flights = [
        make_flight(date(2024, 2, 1), "FRA", "CPT", "10:00", "11:30", duty_code="A"),
        make_flight(date(2024, 2, 5), "CPT", "FRA", "10:00", "11:30", duty_code="E"),
    ]
    allowances, _ = _run(normalizer, segmenter, engine, settings, flights)

    rates = [(info.rate_type, info.rate) for info in allowances.values()]
    assert rates == [
        (RateType.PARTIAL_DAY, 22),
        (RateType.FULL_DAY, 33),
        (RateType.FULL_DAY, 33),
        (RateType.FULL_DAY, 33),
        (RateType.PARTIAL_DAY, 22),
    ]
    assert allowances.total() == 143


def test_overnight_departure_arrival_day_is_full(normalizer, segmenter, engine, settings, make_flight):
    flights = [make_flight(date(2023, 7, 1), "FRA", "JFK", "21:00", "9:00", duty_code="A")]
    allowances, _ = _run(normalizer, segmenter, engine, settings, flights)

    arrival = allowances.get(date(2023, 7, 2))
    assert arrival.rate_type is RateType.FULL_DAY
    assert arrival.country == "USA - New York"
    assert arrival.rate == 66
    assert allowances.get(date(2023, 7, 1)).rate_type is RateType.PARTIAL_DAY


def test_overnight_return_days(normalizer, segmenter, engine, settings, make_flight):
    """Overnight out and back: both days in transit abroad are full days"""
    flights = [
        make_flight(date(2023, 5, 13), "FRA", "JNB", "20:00", "10:30", duty_code="A"),
        make_flight(date(2023, 5, 15), "JNB", "FRA", "19:00", "11:00", duty_code="E"),
    ]
    allowances, _ = _run(normalizer, segmenter, engine, settings, flights)

    assert [(d, a.rate_type, a.rate) for d, a in allowances.as_dict().items()] == [
        (date(2023, 5, 13), RateType.PARTIAL_DAY, 24),
        (date(2023, 5, 14), RateType.FULL_DAY, 36),
        (date(2023, 5, 15), RateType.FULL_DAY, 36),
        (date(2023, 5, 16), RateType.PARTIAL_DAY, 24),
    ]
    assert allowances.get(date(2023, 5, 16)).country == "Suedafrika - Johannesburg"


def test_overlapping_periods_keep_first_record(normalizer, segmenter, engine, settings, make_flight):
    flights = [
        make_flight(date(2023, 5, 13), "FRA", "JNB", "20:00", "10:30", duty_code="A"),
        make_flight(date(2023, 5, 15), "JNB", "FRA", "19:00", "11:00", duty_code="E"),
        make_flight(date(2023, 5, 17), "JNB", "FRA", "10:00", "10:00"),
    ]
    allowances, warnings = _run(normalizer, segmenter, engine, settings, flights)

    assert [w.warning_type for w in warnings] == ["overlapping_periods"]
    kept = allowances.get(date(2023, 5, 16))
    assert kept.is_return_day
    assert kept.rate == 24
    assert allowances.get(date(2023, 5, 17)).rate_type is RateType.PARTIAL_DAY


def test_same_day_foreign_turnaround(normalizer, segmenter, engine, settings, make_flight):
    flights = [
        make_flight(date(2023, 9, 4), "FRA", "LHR", "07:00", "1:30", arr_time="07:30"),
        make_flight(date(2023, 9, 4), "LHR", "FRA", "18:00", "1:30", arr_time="20:30"),
    ]
    allowances, _ = _run(normalizer, segmenter, engine, settings, flights)

    assert len(allowances) == 1
    info = allowances.get(date(2023, 9, 4))
    assert info.rate_type is RateType.PARTIAL_DAY
    assert info.country == "Grossbritannien - London"
    assert info.rate == 44


def test_short_domestic_day_is_informational(normalizer, segmenter, engine, settings, make_flight):
    flights = [make_flight(date(2024, 6, 3), "FRA", "HAM", "10:00", "1:00")]
    allowances, _ = _run(normalizer, segmenter, engine, settings, flights)

    info = allowances.get(date(2024, 6, 3))
    assert info.rate_type is RateType.NONE
    assert info.has_flights
    assert not info.qualifies
    assert allowances.total() == 0


def test_long_domestic_day_earns_partial_rate(normalizer, segmenter, engine, settings, make_flight):
    flights = [
        make_flight(date(2024, 6, 3), "FRA", "MUC", "06:00", "1:00"),
        make_flight(date(2024, 6, 3), "MUC", "FRA", "16:00", "1:00"),
    ]
    allowances, _ = _run(normalizer, segmenter, engine, settings, flights)

    info = allowances.get(date(2024, 6, 3))
    assert info.rate_type is RateType.PARTIAL_DAY
    assert info.country == "Deutschland"
    assert info.rate == 14


def test_non_flight_days(normalizer, segmenter, engine, settings):
    days = [
        NonFlightDay(date(2024, 8, 1), "ME"),
        NonFlightDay(date(2024, 8, 2), "SB"),
        NonFlightDay(date(2024, 8, 3), "RE"),
        NonFlightDay(date(2024, 8, 4), "DP"),
        NonFlightDay(date(2024, 8, 5), "FL", country="US"),
    ]
    allowances, _ = _run(normalizer, segmenter, engine, settings, [], days)

    assert allowances.get(date(2024, 8, 1)).rate == 14
    assert allowances.get(date(2024, 8, 2)).rate == 14
    assert date(2024, 8, 3) not in allowances
    assert date(2024, 8, 4) not in allowances
    layover = allowances.get(date(2024, 8, 5))
    assert layover.rate_type is RateType.FULL_DAY
    assert layover.country == "USA"
    assert layover.from_layover_day


def test_layover_day_inside_period_not_duplicated(normalizer, segmenter, engine, settings, make_flight):
    flights = [
        make_flight(date(2024, 2, 1), "FRA", "CPT", "10:00", "11:30", duty_code="A"),
        make_flight(date(2024, 2, 5), "CPT", "FRA", "10:00", "11:30", duty_code="E"),
    ]
    days = [NonFlightDay(date(2024, 2, 3), "FL", country="ZA")]
    allowances, _ = _run(normalizer, segmenter, engine, settings, flights, days)

    info = allowances.get(date(2024, 2, 3))
    assert info.country == "Suedafrika - Kapstadt"
    assert not info.from_layover_day


def test_first_write_wins():
    allowances = DailyAllowanceMap()
    day = date(2024, 1, 1)
    first = DailyAllowanceInfo(day, "Deutschland", "DE", 14, RateType.PARTIAL_DAY)
    second = DailyAllowanceInfo(day, "USA", "JFK", 59, RateType.FULL_DAY)

    assert allowances.insert_if_absent(first)
    assert not allowances.insert_if_absent(second)
    assert allowances.get(day) is first
    assert len(allowances) == 1


def test_simulator_signature(make_flight):
    day = date(2024, 3, 1)
    assert is_simulator_flight(make_flight(day, "FRA", "FRA", "08:00", "4:00", flight_number="LH9012"))
    assert not is_simulator_flight(make_flight(day, "FRA", "FRA", "08:00", "3:59", flight_number="LH9012"))
    assert not is_simulator_flight(make_flight(day, "FRA", "MUC", "08:00", "4:00", flight_number="LH9012"))
    assert not is_simulator_flight(make_flight(day, "FRA", "FRA", "08:00", "4:00", flight_number="LH400"))


@pytest.mark.parametrize("role, expected", [
    ("Flugbegleiterin", True),
    ("Purser", True),
    ("FA", True),
    ("Kapitän", False),
    ("FO", False),
    (None, False),
])
def test_cabin_crew_roles(role, expected):
    assert is_cabin_crew(role) is expected


def test_briefing_minutes_by_role(engine, make_flight):
    day = date(2024, 3, 1)
    longhaul = make_flight(day, "FRA", "JFK", "10:00", "8:30")
    shorthaul = make_flight(day, "FRA", "LHR", "10:00", "1:30")
    simulator = make_flight(day, "FRA", "FRA", "08:00", "4:00", flight_number="LH9012")

    cabin = CrewProfile(role="Flugbegleiter")
    assert engine.briefing_minutes(longhaul, cabin) == (110, 30)
    assert engine.briefing_minutes(shorthaul, cabin) == (85, 30)

    narrowbody = CrewProfile(role="FO", aircraft_type="A320")
    widebody = CrewProfile(role="FO", aircraft_type="A350")
    assert engine.briefing_minutes(shorthaul, narrowbody) == (80, 30)
    assert engine.briefing_minutes(shorthaul, widebody) == (110, 30)

    assert engine.briefing_minutes(simulator, cabin) == (60, 60)


def test_same_day_absence_hours(engine, make_flight):
    legs = [
        make_flight(date(2024, 6, 3), "FRA", "MUC", "06:00", "1:00"),
        make_flight(date(2024, 6, 3), "MUC", "FRA", "16:00", "1:00"),
    ]
    # 15 + 80 + 660 + 30 + 15 minutes
    assert engine.same_day_absence_hours(legs, 15, CrewProfile()) == pytest.approx(800 / 60)


def test_tour_start_on_home_leg_uses_absence_hours(normalizer, segmenter, engine, settings, make_flight):
    """A marked home-to-home leg is judged like any other domestic flight day"""
    flights = [
        make_flight(date(2024, 5, 1), "FRA", "FRA", "09:00", "2:00", duty_code="A"),
        make_flight(date(2024, 5, 4), "FRA", "MUC", "06:00", "1:00"),
        make_flight(date(2024, 5, 4), "MUC", "FRA", "16:00", "1:00"),
    ]
    allowances, _ = _run(normalizer, segmenter, engine, settings, flights)

    assert allowances.get(date(2024, 5, 1)).rate_type is RateType.NONE
    assert date(2024, 5, 2) not in allowances
    assert date(2024, 5, 3) not in allowances
    assert allowances.get(date(2024, 5, 4)).rate_type is RateType.PARTIAL_DAY
    assert allowances.total() == 14


def test_simulator_day_briefing_reaches_threshold(normalizer, segmenter, engine, make_flight):
    """60 + 60 briefing around a 4:00 session with 60 minutes commute each way is exactly 8 hours"""
    settings = Settings(commute_minutes_override=60)
    simulator = make_flight(date(2024, 3, 1), "FRA", "FRA", "08:00", "4:00", flight_number="LH9012")
    regular = make_flight(date(2024, 3, 2), "FRA", "FRA", "08:00", "4:00", flight_number="LH400")

    assert engine.same_day_absence_hours([simulator], 60, CrewProfile()) == pytest.approx(8.0)
    assert engine.same_day_absence_hours([regular], 60, CrewProfile()) == pytest.approx(470 / 60)

    allowances, _ = _run(normalizer, segmenter, engine, settings, [simulator, regular])
    assert allowances.get(date(2024, 3, 1)).rate_type is RateType.PARTIAL_DAY
    assert allowances.get(date(2024, 3, 2)).rate_type is RateType.NONE


def test_simulator_day_below_threshold_with_default_commute(normalizer, segmenter, engine, settings, make_flight):
    simulator = make_flight(date(2024, 3, 1), "FRA", "FRA", "08:00", "4:00", flight_number="LH9012")
    allowances, _ = _run(normalizer, segmenter, engine, settings, [simulator])
    assert not allowances.get(date(2024, 3, 1)).qualifies
