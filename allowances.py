"""
Daily meal allowance engine (Verpflegungsmehraufwand)

Assigns at most one allowance record per calendar day. Abroad periods are
walked first in chronological order, then stand-alone layover days, then
qualifying ground duty, then purely domestic flight days. A day that already
has a record is never overwritten.
"""
import logging
from collections import OrderedDict
from datetime import date, timedelta
from typing import Dict, Iterator, List, Optional, Tuple

from config import TaxConfig
from models import (
    Flight, NonFlightDay, Settings, CrewProfile, AbroadPeriod,
    DailyAllowanceInfo, DataWarning, RateType,
)
from normalizer import is_overnight, arrival_date
from services import AirportService, RateResolver
from utils import parse_time_to_minutes, format_date


def is_simulator_flight(flight: Flight) -> bool:
    """Simulator session booked as a flight: LH9xxx hub round trip of exactly 4:00"""
    return (
        flight.flight_number.upper().startswith(TaxConfig.SIMULATOR_FLIGHT_PREFIX)
        and flight.departure == flight.arrival
        and flight.departure in TaxConfig.HUB_AIRPORTS
        and flight.block_time.strip() == TaxConfig.SIMULATOR_BLOCK_TIME
    )


def is_cabin_crew(role: Optional[str]) -> bool:
    if not role:
        return False
    lowered = role.lower()
    if any(keyword in lowered for keyword in TaxConfig.CABIN_ROLE_KEYWORDS):
        return True
    tokens = set(role.upper().replace('/', ' ').replace('-', ' ').split())
    return any(code in tokens for code in TaxConfig.CABIN_ROLE_CODES)


class DailyAllowanceMap:
    """Date-keyed allowance records with insert-if-absent semantics"""

    def __init__(self):
        self._days: "OrderedDict[date, DailyAllowanceInfo]" = OrderedDict()
        self.logger = logging.getLogger(__name__)

    def insert_if_absent(self, info: DailyAllowanceInfo) -> bool:
        """Store the record unless the date is taken; returns whether it was stored"""
        if info.date in self._days:
            self.logger.debug(
                f"Keeping existing allowance for {format_date(info.date)}, "
                f"rejected {info.rate_type.value} {info.country}"
            )
            return False
        self._days[info.date] = info
        return True

    def get(self, day: date) -> Optional[DailyAllowanceInfo]:
        return self._days.get(day)

    def __contains__(self, day: date) -> bool:
        return day in self._days

    def __len__(self) -> int:
        return len(self._days)

    def __iter__(self) -> Iterator[date]:
        return iter(sorted(self._days))

    def values(self) -> List[DailyAllowanceInfo]:
        return [self._days[d] for d in sorted(self._days)]

    def as_dict(self) -> Dict[date, DailyAllowanceInfo]:
        return OrderedDict((d, self._days[d]) for d in sorted(self._days))

    def total(self) -> float:
        return sum(info.rate for info in self._days.values() if info.qualifies)


class DailyAllowanceEngine:
    """Computes per-day meal allowances from abroad periods and duty days"""

    def __init__(self, airport_service: AirportService, rate_resolver: RateResolver):
        self.airport_service = airport_service
        self.rate_resolver = rate_resolver
        self.logger = logging.getLogger(__name__)

    def calculate(self, flights: List[Flight], non_flight_days: List[NonFlightDay],
                  periods: List[AbroadPeriod], settings: Settings,
                  profile: Optional[CrewProfile] = None) -> Tuple[DailyAllowanceMap, List[DataWarning]]:
        """
        Assign one allowance record per calendar day

        Args:
            flights: Normalized, sorted flights
            non_flight_days: Ground duty and layover days
            periods: Abroad periods from the tour segmenter, chronological
            settings: Calculation settings (commute time)
            profile: Crew role and aircraft type, used for briefing times

        Returns:
            Tuple of (allowance map, warnings)
        """
        profile = profile or CrewProfile()
        allowances = DailyAllowanceMap()
        warnings = self._check_overlaps(periods)
        commute = settings.commute_minutes()

        for period in periods:
            self._assign_period(allowances, period, commute, profile)

        self._assign_layover_days(allowances, non_flight_days, periods)
        self._assign_ground_duty_days(allowances, non_flight_days)
        self._assign_domestic_flight_days(allowances, flights, commute, profile)

        self.logger.info(
            f"Assigned allowances for {len(allowances)} days, "
            f"{sum(1 for a in allowances.values() if a.qualifies)} qualifying"
        )
        return allowances, warnings

    # ------------------------------------------------------------------
    # Briefing and absence
    # ------------------------------------------------------------------

    def briefing_minutes(self, flight: Flight, profile: CrewProfile) -> Tuple[int, int]:
        """
        Pre-flight briefing and post-flight debriefing for a leg

        Args:
            flight: The leg
            profile: Crew profile with role and aircraft type

        Returns:
            Tuple of (briefing_minutes, debriefing_minutes)
        """
        if is_simulator_flight(flight):
            half = TaxConfig.SIMULATOR_BRIEFING_TOTAL_MINUTES // 2
            return half, half

        if is_cabin_crew(profile.role):
            longhaul = self.airport_service.is_longhaul_destination(flight.arrival)
            briefing = (TaxConfig.BRIEFING_LONGHAUL_MINUTES if longhaul
                        else TaxConfig.BRIEFING_SHORTHAUL_CABIN_MINUTES)
        else:
            longhaul = TaxConfig.is_longhaul_aircraft(profile.aircraft_type)
            briefing = (TaxConfig.BRIEFING_LONGHAUL_MINUTES if longhaul
                        else TaxConfig.BRIEFING_SHORTHAUL_COCKPIT_MINUTES)
        return briefing, TaxConfig.DEBRIEFING_MINUTES

    def same_day_absence_hours(self, legs: List[Flight], commute_minutes: float, profile: CrewProfile) -> float:
        """Commute out, briefing, duty span, debriefing and commute back for one day's legs"""
        ordered = sorted(legs, key=lambda f: parse_time_to_minutes(f.departure_time))
        first_departure = parse_time_to_minutes(ordered[0].departure_time)
        last_arrival = max(
            parse_time_to_minutes(f.departure_time) + parse_time_to_minutes(f.block_time)
            if is_overnight(f) else parse_time_to_minutes(f.arrival_time)
            for f in ordered
        )
        briefing, _ = self.briefing_minutes(ordered[0], profile)
        _, debriefing = self.briefing_minutes(ordered[-1], profile)
        span = max(0, last_arrival - first_departure)
        total = commute_minutes + briefing + span + debriefing + commute_minutes
        return total / 60

    # ------------------------------------------------------------------
    # Abroad periods
    # ------------------------------------------------------------------

    def _check_overlaps(self, periods: List[AbroadPeriod]) -> List[DataWarning]:
        warnings = []
        for i, first in enumerate(periods):
            for second in periods[i + 1:]:
                if first.overlaps(second):
                    self.logger.warning(
                        f"Overlapping abroad periods {format_date(first.start_date)}-{format_date(first.end_date)} "
                        f"({first.country}) and {format_date(second.start_date)}-{format_date(second.end_date)} "
                        f"({second.country})"
                    )
                    warnings.append(DataWarning(
                        warning_type="overlapping_periods",
                        message=f"Abroad periods {format_date(first.start_date)}-{format_date(first.end_date)} and "
                                f"{format_date(second.start_date)}-{format_date(second.end_date)} overlap; "
                                f"the earlier period's days were kept",
                        details=f"{first.country} / {second.country}",
                    ))
        return warnings

    def _location_of(self, iata_code: str) -> str:
        return self.rate_resolver.allowance_name_for_airport(iata_code)

    def _record(self, allowances: DailyAllowanceMap, day: date, country: str, location: str,
                rate_type: RateType, **flags) -> None:
        full, partial = self.rate_resolver.get_rates(country, day.year)
        if rate_type is RateType.FULL_DAY:
            rate = full
        elif rate_type is RateType.PARTIAL_DAY:
            rate = partial
        else:
            rate = 0.0
        allowances.insert_if_absent(DailyAllowanceInfo(
            date=day, country=country, location=location, rate=rate, rate_type=rate_type, **flags
        ))

    def _country_by_day(self, period: AbroadPeriod) -> Dict[date, Tuple[str, str]]:
        """Where the crew sleeps after each landing inside the period"""
        current = self._initial_location(period)
        by_day: Dict[date, Tuple[str, str]] = {}
        for flight in period.flights:
            if not self.airport_service.is_domestic(flight.arrival):
                current = (self._location_of(flight.arrival), flight.arrival)
            by_day[arrival_date(flight)] = current
        return by_day

    def _initial_location(self, period: AbroadPeriod) -> Tuple[str, str]:
        first = period.flights[0] if period.flights else None
        if (first is not None and period.is_incomplete
                and not self.airport_service.is_domestic(first.departure)):
            return self._location_of(first.departure), first.departure
        return period.country, period.location

    def _departure_day_qualifies(self, period: AbroadPeriod, commute: float, profile: CrewProfile) -> bool:
        if period.end_date > period.start_date:
            return True
        if period.return_flight_date is None and not self.airport_service.is_domestic(period.location):
            # Tour still abroad at the end of the data
            return True
        legs = [f for f in period.flights if f.date == period.departure_flight_date]
        hours = self.same_day_absence_hours(legs, commute, profile)
        self.logger.debug(f"Same-day tour on {format_date(period.start_date)}: absence {hours:.2f}h")
        return hours >= TaxConfig.PARTIAL_DAY_THRESHOLD_HOURS

    def _assign_period(self, allowances: DailyAllowanceMap, period: AbroadPeriod,
                       commute: float, profile: CrewProfile) -> None:
        """Walk every day of an abroad period through the day rules in priority order"""
        if not period.flights:
            return

        return_flight = period.flights[-1] if period.return_flight_date is not None else None
        return_arrival = arrival_date(return_flight) if return_flight is not None else None
        first_arrival = arrival_date(period.flights[0])

        depart_days = {f.date for f in period.flights}
        arrive_days = {arrival_date(f) for f in period.flights}
        country_by_day = self._country_by_day(period)
        rolling = self._initial_location(period)

        day = period.start_date
        while day <= period.end_date:
            if day in country_by_day:
                rolling = country_by_day[day]

            if day in allowances:
                day += timedelta(days=1)
                continue

            flags = {
                "has_flights": day in depart_days or day in arrive_days,
                "is_departure_day": day == period.departure_flight_date,
                "is_return_day": return_arrival is not None and day == return_arrival,
            }
            country, location = rolling
            returned_from = (period.return_country or country, period.return_location or location)

            if day == period.departure_flight_date:
                rate_type = (RateType.PARTIAL_DAY if self._departure_day_qualifies(period, commute, profile)
                             else RateType.NONE)
            elif period.is_overnight_departure and day == first_arrival:
                rate_type = RateType.FULL_DAY
            elif period.is_overnight_return and day == period.return_flight_date:
                rate_type = RateType.FULL_DAY
            elif period.is_overnight_return and day == return_arrival:
                rate_type = RateType.PARTIAL_DAY
                country, location = returned_from
            elif return_arrival is not None and day == return_arrival:
                rate_type = RateType.PARTIAL_DAY
                country, location = returned_from
            else:
                rate_type = RateType.FULL_DAY

            self._record(allowances, day, country, location, rate_type, **flags)
            day += timedelta(days=1)

    # ------------------------------------------------------------------
    # Days outside abroad periods
    # ------------------------------------------------------------------

    def _assign_layover_days(self, allowances: DailyAllowanceMap, non_flight_days: List[NonFlightDay],
                             periods: List[AbroadPeriod]) -> None:
        for day in non_flight_days:
            if day.duty_code != TaxConfig.LAYOVER_CODE or not day.country:
                continue
            if any(p.start_date <= day.date <= p.end_date for p in periods):
                continue

            code = day.country.strip().upper()
            if code in self.airport_service.countries:
                country = self.rate_resolver.allowance_name_for_country(code)
            else:
                country = self.rate_resolver.normalize_country_name(day.country.strip())
            self._record(allowances, day.date, country, day.country, RateType.FULL_DAY, from_layover_day=True)

    def _assign_ground_duty_days(self, allowances: DailyAllowanceMap, non_flight_days: List[NonFlightDay]) -> None:
        for day in non_flight_days:
            if day.duty_code not in TaxConfig.ALLOWANCE_QUALIFYING_CODES:
                continue
            self._record(allowances, day.date, TaxConfig.HOME_COUNTRY_NAME,
                         TaxConfig.HOME_COUNTRY_CODE, RateType.PARTIAL_DAY)

    def _assign_domestic_flight_days(self, allowances: DailyAllowanceMap, flights: List[Flight],
                                     commute: float, profile: CrewProfile) -> None:
        by_day: Dict[date, List[Flight]] = OrderedDict()
        for flight in flights:
            by_day.setdefault(flight.date, []).append(flight)

        for day, legs in by_day.items():
            if day in allowances:
                continue
            if not all(self.airport_service.is_domestic(f.departure) and self.airport_service.is_domestic(f.arrival)
                       for f in legs):
                continue

            hours = self.same_day_absence_hours(legs, commute, profile)
            if hours >= TaxConfig.FULL_DAY_THRESHOLD_HOURS:
                rate_type = RateType.FULL_DAY
            elif hours >= TaxConfig.PARTIAL_DAY_THRESHOLD_HOURS:
                rate_type = RateType.PARTIAL_DAY
            else:
                rate_type = RateType.NONE
            self.logger.debug(f"Domestic flight day {format_date(day)}: absence {hours:.2f}h -> {rate_type.value}")

            self._record(allowances, day, TaxConfig.HOME_COUNTRY_NAME, TaxConfig.HOME_COUNTRY_CODE,
                         rate_type, has_flights=True)
