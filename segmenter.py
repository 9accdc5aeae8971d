"""
Tour segmentation: groups legs into tours, detects round trips and hotel nights
"""
import logging
from collections import Counter, OrderedDict
from dataclasses import dataclass, field
from datetime import date, timedelta
from enum import Enum
from typing import Callable, Dict, List, Optional, Set, Tuple

from config import TaxConfig
from models import (
    Flight, NonFlightDay, Settings, CrewProfile, AbroadPeriod, TripSegment,
    HotelNight, DataWarning,
)
from normalizer import is_overnight, arrival_date, sort_key
from services import AirportService, RateResolver
from utils import parse_time_to_minutes, format_date


class TourState(Enum):
    IDLE = "idle"
    IN_TOUR = "in_tour"


class LegEvent(Enum):
    DEPART_HOME = "depart_home"
    ABROAD_LEG = "abroad_leg"
    RETURN_HOME = "return_home"
    DOMESTIC_LEG = "domestic_leg"


@dataclass
class _Tour:
    """Open tour while the segmenter walks the legs"""
    period: AbroadPeriod
    countries: List[str] = field(default_factory=list)
    closed: bool = False


@dataclass
class _Run:
    """Mutable state of a single segmentation call"""
    non_flight_days: List[NonFlightDay]
    state: TourState = TourState.IDLE
    current: Optional[_Tour] = None
    tours: List[_Tour] = field(default_factory=list)
    warnings: List[DataWarning] = field(default_factory=list)
    last_flight_date: Optional[date] = None


class TourSegmenter:
    """Walks chronologically sorted legs through an explicit tour state machine"""

    def __init__(self, airport_service: AirportService, rate_resolver: RateResolver):
        self.airport_service = airport_service
        self.rate_resolver = rate_resolver
        self.logger = logging.getLogger(__name__)

        # (state, event) -> handler returning the next state
        self.transitions: Dict[Tuple[TourState, LegEvent], Callable[[_Run, Flight], TourState]] = {
            (TourState.IDLE, LegEvent.DEPART_HOME): self._open_tour,
            (TourState.IDLE, LegEvent.ABROAD_LEG): self._open_incomplete_tour,
            (TourState.IDLE, LegEvent.RETURN_HOME): self._emit_incomplete_return,
            (TourState.IDLE, LegEvent.DOMESTIC_LEG): self._stay_idle,
            (TourState.IN_TOUR, LegEvent.DEPART_HOME): self._restart_or_extend,
            (TourState.IN_TOUR, LegEvent.ABROAD_LEG): self._extend_tour,
            (TourState.IN_TOUR, LegEvent.DOMESTIC_LEG): self._extend_tour,
            (TourState.IN_TOUR, LegEvent.RETURN_HOME): self._close_tour,
        }

    # ------------------------------------------------------------------
    # Leg classification
    # ------------------------------------------------------------------

    def _is_home(self, country_code: Optional[str]) -> bool:
        return self.airport_service.is_domestic_country(country_code)

    def _departure_country(self, flight: Flight) -> str:
        return flight.departure_country or self.airport_service.get_country(flight.departure)

    def _arrival_country(self, flight: Flight) -> str:
        return flight.arrival_country or self.airport_service.get_country(flight.arrival)

    def classify(self, flight: Flight) -> LegEvent:
        """Map a leg onto the event that drives the tour state machine"""
        dep_home = self._is_home(self._departure_country(flight))
        arr_home = self._is_home(self._arrival_country(flight))

        if dep_home and not arr_home:
            # An orphaned fragment records the full route but departed last month
            if flight.is_continuation:
                return LegEvent.ABROAD_LEG
            return LegEvent.DEPART_HOME
        if not dep_home and arr_home:
            return LegEvent.RETURN_HOME
        if not dep_home and not arr_home:
            return LegEvent.ABROAD_LEG

        if flight.duty_code == TaxConfig.TOUR_START_CODE:
            return LegEvent.DEPART_HOME
        if flight.duty_code == TaxConfig.TOUR_END_CODE:
            return LegEvent.RETURN_HOME
        return LegEvent.DOMESTIC_LEG

    # ------------------------------------------------------------------
    # Segmentation
    # ------------------------------------------------------------------

    def segment(self, flights: List[Flight],
                non_flight_days: Optional[List[NonFlightDay]] = None
                ) -> Tuple[List[AbroadPeriod], List[TripSegment], List[DataWarning]]:
        """
        Group legs into tours

        Args:
            flights: Normalized flights (continuations already merged)
            non_flight_days: Used to infer the start of tours whose start was not observed

        Returns:
            Tuple of (abroad periods, trip segments, warnings), both in chronological order
        """
        run = _Run(non_flight_days=list(non_flight_days or []))

        for flight in sorted(flights, key=sort_key):
            event = self.classify(flight)
            handler = self.transitions[(run.state, event)]
            run.state = handler(run, flight)
            run.last_flight_date = flight.date

        if run.current is not None:
            self.logger.info(f"Tour starting {format_date(run.current.period.start_date)} has no return leg")
            run.tours.append(run.current)
            run.current = None

        run.tours.sort(key=lambda t: (t.period.start_date, t.period.end_date))
        periods = [t.period for t in run.tours]
        segments = [self._to_trip_segment(t) for t in run.tours]
        return periods, segments, run.warnings

    def _to_trip_segment(self, tour: _Tour) -> TripSegment:
        flights = tour.period.flights
        last_leg_date = flights[-1].date if flights else tour.period.end_date
        return TripSegment(
            start_date=tour.period.start_date,
            end_date=max(last_leg_date, tour.period.start_date),
            flights=list(flights),
            countries=list(tour.countries),
            is_incomplete=tour.period.is_incomplete,
            is_closed=tour.closed,
        )

    def _location_of(self, iata_code: str) -> str:
        return self.rate_resolver.allowance_name_for_airport(iata_code)

    def _note_country(self, tour: _Tour, country_code: str) -> None:
        if country_code not in tour.countries:
            tour.countries.append(country_code)

    def _new_tour(self, flight: Flight, start: date, incomplete: bool) -> _Tour:
        period = AbroadPeriod(
            start_date=start,
            end_date=arrival_date(flight),
            country=self._location_of(flight.arrival),
            location=flight.arrival,
            flights=[flight],
            departure_flight_date=None if incomplete else flight.date,
            is_incomplete=incomplete,
            is_overnight_departure=is_overnight(flight) or (incomplete and flight.is_continuation),
        )
        tour = _Tour(period=period)
        self._note_country(tour, self._arrival_country(flight))
        return tour

    def _is_home_leg(self, flight: Flight) -> bool:
        return self._is_home(self._departure_country(flight)) and self._is_home(self._arrival_country(flight))

    def _open_tour(self, run: _Run, flight: Flight) -> TourState:
        if self._is_home_leg(flight):
            # Tour-start marker on a leg that never leaves home territory
            self.logger.debug(f"Tour start {flight.flight_number} on {format_date(flight.date)} stays at home")
            return TourState.IDLE
        run.current = self._new_tour(flight, flight.date, incomplete=False)
        self.logger.debug(f"Tour opened {format_date(flight.date)} with {flight.flight_number}")
        return TourState.IN_TOUR

    def _open_incomplete_tour(self, run: _Run, flight: Flight) -> TourState:
        start = self._infer_start(run, flight, self._departure_country(flight))
        run.current = self._new_tour(flight, start, incomplete=True)
        self._warn_incomplete(run, flight, start)
        return TourState.IN_TOUR

    def _emit_incomplete_return(self, run: _Run, flight: Flight) -> TourState:
        dep_country = self._departure_country(flight)
        if self._is_home(dep_country):
            # Tour-end marker on a purely domestic leg without an open tour
            return TourState.IDLE

        start = self._infer_start(run, flight, dep_country)
        returned_from = self._location_of(flight.departure)
        period = AbroadPeriod(
            start_date=start,
            end_date=arrival_date(flight),
            country=returned_from,
            location=flight.departure,
            flights=[flight],
            return_flight_date=flight.date,
            return_country=returned_from,
            return_location=flight.departure,
            is_incomplete=True,
            is_overnight_return=is_overnight(flight),
        )
        tour = _Tour(period=period, closed=True)
        self._note_country(tour, dep_country)
        run.tours.append(tour)
        self._warn_incomplete(run, flight, start)
        return TourState.IDLE

    def _stay_idle(self, run: _Run, flight: Flight) -> TourState:
        return TourState.IDLE

    def _extend_tour(self, run: _Run, flight: Flight) -> TourState:
        tour = run.current
        period = tour.period
        period.flights.append(flight)
        period.end_date = max(period.end_date, arrival_date(flight))
        if not self._is_home(self._arrival_country(flight)):
            period.country = self._location_of(flight.arrival)
            period.location = flight.arrival
        self._note_country(tour, self._arrival_country(flight))
        return TourState.IN_TOUR

    def _restart_or_extend(self, run: _Run, flight: Flight) -> TourState:
        if flight.duty_code != TaxConfig.TOUR_START_CODE:
            return self._extend_tour(run, flight)

        unfinished = run.current
        self.logger.warning(
            f"Tour start {flight.flight_number} on {format_date(flight.date)} while the tour from "
            f"{format_date(unfinished.period.start_date)} is still open"
        )
        run.warnings.append(DataWarning(
            warning_type="incomplete_trip",
            message=f"Tour starting {format_date(unfinished.period.start_date)} has no return leg "
                    f"before the next tour start on {format_date(flight.date)}",
        ))
        run.tours.append(unfinished)
        run.current = None
        return self._open_tour(run, flight)

    def _close_tour(self, run: _Run, flight: Flight) -> TourState:
        tour = run.current
        period = tour.period
        returned_from = (self._location_of(flight.departure)
                         if not self._is_home(self._departure_country(flight)) else TaxConfig.HOME_COUNTRY_NAME)
        period.flights.append(flight)
        period.end_date = max(period.end_date, arrival_date(flight))
        period.return_flight_date = flight.date
        period.return_country = returned_from
        period.return_location = flight.departure
        period.is_overnight_return = is_overnight(flight)
        self._note_country(tour, self._arrival_country(flight))
        tour.closed = True

        run.tours.append(tour)
        run.current = None
        self.logger.debug(
            f"Tour {format_date(period.start_date)} - {format_date(period.end_date)} closed by {flight.flight_number}"
        )
        return TourState.IDLE

    def _infer_start(self, run: _Run, flight: Flight, country_code: str) -> date:
        """
        Infer when an unobserved tour began

        Uses the earliest layover day in the same country that lies after the
        previous leg and before this one; otherwise the day before this leg.
        """
        country_name = self.rate_resolver.allowance_name_for_country(country_code)
        candidates = []
        for day in run.non_flight_days:
            if day.duty_code != TaxConfig.LAYOVER_CODE or not day.country or day.date >= flight.date:
                continue
            if run.last_flight_date is not None and day.date <= run.last_flight_date:
                continue
            if (day.country.upper() == country_code
                    or self.rate_resolver.normalize_country_name(day.country) == country_name):
                candidates.append(day.date)

        if candidates:
            return min(candidates)
        return flight.date - timedelta(days=1)

    def _warn_incomplete(self, run: _Run, flight: Flight, start: date) -> None:
        self.logger.info(
            f"Incomplete tour around {flight.flight_number} on {format_date(flight.date)}, "
            f"start inferred as {format_date(start)}"
        )
        run.warnings.append(DataWarning(
            warning_type="incomplete_trip",
            message=f"Start of the tour ending or continuing with {flight.flight_number} on "
                    f"{format_date(flight.date)} was not found; assumed {format_date(start)}",
            severity="info",
        ))

    # ------------------------------------------------------------------
    # Hotel nights
    # ------------------------------------------------------------------

    def detect_hotel_nights(self, segments: List[TripSegment]) -> List[HotelNight]:
        """One night per day from tour start up to the day of the final leg, abroad only"""
        nights: List[HotelNight] = []

        for segment in segments:
            night_count = (segment.end_date - segment.start_date).days
            if night_count <= 0:
                continue
            if all(self._is_home(c) for c in segment.countries):
                continue

            flights_by_day: Dict[date, List[Flight]] = {}
            for flight in segment.flights:
                flights_by_day.setdefault(flight.date, []).append(flight)

            last_location = None
            last_country = None
            for offset in range(night_count):
                night = segment.start_date + timedelta(days=offset)
                day_flights = flights_by_day.get(night)
                if day_flights:
                    arrival_country = self._arrival_country(day_flights[-1])
                    if not self._is_home(arrival_country):
                        last_location = day_flights[-1].arrival
                        last_country = arrival_country
                elif last_location is None and segment.is_incomplete and segment.flights:
                    # Inferred start: the crew is already where the first leg departs
                    first = segment.flights[0]
                    if not self._is_home(self._departure_country(first)):
                        last_location = first.departure
                        last_country = self._departure_country(first)

                if last_location:
                    nights.append(HotelNight(
                        date=night,
                        location=last_location,
                        country=self.airport_service.get_country_name(last_country),
                    ))

        return nights

    # ------------------------------------------------------------------
    # Home base and same-day round trips
    # ------------------------------------------------------------------

    def detect_home_base(self, flights: List[Flight]) -> Optional[str]:
        """Most used hub airport; None on a tie or when no hub is used"""
        counts = Counter()
        for flight in flights:
            for code in (flight.departure, flight.arrival):
                if code in TaxConfig.HUB_AIRPORTS:
                    counts[code] += 1

        if not counts:
            return None
        ranked = counts.most_common()
        if len(ranked) > 1 and ranked[0][1] == ranked[1][1]:
            return None
        return ranked[0][0]

    def resolve_home_base(self, settings: Settings, profile: Optional[CrewProfile],
                          detected: Optional[str]) -> Optional[str]:
        """Manual override, then the roster profile, then detection"""
        if settings.home_base_override:
            return settings.home_base_override
        if profile is not None and profile.home_base:
            return profile.home_base
        return detected

    def days_with_tour_markers(self, flights: List[Flight]) -> Set[date]:
        return {f.date for f in flights if f.is_tour_marker}

    def detect_same_day_round_trips(self, flights: List[Flight], home_base: Optional[str],
                                    excluded_days: Optional[Set[date]] = None) -> Set[date]:
        """
        Find days on which the crew left from and returned to the home base

        Args:
            flights: Flights to inspect
            home_base: Resolved home base; None disables detection
            excluded_days: Days already carrying tour markers

        Returns:
            Set of dates with a same-day round trip
        """
        round_trips: Set[date] = set()
        if not home_base:
            return round_trips

        excluded = excluded_days if excluded_days is not None else self.days_with_tour_markers(flights)

        by_day: Dict[date, List[Flight]] = OrderedDict()
        for flight in flights:
            by_day.setdefault(flight.date, []).append(flight)

        for day, day_flights in by_day.items():
            if day in excluded:
                continue
            ordered = sorted(day_flights, key=lambda f: parse_time_to_minutes(f.departure_time))
            if ordered[0].departure == home_base and ordered[-1].arrival == home_base:
                round_trips.add(day)

        return round_trips
