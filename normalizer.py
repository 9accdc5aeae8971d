"""
Flight normalization: continuation merging, overnight detection, ordering
"""
import calendar
import logging
from dataclasses import replace
from datetime import date, timedelta
from typing import Dict, List, Optional, Tuple

from models import Flight, DataWarning
from services import AirportService
from utils import parse_time_to_minutes, minutes_to_block_time, format_date

MINUTES_PER_DAY = 24 * 60


def is_overnight(flight: Flight) -> bool:
    """True when departure time plus block time reaches midnight"""
    return parse_time_to_minutes(flight.departure_time) + parse_time_to_minutes(flight.block_time) >= MINUTES_PER_DAY


def arrival_date(flight: Flight) -> date:
    """Calendar date on which the flight lands"""
    if is_overnight(flight):
        return flight.date + timedelta(days=1)
    return flight.date


def sort_key(flight: Flight) -> Tuple[date, int]:
    return flight.date, parse_time_to_minutes(flight.departure_time)


class FlightNormalizer:
    """Turns raw parsed flights into a merged, chronologically ordered list"""

    def __init__(self, airport_service: AirportService):
        self.airport_service = airport_service
        self.logger = logging.getLogger(__name__)

    def normalize(self, flights: List[Flight]) -> Tuple[List[Flight], List[DataWarning]]:
        """
        Resolve countries, merge continuation fragments and sort

        Args:
            flights: Flights in any order, possibly spanning several months

        Returns:
            Tuple of (sorted merged flights, warnings for orphaned fragments)
        """
        warnings: List[DataWarning] = []
        resolved = [self._resolve_countries(f) for f in flights]
        merged = self.merge_continuations(resolved, warnings)
        merged.sort(key=sort_key)

        self.logger.info(f"Normalized {len(flights)} flights into {len(merged)} legs")
        return merged, warnings

    def _resolve_countries(self, flight: Flight) -> Flight:
        if flight.departure_country and flight.arrival_country:
            return flight
        return replace(
            flight,
            departure_country=flight.departure_country or self.airport_service.get_country(flight.departure),
            arrival_country=flight.arrival_country or self.airport_service.get_country(flight.arrival),
        )

    def _parent_date(self, fragment: Flight) -> date:
        """Date in the prior month on which the parent flight departed"""
        last_of_prior = fragment.date.replace(day=1) - timedelta(days=1)
        if fragment.continuation_day:
            last_day = calendar.monthrange(last_of_prior.year, last_of_prior.month)[1]
            return last_of_prior.replace(day=min(fragment.continuation_day, last_day))
        return last_of_prior

    def merge_continuations(self, flights: List[Flight], warnings: List[DataWarning]) -> List[Flight]:
        """
        Merge cross-month continuation fragments into their parent flights

        The merged flight keeps the parent's date and departure, takes the
        fragment's arrival, and carries the summed block time. A fragment
        without a parent is kept as it is and reported.
        """
        parents: Dict[int, int] = {}
        claimed = set()

        for i, fragment in enumerate(flights):
            if not (fragment.is_continuation and fragment.continuation_of):
                continue
            parent_date = self._parent_date(fragment)
            parent_index = self._find_parent(flights, fragment.continuation_of, parent_date, claimed)
            if parent_index is None:
                continue
            parents[i] = parent_index
            claimed.add(parent_index)

        merged: List[Flight] = []
        for i, flight in enumerate(flights):
            if i in claimed:
                continue
            if i in parents:
                parent = flights[parents[i]]
                merged.append(self._merge(parent, flight))
                self.logger.info(
                    f"Merged continuation {flight.flight_number} ({format_date(flight.date)}) "
                    f"into {parent.flight_number} ({format_date(parent.date)})"
                )
            elif flight.is_continuation and flight.continuation_of:
                self.logger.warning(f"Orphaned continuation flight {flight.flight_number} on {format_date(flight.date)}")
                warnings.append(DataWarning(
                    warning_type="orphaned_continuation",
                    message=f"Continuation flight {flight.flight_number} on {format_date(flight.date)} "
                            f"has no matching flight in the previous month",
                    details=f"{flight.departure}-{flight.arrival}, expected parent {flight.continuation_of}",
                ))
                merged.append(flight)
            else:
                merged.append(flight)

        return merged

    def _find_parent(self, flights: List[Flight], flight_number: str, parent_date: date, claimed) -> Optional[int]:
        for idx, candidate in enumerate(flights):
            if idx in claimed or candidate.is_continuation:
                continue
            if candidate.flight_number == flight_number and candidate.date == parent_date:
                return idx
        return None

    def _merge(self, parent: Flight, fragment: Flight) -> Flight:
        block_minutes = parse_time_to_minutes(parent.block_time) + parse_time_to_minutes(fragment.block_time)
        return replace(
            parent,
            arrival=fragment.arrival,
            arrival_time=fragment.arrival_time,
            arrival_country=fragment.arrival_country,
            block_time=minutes_to_block_time(block_minutes),
            duty_code=parent.duty_code or fragment.duty_code,
            is_continuation=False,
            continuation_of=None,
            continuation_day=None,
        )
