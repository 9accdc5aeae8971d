"""
Commute trips, work days and the distance deduction (Entfernungspauschale)
"""
import logging
from datetime import date
from typing import List, Optional, Set

from config import TaxConfig
from models import Flight, NonFlightDay, Settings, TravelCosts
from segmenter import TourSegmenter


class CommuteCalculator:
    """Counts chargeable commute trips and work days and prices the distance"""

    def __init__(self, segmenter: TourSegmenter):
        self.segmenter = segmenter
        self.logger = logging.getLogger(__name__)

    def count_work_days(self, flights: List[Flight], non_flight_days: List[NonFlightDay],
                        settings: Settings) -> int:
        """Distinct days with flights or counted non-flight duty"""
        work_dates: Set[date] = {f.date for f in flights}

        for day in non_flight_days:
            if day.duty_code == TaxConfig.MEDICAL_CODE:
                if settings.count_medical_as_trip:
                    work_dates.add(day.date)
            elif day.duty_code == TaxConfig.LAYOVER_CODE:
                if settings.count_foreign_as_work_day:
                    work_dates.add(day.date)
            elif day.duty_code in TaxConfig.GROUND_DUTY_CODES and settings.count_ground_duty_as_trip:
                work_dates.add(day.date)

        return len(work_dates)

    def count_trips(self, flights: List[Flight], non_flight_days: List[NonFlightDay],
                    settings: Settings, home_base: Optional[str]) -> int:
        """
        Count one-way commute trips

        Args:
            flights: Flights of the period being counted
            non_flight_days: Non-flight duty days of the same period
            settings: Trip counting policy
            home_base: Resolved home base, None disables round-trip detection

        Returns:
            Number of one-way trips
        """
        starts = sum(1 for f in flights if f.duty_code == TaxConfig.TOUR_START_CODE)
        ends = sum(1 for f in flights if f.duty_code == TaxConfig.TOUR_END_CODE)
        trips = starts if settings.count_only_tour_start else starts + ends

        marker_days = self.segmenter.days_with_tour_markers(flights)
        round_trips = self.segmenter.detect_same_day_round_trips(flights, home_base, marker_days)
        trips += 2 * len(round_trips)

        if settings.count_medical_as_trip:
            trips += 2 * sum(1 for d in non_flight_days if d.duty_code == TaxConfig.MEDICAL_CODE)

        if settings.count_ground_duty_as_trip:
            trips += 2 * sum(
                1 for d in non_flight_days
                if d.duty_code in TaxConfig.GROUND_DUTY_CODES
                and d.duty_code not in TaxConfig.NON_TRIP_GROUND_DUTY_CODES
            )

        self.logger.debug(
            f"Trips: {starts} tour starts, {ends} tour ends, {len(round_trips)} same-day round trips -> {trips}"
        )
        return trips

    def distance_deduction(self, trips: int, distance_km: float, year: int) -> TravelCosts:
        """
        Price commute trips with the year's tiered per-km rates

        Args:
            trips: One-way trip count
            distance_km: One-way distance home to airport
            year: Tax year selecting the rate tier

        Returns:
            Unrounded travel costs
        """
        rate_first, rate_above = TaxConfig.get_distance_rates(year)
        if trips <= 0 or distance_km <= 0:
            return TravelCosts(
                trips=max(trips, 0), distance_km=distance_km, total_km=0.0,
                deduction_first_20km=0.0, deduction_above_20km=0.0, total=0.0,
                rate_first_20km=rate_first, rate_above_20km=rate_above,
            )

        first_km = min(distance_km, TaxConfig.DISTANCE_TIER_KM)
        above_km = max(0.0, distance_km - TaxConfig.DISTANCE_TIER_KM)
        first = trips * first_km * rate_first
        above = trips * above_km * rate_above

        return TravelCosts(
            trips=trips,
            distance_km=distance_km,
            total_km=trips * distance_km,
            deduction_first_20km=first,
            deduction_above_20km=above,
            total=first + above,
            rate_first_20km=rate_first,
            rate_above_20km=rate_above,
        )
