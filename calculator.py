"""
Aggregation of allowances, trips and hotel nights into the final tax calculation
"""
import logging
from collections import defaultdict
from datetime import date
from typing import Dict, List, Optional, Tuple

import pandas as pd

from allowances import DailyAllowanceEngine, DailyAllowanceMap
from commute import CommuteCalculator
from config import TaxConfig
from config_manager import ConfigManager, get_config_manager
from models import (
    Flight, NonFlightDay, Settings, CrewProfile, ReimbursementData, HotelNight,
    DataWarning, MonthlyBreakdown, TaxCalculation, CleaningCosts, TravelExpenses,
    TravelCosts, MealAllowances, CountryAllowance, CalculationResult, RateType,
)
from normalizer import FlightNormalizer
from segmenter import TourSegmenter
from services import AirportService, RateResolver
from utils import parse_block_time_to_hours, round_money, setup_logging, format_currency, format_hours

MonthKey = Tuple[int, int]


class TaxCalculatorService:
    """Main service turning roster records into monthly breakdowns and the tax calculation"""

    def __init__(self, airport_service: Optional[AirportService] = None,
                 rate_resolver: Optional[RateResolver] = None,
                 config_manager: Optional[ConfigManager] = None):
        self.config_manager = config_manager or get_config_manager()
        self.airport_service = airport_service or AirportService(
            self.config_manager.data_path("airports_csv"),
            self.config_manager.data_path("countries_csv"),
        )
        self.rate_resolver = rate_resolver or RateResolver(
            self.airport_service,
            self.config_manager.data_path("allowance_rates_csv"),
            self.config_manager.data_path("country_aliases_csv"),
        )
        self.normalizer = FlightNormalizer(self.airport_service)
        self.segmenter = TourSegmenter(self.airport_service, self.rate_resolver)
        self.allowance_engine = DailyAllowanceEngine(self.airport_service, self.rate_resolver)
        self.commute = CommuteCalculator(self.segmenter)
        self.decimal_places = self.config_manager.get("calculation", "decimal_places", 2)
        self.default_year = self.config_manager.get("calculation", "default_year", TaxConfig.DEFAULT_YEAR)
        self.logger = logging.getLogger(__name__)

    def _round(self, amount: float) -> float:
        return round_money(amount, self.decimal_places)

    def calculate(self, flights: List[Flight], non_flight_days: Optional[List[NonFlightDay]] = None,
                  settings: Optional[Settings] = None,
                  reimbursements: Optional[List[ReimbursementData]] = None,
                  profile: Optional[CrewProfile] = None,
                  as_of: Optional[date] = None) -> CalculationResult:
        """
        Run the full calculation

        Args:
            flights: Parsed flights, any order, continuation fragments unmerged
            non_flight_days: Ground duty, medical and layover days
            settings: Calculation settings, defaults from configuration
            reimbursements: Employer tax-free reimbursements per month
            profile: Crew role, aircraft type and home base from the roster
            as_of: Display-only reference date, does not affect any amount

        Returns:
            CalculationResult with monthly breakdowns, tax calculation, daily allowances and warnings
        """
        settings = settings or self.config_manager.get_settings()
        days = sorted(non_flight_days or [], key=lambda d: d.date)
        reimbursements = list(reimbursements or [])

        normalized, warnings = self.normalizer.normalize(flights)
        warnings.extend(self._unknown_airport_warnings(normalized))

        detected = self.segmenter.detect_home_base(normalized)
        home_base = self.segmenter.resolve_home_base(settings, profile, detected)
        if home_base is None:
            self.logger.info("Home base unknown, same-day round trips will not be counted")

        periods, segments, segment_warnings = self.segmenter.segment(normalized, days)
        warnings.extend(segment_warnings)

        allowances, allowance_warnings = self.allowance_engine.calculate(
            normalized, days, periods, settings, profile
        )
        warnings.extend(allowance_warnings)

        hotel_nights = self.segmenter.detect_hotel_nights(segments)
        allowance_df = self._allowance_frame(allowances)

        monthly = self._monthly_breakdown(normalized, days, settings, reimbursements,
                                          home_base, allowance_df, hotel_nights)
        warnings.extend(self._missing_month_warnings(monthly, reimbursements))

        tax = self._tax_calculation(normalized, days, settings, reimbursements, home_base,
                                    allowance_df, hotel_nights, monthly)

        self.logger.info(
            f"Calculated {len(monthly)} months, grand total {format_currency(tax.grand_total)}, {len(warnings)} warnings"
        )

        return CalculationResult(
            monthly=monthly,
            tax=tax,
            daily_allowances=allowances.as_dict(),
            hotel_nights=hotel_nights,
            warnings=warnings,
            home_base=home_base,
            as_of=as_of,
        )

    def _unknown_airport_warnings(self, flights: List[Flight]) -> List[DataWarning]:
        codes = [c for f in flights for c in (f.departure, f.arrival)]
        unknown = sorted(self.airport_service.unknown_airports(codes))
        if not unknown:
            return []
        self.logger.warning(f"Unknown airports treated as foreign: {', '.join(unknown)}")
        return [DataWarning(
            warning_type="data_quality",
            message=f"Unknown airport codes: {', '.join(unknown)}",
            details="Treated as foreign destinations with fallback allowance rates",
        )]

    def _allowance_frame(self, allowances: DailyAllowanceMap) -> pd.DataFrame:
        """Qualifying allowance days as a DataFrame"""
        rows = [
            {
                'Date': info.date,
                'Year': info.date.year,
                'Month': info.date.month,
                'Country': info.country,
                'RateType': info.rate_type.value,
                'Rate': info.rate,
            }
            for info in allowances.values()
            if info.qualifies
        ]
        if not rows:
            return pd.DataFrame(columns=['Date', 'Year', 'Month', 'Country', 'RateType', 'Rate'])
        return pd.DataFrame(rows)

    def _month_keys(self, flights: List[Flight], days: List[NonFlightDay],
                    allowance_df: pd.DataFrame, hotel_nights: List[HotelNight]) -> List[MonthKey]:
        keys = {(f.year, f.month) for f in flights}
        keys.update((d.year, d.month) for d in days)
        keys.update((n.date.year, n.date.month) for n in hotel_nights)
        if not allowance_df.empty:
            keys.update(zip(allowance_df['Year'].astype(int), allowance_df['Month'].astype(int)))
        return sorted(keys)

    def _monthly_breakdown(self, flights: List[Flight], days: List[NonFlightDay], settings: Settings,
                           reimbursements: List[ReimbursementData], home_base: Optional[str],
                           allowance_df: pd.DataFrame, hotel_nights: List[HotelNight]) -> List[MonthlyBreakdown]:
        """One breakdown per calendar month, ordered by date"""
        flights_by_month: Dict[MonthKey, List[Flight]] = defaultdict(list)
        for flight in flights:
            flights_by_month[(flight.year, flight.month)].append(flight)

        days_by_month: Dict[MonthKey, List[NonFlightDay]] = defaultdict(list)
        for day in days:
            days_by_month[(day.year, day.month)].append(day)

        nights_by_month: Dict[MonthKey, int] = defaultdict(int)
        for night in hotel_nights:
            nights_by_month[(night.date.year, night.date.month)] += 1

        meal_by_month: Dict[MonthKey, float] = {}
        if not allowance_df.empty:
            grouped = allowance_df.groupby(['Year', 'Month'])['Rate'].sum()
            meal_by_month = {(int(y), int(m)): float(total) for (y, m), total in grouped.items()}

        breakdown = []
        for year, month in self._month_keys(flights, days, allowance_df, hotel_nights):
            month_flights = flights_by_month.get((year, month), [])
            month_days = days_by_month.get((year, month), [])

            flight_hours = sum(parse_block_time_to_hours(f.block_time) for f in month_flights)
            work_days = self.commute.count_work_days(month_flights, month_days, settings)
            trips = self.commute.count_trips(month_flights, month_days, settings, home_base)
            distance = self.commute.distance_deduction(trips, settings.distance_km, year)
            reimbursed = sum(r.tax_free_reimbursement for r in reimbursements
                             if r.year == year and r.month == month)
            nights = nights_by_month.get((year, month), 0)
            self.logger.debug(
                f"{TaxConfig.month_name(month)} {year}: {format_hours(flight_hours)} block, "
                f"{work_days} work days, {trips} trips, {nights} hotel nights"
            )

            breakdown.append(MonthlyBreakdown(
                month=month,
                year=year,
                month_name=TaxConfig.month_name(month),
                flight_hours=self._round(flight_hours),
                work_days=work_days,
                trips=trips,
                distance_deduction=self._round(distance.total),
                meal_allowance=self._round(meal_by_month.get((year, month), 0.0)),
                employer_reimbursement=self._round(reimbursed),
                tips=self._round(nights * settings.tip_per_night),
                cleaning_costs=self._round(work_days * settings.cleaning_cost_per_day),
                hotel_nights=nights,
            ))

        return breakdown

    def _missing_month_warnings(self, monthly: List[MonthlyBreakdown],
                                reimbursements: List[ReimbursementData]) -> List[DataWarning]:
        covered = {(r.year, r.month) for r in reimbursements}
        missing = [m for m in monthly if m.work_days > 0 and (m.year, m.month) not in covered]
        if not missing:
            return []
        names = ", ".join(f"{m.month_name} {m.year}" for m in missing)
        return [DataWarning(
            warning_type="missing_month",
            message=f"No employer reimbursement record for: {names}",
            details="Meal allowances for these months are deducted without a reimbursement offset",
        )]

    def _country_breakdown(self, allowance_df: pd.DataFrame) -> List[CountryAllowance]:
        """Per-country day counts and subtotals"""
        if allowance_df.empty:
            return []

        grouped = (allowance_df.groupby('Country')
                   .agg(
                       full_days=('RateType', lambda s: int((s == RateType.FULL_DAY.value).sum())),
                       partial_days=('RateType', lambda s: int((s == RateType.PARTIAL_DAY.value).sum())),
                       total=('Rate', 'sum'),
                       year=('Year', 'max'),
                   )
                   .reset_index())

        countries = []
        for _, row in grouped.iterrows():
            full_rate, partial_rate = self.rate_resolver.get_rates(row['Country'], int(row['year']))
            countries.append(CountryAllowance(
                country=row['Country'],
                full_days=int(row['full_days']),
                partial_days=int(row['partial_days']),
                full_rate=full_rate,
                partial_rate=partial_rate,
                total=self._round(float(row['total'])),
            ))

        countries.sort(key=lambda c: (c.country != TaxConfig.HOME_COUNTRY_NAME, c.country))
        return countries

    def _tax_year(self, flights: List[Flight], days: List[NonFlightDay]) -> int:
        dates = [f.date for f in flights] + [d.date for d in days]
        return min(dates).year if dates else self.default_year

    def _tax_calculation(self, flights: List[Flight], days: List[NonFlightDay], settings: Settings,
                         reimbursements: List[ReimbursementData], home_base: Optional[str],
                         allowance_df: pd.DataFrame, hotel_nights: List[HotelNight],
                         monthly: List[MonthlyBreakdown]) -> TaxCalculation:
        """Final calculation over the whole dataset"""
        year = self._tax_year(flights, days)

        work_days = self.commute.count_work_days(flights, days, settings)
        cleaning_total = work_days * settings.cleaning_cost_per_day
        tips_total = len(hotel_nights) * settings.tip_per_night

        # Each month is priced with its own year's distance rates
        distance_parts = [self.commute.distance_deduction(m.trips, settings.distance_km, m.year) for m in monthly]
        trips = sum(m.trips for m in monthly)
        first_20 = sum(p.deduction_first_20km for p in distance_parts)
        above_20 = sum(p.deduction_above_20km for p in distance_parts)
        distance_total = first_20 + above_20
        rate_first, rate_above = TaxConfig.get_distance_rates(year)

        meal_total = float(allowance_df['Rate'].sum()) if not allowance_df.empty else 0.0
        reimbursed = sum(r.tax_free_reimbursement for r in reimbursements)
        deductible = max(0.0, meal_total - reimbursed)

        grand_total = cleaning_total + tips_total + distance_total + deductible

        return TaxCalculation(
            year=year,
            cleaning_costs=CleaningCosts(
                work_days=work_days,
                rate_per_day=settings.cleaning_cost_per_day,
                total=self._round(cleaning_total),
            ),
            travel_expenses=TravelExpenses(
                hotel_nights=len(hotel_nights),
                tip_rate=settings.tip_per_night,
                total=self._round(tips_total),
            ),
            travel_costs=TravelCosts(
                trips=trips,
                distance_km=settings.distance_km,
                total_km=trips * settings.distance_km,
                deduction_first_20km=self._round(first_20),
                deduction_above_20km=self._round(above_20),
                total=self._round(distance_total),
                rate_first_20km=rate_first,
                rate_above_20km=rate_above,
            ),
            meal_allowances=MealAllowances(
                countries=self._country_breakdown(allowance_df),
                total_allowances=self._round(meal_total),
                employer_reimbursement=self._round(reimbursed),
                deductible_difference=self._round(deductible),
            ),
            grand_total=self._round(grand_total),
        )


def create_calculator(config_file: Optional[str] = None) -> TaxCalculatorService:
    """
    Build a calculator wired from the application configuration

    Args:
        config_file: Optional JSON configuration file, the global configuration otherwise

    Returns:
        Ready to use TaxCalculatorService
    """
    config_manager = ConfigManager(config_file) if config_file else get_config_manager()

    debug_mode = (config_manager.get("app", "debug_mode", False)
                  or config_manager.get("logging", "level", "INFO") == "DEBUG")
    log_file = None
    if config_manager.get("logging", "file_enabled", False):
        log_file = config_manager.get("logging", "file_name", "tax_calculator.log")
    setup_logging(debug_mode, log_file)

    return TaxCalculatorService(config_manager=config_manager)
