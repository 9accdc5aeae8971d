"""
Data models for the Crew Tax Deduction Calculator
"""
from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import List, Optional, Dict, Any

from config import TaxConfig
from utils import validate_numeric_input


class RateType(Enum):
    """Classification of a single allowance day"""
    FULL_DAY = "24h"
    PARTIAL_DAY = "An/Ab"
    NONE = "none"


@dataclass(frozen=True)
class Flight:
    """Represents a single flight leg as delivered by the roster parser"""
    flight_id: str
    date: date
    flight_number: str
    departure: str
    arrival: str
    departure_time: str
    arrival_time: str
    block_time: str
    duty_code: Optional[str] = None
    is_continuation: bool = False
    continuation_of: Optional[str] = None
    continuation_day: Optional[int] = None
    departure_country: Optional[str] = None
    arrival_country: Optional[str] = None

    @property
    def month(self) -> int:
        return self.date.month

    @property
    def year(self) -> int:
        return self.date.year

    @property
    def is_tour_marker(self) -> bool:
        return self.duty_code in ("A", "E")


@dataclass(frozen=True)
class NonFlightDay:
    """A calendar day without flights, tagged with a duty code"""
    date: date
    duty_code: str
    description: str = ""
    country: Optional[str] = None

    @property
    def month(self) -> int:
        return self.date.month

    @property
    def year(self) -> int:
        return self.date.year


@dataclass
class Settings:
    """User-tunable calculation policy"""
    distance_km: float = 30.0
    commute_minutes_override: Optional[float] = None
    cleaning_cost_per_day: float = 1.60
    tip_per_night: float = 3.60
    count_only_tour_start: bool = False
    count_medical_as_trip: bool = True
    count_ground_duty_as_trip: bool = True
    count_foreign_as_work_day: bool = True
    home_base_override: Optional[str] = None

    def commute_minutes(self) -> float:
        """One-way commute time in minutes (half a minute per km unless overridden)"""
        if self.commute_minutes_override is not None and self.commute_minutes_override >= 0:
            return float(self.commute_minutes_override)
        return self.distance_km * TaxConfig.COMMUTE_MINUTES_PER_KM

    @classmethod
    def from_config(cls, values: Dict[str, Any]) -> "Settings":
        """Build settings from the 'settings' section of the app configuration"""
        override = values.get("commute_minutes_override")
        return cls(
            distance_km=validate_numeric_input(str(values.get("distance_km", 30)), "distance_km"),
            commute_minutes_override=(
                validate_numeric_input(str(override), "commute_minutes_override")
                if override is not None else None
            ),
            cleaning_cost_per_day=validate_numeric_input(
                str(values.get("cleaning_cost_per_day", 1.60)), "cleaning_cost_per_day"
            ),
            tip_per_night=validate_numeric_input(str(values.get("tip_per_night", 3.60)), "tip_per_night"),
            count_only_tour_start=bool(values.get("count_only_tour_start", False)),
            count_medical_as_trip=bool(values.get("count_medical_as_trip", True)),
            count_ground_duty_as_trip=bool(values.get("count_ground_duty_as_trip", True)),
            count_foreign_as_work_day=bool(values.get("count_foreign_as_work_day", True)),
            home_base_override=values.get("home_base_override") or None,
        )


@dataclass
class CrewProfile:
    """Crew member profile as read from the roster header"""
    role: Optional[str] = None
    aircraft_type: Optional[str] = None
    home_base: Optional[str] = None


@dataclass
class ReimbursementData:
    """Tax-free meal allowance already paid by the employer for one month"""
    month: int
    year: int
    tax_free_reimbursement: float


@dataclass
class TripSegment:
    """A tour away from home territory, as found by the segmenter"""
    start_date: date
    end_date: date
    flights: List[Flight] = field(default_factory=list)
    countries: List[str] = field(default_factory=list)
    is_incomplete: bool = False
    is_closed: bool = False


@dataclass
class AbroadPeriod:
    """Engine-internal date range spent abroad, rebuilt on every calculation"""
    start_date: date
    end_date: date
    country: str
    location: str
    flights: List[Flight] = field(default_factory=list)
    departure_flight_date: Optional[date] = None
    return_flight_date: Optional[date] = None
    return_country: Optional[str] = None
    return_location: Optional[str] = None
    is_incomplete: bool = False
    is_overnight_departure: bool = False
    is_overnight_return: bool = False

    def overlaps(self, other: "AbroadPeriod") -> bool:
        return self.start_date <= other.end_date and self.end_date >= other.start_date


@dataclass(frozen=True)
class DailyAllowanceInfo:
    """The allowance decision for one calendar day"""
    date: date
    country: str
    location: str
    rate: float
    rate_type: RateType
    has_flights: bool = False
    is_departure_day: bool = False
    is_return_day: bool = False
    from_layover_day: bool = False

    @property
    def qualifies(self) -> bool:
        return self.rate_type is not RateType.NONE and self.rate > 0


@dataclass(frozen=True)
class HotelNight:
    """Night spent in a hotel abroad, used for the tip deduction"""
    date: date
    location: str
    country: str


@dataclass
class DataWarning:
    """Advisory diagnostic surfaced to the caller, never fatal"""
    warning_type: str
    message: str
    severity: str = "warning"
    details: Optional[str] = None


@dataclass
class MonthlyBreakdown:
    """Deductions attributed to a single calendar month"""
    month: int
    year: int
    month_name: str
    flight_hours: float
    work_days: int
    trips: int
    distance_deduction: float
    meal_allowance: float
    employer_reimbursement: float
    tips: float
    cleaning_costs: float
    hotel_nights: int


@dataclass
class CleaningCosts:
    """Clothing cleaning costs"""
    work_days: int
    rate_per_day: float
    total: float


@dataclass
class TravelExpenses:
    """Hotel tips"""
    hotel_nights: int
    tip_rate: float
    total: float


@dataclass
class TravelCosts:
    """Commuting distance deduction"""
    trips: int
    distance_km: float
    total_km: float
    deduction_first_20km: float
    deduction_above_20km: float
    total: float
    rate_first_20km: float
    rate_above_20km: float


@dataclass
class CountryAllowance:
    """Meal allowance subtotal for one country or city"""
    country: str
    full_days: int
    partial_days: int
    full_rate: float
    partial_rate: float
    total: float

    @property
    def days(self) -> int:
        return self.full_days + self.partial_days


@dataclass
class MealAllowances:
    """Meal allowances less employer reimbursement"""
    countries: List[CountryAllowance]
    total_allowances: float
    employer_reimbursement: float
    deductible_difference: float


@dataclass
class TaxCalculation:
    """Final tax calculation over the whole dataset"""
    year: int
    cleaning_costs: CleaningCosts
    travel_expenses: TravelExpenses
    travel_costs: TravelCosts
    meal_allowances: MealAllowances
    grand_total: float


@dataclass
class CalculationResult:
    """Everything one engine invocation produces"""
    monthly: List[MonthlyBreakdown]
    tax: TaxCalculation
    daily_allowances: Dict[date, DailyAllowanceInfo]
    hotel_nights: List[HotelNight]
    warnings: List[DataWarning]
    home_base: Optional[str] = None
    as_of: Optional[date] = None


class UnknownAirportError(Exception):
    """Exception raised when an airport is missing from the airport table"""
    def __init__(self, iata_code: str):
        self.iata_code = iata_code
        super().__init__(f"Unknown airport: {iata_code}")


class RateTableError(Exception):
    """Exception raised when a rate or airport table cannot be read"""
    pass
