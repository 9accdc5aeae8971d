"""
Configuration module for the Crew Tax Deduction Calculator
Contains duty codes, briefing times, distance rates, and other legal constants
"""
from typing import Tuple


class TaxConfig:
    """Configuration class containing all tax-related constants"""

    # Duty codes as printed on the roster
    DUTY_CODES = {
        "A": "Fahrt zur Arbeit",
        "E": "Fahrt von Arbeit",
        "ME": "Medizinische Untersuchung",
        "FL": "Auslandstag",
        "EM": "Emergency Schulung",
        "RE": "Reserve",
        "RB": "Rufbereitschaft",
        "DP": "Dispatch",
        "DT": "Duty Time",
        "SI": "Simulator",
        "TK": "Training Kurzschulung",
        "SB": "Standby",
    }

    TOUR_START_CODE = "A"
    TOUR_END_CODE = "E"
    MEDICAL_CODE = "ME"
    LAYOVER_CODE = "FL"

    GROUND_DUTY_CODES = ("EM", "RE", "RB", "DP", "DT", "SI", "TK", "SB")
    # Ground duty that never counts as a commute trip
    NON_TRIP_GROUND_DUTY_CODES = ("RE",)
    # Non-flight days that earn the domestic partial rate
    ALLOWANCE_QUALIFYING_CODES = ("ME", "SB", "EM")

    # Home territory
    HOME_COUNTRY_CODE = "DE"
    HOME_COUNTRY_NAME = "Deutschland"
    HUB_AIRPORTS = ("FRA", "MUC")
    UNKNOWN_COUNTRY_CODE = "XX"

    # Allowance rate table years
    SUPPORTED_YEARS = (2023, 2024, 2025)
    DEFAULT_YEAR = 2025

    # BMF rule: unlisted countries use the Luxembourg rates
    FALLBACK_COUNTRY_NAME = "Luxemburg"
    FALLBACK_RATES = (63, 42)

    # Absence thresholds in hours
    PARTIAL_DAY_THRESHOLD_HOURS = 8
    FULL_DAY_THRESHOLD_HOURS = 24

    # Briefing times in minutes
    BRIEFING_LONGHAUL_MINUTES = 110
    BRIEFING_SHORTHAUL_COCKPIT_MINUTES = 80
    BRIEFING_SHORTHAUL_CABIN_MINUTES = 85
    DEBRIEFING_MINUTES = 30
    SIMULATOR_BRIEFING_TOTAL_MINUTES = 120

    LONGHAUL_AIRCRAFT_TYPES = ("A330", "A340", "A350", "A380", "B747", "B777", "B787")

    # Any other role, including an unknown one, is treated as cockpit crew
    CABIN_ROLE_KEYWORDS = ("flugbegleiter", "purser", "cabin", "kabine", "steward")
    CABIN_ROLE_CODES = ("FA", "CC", "PU", "SP")

    # Simulator signature
    SIMULATOR_FLIGHT_PREFIX = "LH9"
    SIMULATOR_BLOCK_TIME = "4:00"

    # Minutes of commute per km driven one way
    COMMUTE_MINUTES_PER_KM = 0.5

    # Distance allowance tiers: (first_year, rate_first_20km, rate_above_20km), newest first
    DISTANCE_RATE_TIERS = [
        (2026, 0.38, 0.38),
        (2022, 0.30, 0.38),
        (2021, 0.30, 0.35),
        (0, 0.30, 0.30),
    ]
    DISTANCE_TIER_KM = 20

    MONTH_NAMES = [
        "Januar", "Februar", "März", "April", "Mai", "Juni",
        "Juli", "August", "September", "Oktober", "November", "Dezember",
    ]

    @classmethod
    def get_distance_rates(cls, year: int) -> Tuple[float, float]:
        """Per-km rates (first 20 km, beyond 20 km) for a tax year"""
        for first_year, first_rate, above_rate in cls.DISTANCE_RATE_TIERS:
            if year >= first_year:
                return first_rate, above_rate
        return cls.DISTANCE_RATE_TIERS[-1][1:]

    @classmethod
    def resolve_rate_year(cls, year: int) -> int:
        """Map any year onto a year present in the rate tables"""
        return year if year in cls.SUPPORTED_YEARS else cls.DEFAULT_YEAR

    @classmethod
    def is_longhaul_aircraft(cls, aircraft_type: str) -> bool:
        if not aircraft_type:
            return False
        normalized = aircraft_type.strip().upper()
        return any(normalized.startswith(t) for t in cls.LONGHAUL_AIRCRAFT_TYPES)

    @classmethod
    def month_name(cls, month: int) -> str:
        return cls.MONTH_NAMES[month - 1]
