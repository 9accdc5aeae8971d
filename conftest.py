"""
Shared fixtures for the calculator tests
"""
import os
import sys
from datetime import date

import pytest

# Add the project directory to the Python path
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from allowances import DailyAllowanceEngine
from calculator import TaxCalculatorService
from commute import CommuteCalculator
from config_manager import ConfigManager
from models import Flight, Settings
from normalizer import FlightNormalizer
from segmenter import TourSegmenter
from services import AirportService, RateResolver


@pytest.fixture(scope="session")
def airport_service():
    return AirportService()


@pytest.fixture(scope="session")
def rate_resolver(airport_service):
    return RateResolver(airport_service)


@pytest.fixture
def normalizer(airport_service):
    return FlightNormalizer(airport_service)


@pytest.fixture
def segmenter(airport_service, rate_resolver):
    return TourSegmenter(airport_service, rate_resolver)


@pytest.fixture
def engine(airport_service, rate_resolver):
    return DailyAllowanceEngine(airport_service, rate_resolver)


@pytest.fixture
def commute(segmenter):
    return CommuteCalculator(segmenter)


@pytest.fixture
def settings():
    return Settings()


@pytest.fixture
def calculator(airport_service, rate_resolver, tmp_path):
    config_manager = ConfigManager(str(tmp_path / "app_config.json"))
    return TaxCalculatorService(airport_service, rate_resolver, config_manager)


@pytest.fixture
def make_flight():
    """Factory for flights; countries are left for the normalizer to resolve"""
    counter = {"n": 0}

    def _make(day: date, departure: str, arrival: str, dep_time: str, block: str,
              duty_code=None, arr_time=None, flight_number=None, **kwargs) -> Flight:
        counter["n"] += 1
        if arr_time is None:
            hours, minutes = dep_time.split(':')
            b_hours, b_minutes = block.split(':')
            total = (int(hours) * 60 + int(minutes) + int(b_hours) * 60 + int(b_minutes)) % (24 * 60)
            arr_time = f"{total // 60:02d}:{total % 60:02d}"
        return Flight(
            flight_id=f"F{counter['n']}",
            date=day,
            flight_number=flight_number or f"LH{100 + counter['n']}",
            departure=departure,
            arrival=arrival,
            departure_time=dep_time,
            arrival_time=arr_time,
            block_time=block,
            duty_code=duty_code,
            **kwargs
        )

    return _make
