"""
Tests for parsing, rounding and formatting helpers and the configuration layer
"""
import json
from datetime import date

import pytest

from config import TaxConfig
from config_manager import ConfigManager, get_config_manager
from utils import (
    parse_time_to_minutes, parse_block_time_to_hours, minutes_to_block_time,
    round_money, format_currency, format_hours, format_date,
    validate_numeric_input,
)


def test_parse_time_to_minutes():
    assert parse_time_to_minutes("07:45") == 465
    assert parse_time_to_minutes("0:30") == 30
    assert parse_time_to_minutes("13:05") == 785


@pytest.mark.parametrize("value", ["", None, "7.45", "ab:cd", "1:2:3"])
def test_malformed_time_parses_to_zero(value):
    assert parse_time_to_minutes(value) == 0


def test_block_time_conversions():
    assert parse_block_time_to_hours("1:30") == 1.5
    assert minutes_to_block_time(545) == "9:05"


def test_round_money_half_up():
    assert round_money(2.675) == 2.68
    assert round_money(0.125) == 0.13
    assert round_money(60.00000000000001) == 60.0


def test_german_formatting():
    assert format_currency(1234.5) == "1.234,50 €"
    assert format_currency(0) == "0,00 €"
    assert format_hours(1.5) == "1:30"
    assert format_date(date(2024, 3, 7)) == "07.03.2024"


def test_validate_numeric_input_accepts_comma():
    assert validate_numeric_input("1,60", "cleaning") == 1.6
    with pytest.raises(ValueError):
        validate_numeric_input("abc", "cleaning")


@pytest.mark.parametrize("year, expected", [
    (2020, (0.30, 0.30)),
    (2021, (0.30, 0.35)),
    (2024, (0.30, 0.38)),
    (2026, (0.38, 0.38)),
])
def test_distance_rate_tiers(year, expected):
    assert TaxConfig.get_distance_rates(year) == expected


def test_aircraft_classification():
    assert TaxConfig.is_longhaul_aircraft("A350-900")
    assert not TaxConfig.is_longhaul_aircraft("A320")
    assert not TaxConfig.is_longhaul_aircraft(None)


def test_config_defaults_without_file(tmp_path):
    manager = ConfigManager(str(tmp_path / "app_config.json"))
    assert manager.get("calculation", "decimal_places") == 2
    assert manager.get_settings().distance_km == 30.0
    assert manager.validate_config() == []


def test_config_file_overrides_settings(tmp_path):
    config_file = tmp_path / "app_config.json"
    config_file.write_text(json.dumps({
        "settings": {"distance_km": "45,5", "count_only_tour_start": True},
        "logging": {"level": "DEBUG"},
    }), encoding="utf-8")

    manager = ConfigManager(str(config_file))
    settings = manager.get_settings()
    assert settings.distance_km == 45.5
    assert settings.count_only_tour_start
    assert settings.tip_per_night == 3.60
    assert manager.get("logging", "level") == "DEBUG"


def test_config_validation_reports_issues(tmp_path):
    config_file = tmp_path / "app_config.json"
    config_file.write_text(json.dumps({
        "calculation": {"default_year": 1999},
        "settings": {"home_base_override": "TXL"},
    }), encoding="utf-8")

    issues = ConfigManager(str(config_file)).validate_config()
    assert any("default_year" in issue for issue in issues)
    assert any("home_base_override" in issue for issue in issues)


def test_broken_config_file_falls_back_to_defaults(tmp_path):
    config_file = tmp_path / "app_config.json"
    config_file.write_text("{not json", encoding="utf-8")
    assert ConfigManager(str(config_file)).get("calculation", "default_year") == TaxConfig.DEFAULT_YEAR


def test_commute_minutes(settings):
    assert settings.commute_minutes() == 15.0
    settings.commute_minutes_override = 40
    assert settings.commute_minutes() == 40.0


def test_global_config_access():
    manager = get_config_manager()
    assert manager is get_config_manager()
    assert manager.get("calculation", "decimal_places") == 2
    assert manager.get("missing", "key", "fallback") == "fallback"
