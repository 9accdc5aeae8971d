"""
Configuration management: built-in defaults overlaid by an optional JSON file
"""
import json
import os
import logging
from typing import Dict, Any, List

from config import TaxConfig
from models import Settings
from utils import resource_path


class ConfigManager:
    """Manages application configuration read from a JSON file"""

    def __init__(self, config_file: str = "app_config.json"):
        self.config_file = config_file if os.path.isabs(config_file) else resource_path(config_file)
        self.config: Dict[str, Any] = {}
        self.logger = logging.getLogger(__name__)
        self._load_config()

    def _default_config(self) -> Dict[str, Any]:
        """Built-in configuration used when no file overrides a value"""
        return {
            "app": {
                "version": "1.0",
                "title": "Crew Tax Deduction Calculator",
                "debug_mode": False
            },
            "calculation": {
                "default_year": TaxConfig.DEFAULT_YEAR,
                "decimal_places": 2
            },
            "logging": {
                "level": "INFO",
                "file_enabled": False,
                "file_name": "tax_calculator.log"
            },
            "data": {
                "allowance_rates_csv": "data/allowance_rates.csv",
                "airports_csv": "data/airports.csv",
                "countries_csv": "data/countries.csv",
                "country_aliases_csv": "data/country_aliases.csv"
            },
            "settings": {
                "distance_km": 30,
                "commute_minutes_override": None,
                "cleaning_cost_per_day": 1.60,
                "tip_per_night": 3.60,
                "count_only_tour_start": False,
                "count_medical_as_trip": True,
                "count_ground_duty_as_trip": True,
                "count_foreign_as_work_day": True,
                "home_base_override": None
            }
        }

    def _load_config(self):
        """Load configuration from file"""
        self.config = self._default_config()

        # Try to load from file
        if os.path.exists(self.config_file):
            try:
                with open(self.config_file, 'r', encoding='utf-8') as f:
                    file_config = json.load(f)
                    self._merge_config(file_config)
                self.logger.info(f"Configuration loaded from {self.config_file}")
            except (OSError, ValueError) as e:
                self.logger.warning(f"Could not load config file: {e}, using defaults")

    def _merge_config(self, file_config: Dict[str, Any]):
        """Merge file configuration with defaults"""
        for section, values in file_config.items():
            if section in self.config and isinstance(values, dict):
                self.config[section].update(values)
            else:
                self.config[section] = values

    def get(self, section: str, key: str, default: Any = None) -> Any:
        """Get configuration value"""
        return self.config.get(section, {}).get(key, default)

    def get_section(self, section: str) -> Dict[str, Any]:
        """Get entire configuration section"""
        return self.config.get(section, {}).copy()

    def get_settings(self) -> Settings:
        """Calculation settings built from the 'settings' section"""
        return Settings.from_config(self.get_section("settings"))

    def data_path(self, key: str) -> str:
        """Absolute path of one of the data tables"""
        return resource_path(self.get("data", key))

    def validate_config(self) -> List[str]:
        """Validate configuration and return list of issues"""
        issues = []

        # Validate calculation section
        calc_config = self.get_section("calculation")
        default_year = calc_config.get("default_year")
        if default_year not in TaxConfig.SUPPORTED_YEARS:
            issues.append(f"default_year must be one of {list(TaxConfig.SUPPORTED_YEARS)}")

        decimal_places = calc_config.get("decimal_places", 0)
        if not isinstance(decimal_places, int) or decimal_places < 0 or decimal_places > 10:
            issues.append("Invalid decimal_places in calculation section")

        # Validate logging section
        log_config = self.get_section("logging")
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if log_config.get("level") not in valid_levels:
            issues.append(f"Invalid logging level, must be one of: {valid_levels}")

        # Validate data section
        for key, relative in self.get_section("data").items():
            if not os.path.exists(resource_path(relative)):
                issues.append(f"Data file for {key} not found: {relative}")

        # Validate settings section
        try:
            settings = self.get_settings()
        except ValueError as e:
            issues.append(str(e))
        else:
            if settings.distance_km < 0:
                issues.append("distance_km must not be negative")
            if settings.home_base_override and settings.home_base_override not in TaxConfig.HUB_AIRPORTS:
                issues.append(f"home_base_override must be one of {list(TaxConfig.HUB_AIRPORTS)}")

        return issues


# Global configuration instance
_config_manager = None


def get_config_manager() -> ConfigManager:
    """Get or create the global configuration manager"""
    global _config_manager
    if _config_manager is None:
        _config_manager = ConfigManager()
    return _config_manager
