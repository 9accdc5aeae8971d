"""
Lookup services for the Crew Tax Deduction Calculator: airports and allowance rates
"""
import os
import logging
from typing import Dict, Tuple, Optional, Set

import pandas as pd

from config import TaxConfig
from models import UnknownAirportError, RateTableError
from utils import resource_path


def _read_table(csv_path: str) -> pd.DataFrame:
    """Read one of the semicolon separated data tables as strings"""
    if not os.path.exists(csv_path):
        raise RateTableError(f"Data file not found: {csv_path}")

    for encoding in ['utf-8', 'latin1']:
        try:
            return pd.read_csv(csv_path, sep=';', dtype=str, keep_default_na=False, encoding=encoding)
        except UnicodeDecodeError:
            continue
        except (pd.errors.ParserError, pd.errors.EmptyDataError) as e:
            raise RateTableError(f"Could not parse '{csv_path}': {e}")

    raise RateTableError(f"Could not decode '{csv_path}' with any known encoding.")


def _require_columns(df: pd.DataFrame, columns, csv_path: str) -> None:
    missing = [col for col in columns if col not in df.columns]
    if missing:
        raise RateTableError(f"'{csv_path}' is missing columns: {', '.join(missing)}")


class AirportService:
    """Service resolving airports to countries, rate cities and flight type"""

    def __init__(self, airports_csv: Optional[str] = None, countries_csv: Optional[str] = None):
        self.airports_csv = airports_csv or resource_path("data/airports.csv")
        self.countries_csv = countries_csv or resource_path("data/countries.csv")
        self.logger = logging.getLogger(__name__)

        self.airports: Dict[str, Tuple[str, str, Optional[bool]]] = {}
        self.countries: Dict[str, Tuple[str, bool]] = {}
        self._load_airports()
        self._load_countries()

    def _load_airports(self) -> None:
        """Load airport table from CSV file"""
        df = _read_table(self.airports_csv)
        _require_columns(df, ['iata', 'country_code', 'allowance_city', 'longhaul'], self.airports_csv)

        for _, row in df.iterrows():
            iata = row['iata'].strip().upper()
            if not iata:
                continue
            longhaul_flag = row['longhaul'].strip().lower()
            longhaul = None if longhaul_flag == '' else longhaul_flag == 'true'
            self.airports[iata] = (row['country_code'].strip().upper(), row['allowance_city'].strip(), longhaul)

        self.logger.debug(f"Loaded {len(self.airports)} airports from {self.airports_csv}")

    def _load_countries(self) -> None:
        """Load country names and short-haul flags from CSV file"""
        df = _read_table(self.countries_csv)
        _require_columns(df, ['code', 'name', 'shorthaul'], self.countries_csv)

        self.countries = {
            row['code'].strip().upper(): (row['name'].strip(), row['shorthaul'].strip().lower() == 'true')
            for _, row in df.iterrows()
            if row['code'].strip()
        }

    def is_known(self, iata_code: str) -> bool:
        return (iata_code or '').strip().upper() in self.airports

    def get_country(self, iata_code: str, strict: bool = False) -> str:
        """
        Get the ISO country code of an airport

        Args:
            iata_code: IATA code of the airport
            strict: Raise instead of returning the unknown-country marker

        Returns:
            Two-letter country code, or "XX" for unknown airports
        """
        code = (iata_code or '').strip().upper()
        if code not in self.airports:
            if strict:
                raise UnknownAirportError(code)
            return TaxConfig.UNKNOWN_COUNTRY_CODE
        return self.airports[code][0]

    def get_country_name(self, country_code: str) -> str:
        """German display name of a country, or the code itself when unlisted"""
        code = (country_code or '').strip().upper()
        if code in self.countries:
            return self.countries[code][0]
        return code

    def get_allowance_city(self, iata_code: str) -> Optional[str]:
        """City-specific rate key for an airport (e.g. BOM -> "Indien - Mumbai")"""
        code = (iata_code or '').strip().upper()
        if code in self.airports and self.airports[code][1]:
            return self.airports[code][1]
        return None

    def is_domestic_country(self, country_code: str) -> bool:
        return (country_code or '').strip().upper() == TaxConfig.HOME_COUNTRY_CODE

    def is_domestic(self, iata_code: str) -> bool:
        return self.is_domestic_country(self.get_country(iata_code))

    def is_longhaul_destination(self, iata_code: str) -> bool:
        """Intercontinental destination; unknown airports count as longhaul"""
        code = (iata_code or '').strip().upper()
        if code not in self.airports:
            return True
        country_code, _, longhaul = self.airports[code]
        if longhaul is not None:
            return longhaul
        if country_code in self.countries:
            return not self.countries[country_code][1]
        return True

    def unknown_airports(self, codes) -> Set[str]:
        return {c.strip().upper() for c in codes if c and not self.is_known(c)}


class RateResolver:
    """Service resolving per-diem rates for countries, cities and years"""

    def __init__(self, airport_service: AirportService,
                 rates_csv: Optional[str] = None, aliases_csv: Optional[str] = None):
        self.airport_service = airport_service
        self.rates_csv = rates_csv or resource_path("data/allowance_rates.csv")
        self.aliases_csv = aliases_csv or resource_path("data/country_aliases.csv")
        self.logger = logging.getLogger(__name__)

        self.rates: Dict[int, Dict[str, Tuple[float, float]]] = {}
        self.aliases: Dict[str, str] = {}
        self._load_rates()
        self._load_aliases()

    def _load_rates(self) -> None:
        """Load the yearly allowance table"""
        df = _read_table(self.rates_csv)
        _require_columns(df, ['year', 'country', 'full_day', 'partial_day'], self.rates_csv)

        try:
            df['year'] = df['year'].astype(int)
            df['full_day'] = df['full_day'].str.replace(',', '.').astype(float)
            df['partial_day'] = df['partial_day'].str.replace(',', '.').astype(float)
        except ValueError as e:
            raise RateTableError(f"Invalid number in '{self.rates_csv}': {e}")

        for year, group in df.groupby('year'):
            self.rates[int(year)] = {
                row['country'].strip(): (row['full_day'], row['partial_day'])
                for _, row in group.iterrows()
            }

        self.logger.debug(f"Loaded allowance rates for years {sorted(self.rates)}")

    def _load_aliases(self) -> None:
        df = _read_table(self.aliases_csv)
        _require_columns(df, ['alias', 'allowance_name'], self.aliases_csv)
        self.aliases = {row['alias'].strip(): row['allowance_name'].strip() for _, row in df.iterrows()}

    def _table_for_year(self, year: int) -> Dict[str, Tuple[float, float]]:
        rate_year = TaxConfig.resolve_rate_year(year)
        if rate_year != year:
            self.logger.debug(f"No allowance table for {year}, using {rate_year}")
        return self.rates.get(rate_year, {})

    def normalize_country_name(self, country: Optional[str]) -> str:
        """Map a display name onto its rate-table key"""
        if not country:
            return TaxConfig.HOME_COUNTRY_NAME
        return self.aliases.get(country, country)

    def allowance_name_for_country(self, country_code: str) -> str:
        """Rate-table key for an ISO country code"""
        return self.normalize_country_name(self.airport_service.get_country_name(country_code))

    def allowance_name_for_airport(self, iata_code: str) -> str:
        """Rate-table key for an airport, preferring a city-specific entry"""
        city = self.airport_service.get_allowance_city(iata_code)
        if city:
            return city
        return self.allowance_name_for_country(self.airport_service.get_country(iata_code))

    def get_rates(self, country: str, year: int) -> Tuple[float, float]:
        """
        Get (full-day, partial-day) rates for a country or city name

        Args:
            country: Country or "Country - City" name, display or table spelling
            year: Calendar year of the allowance day

        Returns:
            Tuple of (full_day_rate, partial_day_rate)
        """
        table = self._table_for_year(year)
        name = self.normalize_country_name(country)

        if name in table:
            return table[name]

        lowered = name.lower()
        for table_name, rates in table.items():
            if table_name.lower() == lowered:
                return rates

        self.logger.warning(f"No allowance rate for '{country}', using {TaxConfig.FALLBACK_COUNTRY_NAME} rates")
        return table.get(TaxConfig.FALLBACK_COUNTRY_NAME, TaxConfig.FALLBACK_RATES)
