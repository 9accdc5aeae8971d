"""
Utility functions for the Crew Tax Deduction Calculator
"""
import os
import logging
from datetime import date
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional


logger = logging.getLogger(__name__)


def resource_path(relative_path: str) -> str:
    """Get absolute path to a resource shipped next to the modules"""
    base_path = os.path.dirname(os.path.abspath(__file__))
    return os.path.join(base_path, relative_path)


def parse_time_to_minutes(time_str: str) -> int:
    """
    Parse an "HH:MM" (or "H:MM") string into minutes

    Malformed input is logged and parsed as zero so one bad record
    does not stop the calculation.

    Args:
        time_str: Time of day or duration

    Returns:
        Total minutes
    """
    if not time_str or not isinstance(time_str, str):
        logger.warning(f"Invalid time value {time_str!r}, using 0")
        return 0

    parts = time_str.strip().split(':')
    if len(parts) != 2:
        logger.warning(f"Unexpected time format {time_str!r}, using 0")
        return 0

    try:
        hours, minutes = int(parts[0]), int(parts[1])
    except ValueError:
        logger.warning(f"Non-numeric time {time_str!r}, using 0")
        return 0

    return hours * 60 + minutes


def parse_block_time_to_hours(block_time: str) -> float:
    """Convert an "H:MM" block time into decimal hours"""
    return parse_time_to_minutes(block_time) / 60


def minutes_to_block_time(total_minutes: int) -> str:
    """Format minutes as "H:MM" block time"""
    hours, minutes = divmod(int(total_minutes), 60)
    return f"{hours}:{minutes:02d}"


def round_money(amount: float, places: int = 2) -> float:
    """Round half-up to the given number of decimal places"""
    quantum = Decimal(1).scaleb(-places)
    return float(Decimal(str(amount)).quantize(quantum, rounding=ROUND_HALF_UP))


def format_currency(amount: float) -> str:
    """Format an amount in German EUR notation, e.g. 1.234,56 €"""
    rounded = Decimal(str(amount)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
    text = f"{rounded:,.2f}"
    # Swap separators: 1,234.56 -> 1.234,56
    text = text.replace(',', '_').replace('.', ',').replace('_', '.')
    return f"{text} €"


def format_hours(hours: float) -> str:
    """Format decimal hours as H:MM"""
    whole = int(hours)
    minutes = int(round((hours - whole) * 60))
    if minutes == 60:
        whole, minutes = whole + 1, 0
    return f"{whole}:{minutes:02d}"


def format_date(value: date) -> str:
    """Format a date as DD.MM.YYYY"""
    return value.strftime('%d.%m.%Y')


def setup_logging(debug: bool = False, log_file: Optional[str] = None) -> logging.Logger:
    """Setup logging configuration"""
    level = logging.DEBUG if debug else logging.INFO

    handlers = [logging.StreamHandler()]
    if log_file:
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=handlers
    )

    return logging.getLogger(__name__)


def validate_numeric_input(value: str, field_name: str) -> float:
    """
    Validate and convert numeric input

    Args:
        value: String value to validate
        field_name: Name of the field for error messages

    Returns:
        Converted float value

    Raises:
        ValueError: If value is not a valid number
    """
    try:
        # Handle comma as decimal separator
        cleaned_value = value.replace(',', '.')
        return float(cleaned_value)
    except (ValueError, TypeError, AttributeError):
        raise ValueError(f"Invalid numeric value for {field_name}: {value}")
