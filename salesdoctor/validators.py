"""
Input validation functions for engine parameters.

All validators raise ValidationError (or ConfigValidationError for runtime
tunables) on invalid input.
"""

from datetime import date, datetime
from typing import Any, Tuple

from salesdoctor.exceptions import ConfigValidationError, ValidationError


VALID_PERIODS = {"today", "yesterday", "week", "month", "year", "custom"}
VALID_CURRENCY_FILTERS = {"all", "som", "dollar"}

# Maximum custom range, roughly two years of history
MAX_RANGE_DAYS = 731


def validate_exchange_rate(
    value: Any,
    min_rate: float = 1000.0,
    max_rate: float = 50000.0,
    field: str = "exchange_rate"
) -> float:
    """
    Validate a USD -> local exchange rate.

    Args:
        value: Rate to validate (number or numeric string)
        min_rate: Lowest accepted rate (inclusive)
        max_rate: Highest accepted rate (inclusive)
        field: Field name for error messages

    Returns:
        Rate as float

    Raises:
        ConfigValidationError: If rate is not numeric or out of range
    """
    if value is None or isinstance(value, bool):
        raise ConfigValidationError(field, "Must be a number", value)

    try:
        rate = float(value)
    except (TypeError, ValueError):
        raise ConfigValidationError(field, "Must be a number", value)

    # NaN fails both comparisons, so check explicitly
    if rate != rate or not min_rate <= rate <= max_rate:
        raise ConfigValidationError(
            field,
            f"Must be between {min_rate:.0f} and {max_rate:.0f}",
            value
        )

    return rate


def validate_period(value: str, field: str = "period") -> str:
    """
    Validate a named period.

    Raises:
        ValidationError: If period is unknown
    """
    if not isinstance(value, str) or value.lower() not in VALID_PERIODS:
        raise ValidationError(
            field,
            f"Must be one of {sorted(VALID_PERIODS)}",
            value
        )
    return value.lower()


def validate_date_string(
    value: str,
    field: str = "date",
    format: str = "%Y-%m-%d"
) -> date:
    """
    Validate and parse a date string.

    Args:
        value: Date string to validate
        field: Field name for error messages
        format: Expected date format (default: YYYY-MM-DD)

    Returns:
        Parsed date object

    Raises:
        ValidationError: If date is invalid or in wrong format
    """
    if not value:
        raise ValidationError(field, "Date is required", value)

    if not isinstance(value, str):
        raise ValidationError(field, "Must be a string", value)

    try:
        return datetime.strptime(value, format).date()
    except ValueError:
        raise ValidationError(
            field,
            f"Invalid date format. Expected {format}",
            value
        )


def validate_date_range(
    start_date: str,
    end_date: str,
    max_days: int = MAX_RANGE_DAYS
) -> Tuple[date, date]:
    """
    Validate a date range.

    Returns:
        Tuple of (start_date, end_date) as date objects

    Raises:
        ValidationError: If dates are invalid or range is too large
    """
    start = validate_date_string(start_date, "start_date")
    end = validate_date_string(end_date, "end_date")

    if start > end:
        raise ValidationError(
            "date_range",
            "Start date must be before or equal to end date",
            f"{start_date} to {end_date}"
        )

    days_diff = (end - start).days
    if days_diff > max_days:
        raise ValidationError(
            "date_range",
            f"Date range cannot exceed {max_days} days",
            f"{days_diff} days"
        )

    return start, end


def validate_currency_filter(value: str, field: str = "currency") -> str:
    """Validate the agent-debt currency filter ("all", "som" or "dollar")."""
    if value is None:
        return "all"
    if not isinstance(value, str) or value.lower() not in VALID_CURRENCY_FILTERS:
        raise ValidationError(
            field,
            f"Must be one of {sorted(VALID_CURRENCY_FILTERS)}",
            value
        )
    return value.lower()


def validate_threshold(value: Any, field: str, allow_zero: bool = True) -> float:
    """Validate a non-negative numeric tunable."""
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ConfigValidationError(field, "Must be a number", value)

    if number != number or number < 0 or (number == 0 and not allow_zero):
        raise ConfigValidationError(field, "Must be a positive number", value)

    return number
