# File: utils/helpers.py
import logging
import datetime
from typing import Any, Optional
from decimal import Decimal, InvalidOperation

logger = logging.getLogger(__name__)


def setup_main_logging(level: int = logging.INFO):
    """Sets up basic root logging configuration."""
    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )


def ensure_utc(value: Optional[datetime.datetime]) -> Optional[datetime.datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=datetime.timezone.utc)
    return value.astimezone(datetime.timezone.utc)


def utc_now() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


def to_decimal(value: Any) -> Optional[Decimal]:
    """Converts a numeric input (int, float, str, Decimal) to Decimal, keeping None as None."""
    if value is None or value == "":
        return None
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool):
        raise TypeError(f"Boolean is not a valid numeric value: {value!r}")
    try:
        # str() keeps floats such as 0.1 from expanding to their binary representation
        return Decimal(str(value))
    except InvalidOperation as e:
        raise ValueError(f"Not a valid numeric value: {value!r}") from e


def decimal_to_float(value: Optional[Decimal], places: int = 2) -> Optional[float]:
    """Rounds a Decimal for JSON output. Floats are the standard in JSON payloads."""
    if value is None:
        return None
    return round(float(value), places)
