import logging
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

logger = logging.getLogger(__name__)

# ---- Generic parsing helpers ----

def parse_int(value: Any) -> Optional[int]:
    """
    Converts Bitrix id-like values to int.
    Accepts: 68/"68"/"68.0"/None/"". Returns None when the value is empty or not a number.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value)
    if isinstance(value, str):
        s = value.strip()
        if not s:
            return None
        # allow "6.0"
        s_norm = s.replace(",", ".")
        try:
            return int(float(s_norm))
        except (ValueError, OverflowError):
            logger.debug(f"Cannot parse int from {value!r}")
            return None
    return None


def parse_decimal(value: Any) -> Optional[Decimal]:
    """
    Converts Bitrix money-like values to Decimal.
    Accepts: int/float/"3050000.00"/"3 050 000,00"/None/"".
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, Decimal):
        return value
    if isinstance(value, int):
        return Decimal(value)
    if isinstance(value, float):
        return Decimal(str(value))
    if isinstance(value, str):
        s = value.strip()
        if not s:
            return None
        # remove spaces and normalize decimal separator
        s = s.replace(" ", "").replace("\u00a0", "").replace(",", ".")
        try:
            return Decimal(s)
        except InvalidOperation:
            logger.debug(f"Cannot parse decimal from {value!r}")
            return None
    return None


def parse_date(value: Any) -> Optional[date]:
    """
    Converts Bitrix ISO date/time strings to date.
    Accepts: '2025-09-23T03:00:00+03:00', '2025-09-23', etc.
    """
    if not value or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str):
        return None
    s = value.strip()
    if not s:
        return None
    try:
        # normalize Z
        return datetime.fromisoformat(s.replace("Z", "+00:00")).date()
    except ValueError:
        # fallback: try first 10 chars YYYY-MM-DD
        try:
            return datetime.strptime(s[:10], "%Y-%m-%d").date()
        except ValueError:
            logger.debug(f"Cannot parse date from {value!r}")
            return None


def parse_text(value: Any) -> Optional[str]:
    if value is None or value is False:
        return None
    return str(value)
