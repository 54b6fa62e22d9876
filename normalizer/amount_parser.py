"""
Amount parser for ledger amounts.

The ledger reports amounts as signed integers in millisatoshis; the feed shows
whole sats.
"""
from typing import Optional, Union

MSAT_PER_SAT = 1000


def parse_msat(value: Union[str, int, float, None]) -> Optional[int]:
    """
    Parse a ledger amount into signed integer millisatoshis.

    Handles:
    - Integers and integral floats: -5000, 5000.0
    - Numeric strings: "-5000", " 5000 "
    - Thousands separators: "5,000"

    Args:
        value: Raw amount value

    Returns:
        Signed millisatoshi amount, or None if unparseable
    """
    if value is None or isinstance(value, bool):
        return None

    if isinstance(value, int):
        return value

    if isinstance(value, float):
        if value != value or value in (float("inf"), float("-inf")):
            return None
        return int(round(value))

    value_str = str(value).strip().replace(',', '').replace(' ', '')

    if not value_str:
        return None

    try:
        return int(value_str)
    except ValueError:
        pass

    try:
        return int(round(float(value_str)))
    except (ValueError, OverflowError):
        return None


def msat_to_sats(amount_msat: Optional[int]) -> int:
    """
    Convert millisatoshis to whole sats, truncating toward zero.

    Args:
        amount_msat: Amount in millisatoshis

    Returns:
        Whole sats (0 for None)
    """
    if amount_msat is None:
        return 0
    return int(amount_msat / MSAT_PER_SAT)


def format_sats(amount_msat: Optional[int], unit: str = "Sats") -> str:
    """
    Format a millisatoshi amount as absolute whole sats with grouping.

    Args:
        amount_msat: Amount in millisatoshis
        unit: Unit label to append (empty for none)

    Returns:
        Formatted string like "1,250 Sats", or empty string for None
    """
    if amount_msat is None:
        return ""

    text = f"{abs(msat_to_sats(amount_msat)):,}"
    if unit:
        text = f"{text} {unit}"
    return text
