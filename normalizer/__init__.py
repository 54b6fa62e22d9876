"""
Normalizer module for ledger timestamps and amounts.
"""
from .time_parser import normalize_timestamp
from .amount_parser import parse_msat, msat_to_sats, format_sats

__all__ = ['normalize_timestamp', 'parse_msat', 'msat_to_sats', 'format_sats']
