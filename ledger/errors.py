"""
Error taxonomy for ledger access and reconciliation.

Only UpstreamUnavailable stops a feed pass. Partial failures and malformed
records degrade the affected item and the pass continues.
"""
from typing import Optional


class LedgerError(Exception):
    """Base class for ledger errors."""


class UpstreamError(LedgerError):
    """A ledger API call failed (network error, non-2xx status or bad body)."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class UpstreamUnavailable(LedgerError):
    """The roster or the current user could not be loaded; the pass is aborted."""


class UpstreamPartialFailure(LedgerError):
    """
    A single user's wallets or a single wallet's payments could not be fetched.

    Recorded as a warning on the feed result; never raised out of a pass.
    """

    def __init__(self, scope: str, key: str, reason: str):
        super().__init__(f"Failed to fetch {scope} for {key}: {reason}")
        self.scope = scope
        self.key = key
        self.reason = reason


class MalformedRecord(LedgerError):
    """A wallet or payment record is missing fields required for matching."""


class ConfigurationError(Exception):
    """Required settings (such as the ledger node URL) are missing."""
