"""Failure classes for the quote sync engine."""

from typing import Optional


class SyncError(Exception):
    """Base class for anticipated sync failures."""


class QuotaExceeded(SyncError):
    """Refresh denied by the budget gatekeeper. Surfaced as a skip, not an error."""

    def __init__(self, reason: str, next_eligible_at=None):
        super().__init__(reason)
        self.reason = reason
        self.next_eligible_at = next_eligible_at


class RateLimitError(SyncError):
    """
    Upstream answered 429. Recovered locally by the retry executor.

    partial holds results a per-symbol loop completed before the 429, so a
    retry only asks for what is left.
    """

    def __init__(self, message: str = 'RATE_LIMIT_EXCEEDED', status_code: int = 429, partial=None):
        super().__init__(message)
        self.status_code = status_code
        self.partial = partial


class UpstreamCallFailed(SyncError):
    """Network/HTTP failure on a batched upstream call."""

    def __init__(self, message: str, category: Optional[str] = None, status_code: Optional[int] = None):
        super().__init__(message)
        self.category = category
        self.status_code = status_code


class InvalidRecord(SyncError):
    """A single symbol's upstream record failed validation."""

    def __init__(self, symbol: str, reason: str):
        super().__init__(f"{symbol}: {reason}")
        self.symbol = symbol
        self.reason = reason


class LedgerWriteFailure(SyncError):
    """A usage record could not be written. Logged, never propagated."""
