"""Budget gatekeeper: decides whether a provider may be refreshed now."""

from dataclasses import dataclass
from datetime import datetime, time, timedelta, timezone
from typing import Dict, Optional
from zoneinfo import ZoneInfo
import logging

from .db import utcnow
from .errors import QuotaExceeded
from .ledger import UsageLedger, month_start
from .store import QuoteStore

logger = logging.getLogger(__name__)

US_EASTERN = ZoneInfo("America/New_York")
MARKET_OPEN_TIME = time(9, 30)
MARKET_CLOSE_TIME = time(16, 0)


def is_market_hours(now: Optional[datetime] = None) -> bool:
    """
    Return whether the US equity session (Mon-Fri 09:30-16:00 ET) is open.

    Naive datetimes are taken to be UTC, as everywhere else in the store.
    """
    current = now or utcnow()
    if current.tzinfo is None:
        current = current.replace(tzinfo=timezone.utc)
    eastern = current.astimezone(US_EASTERN)

    if eastern.weekday() >= 5:
        return False
    return MARKET_OPEN_TIME <= eastern.time() < MARKET_CLOSE_TIME


@dataclass
class RefreshDecision:
    allowed: bool
    reason: Optional[str] = None
    next_eligible_at: Optional[datetime] = None
    warning: Optional[str] = None
    used: int = 0
    limit: Optional[int] = None

    def to_dict(self) -> Dict:
        return {
            'allowed': self.allowed,
            'reason': self.reason,
            'next_eligible_at': self.next_eligible_at.isoformat() if self.next_eligible_at else None,
            'warning': self.warning,
            'used': self.used,
            'limit': self.limit,
        }


class BudgetGatekeeper:
    """
    Combines monthly quota consumption and minimum refresh interval into a
    single allow/deny decision.

    Checks run in order and the first failing one denies:
    1. Hard stop on calls used this calendar month (never bypassed)
    2. Minimum interval since the last successful price write
    3. Soft warning threshold (logged, never blocks)

    The last refresh time comes from the store, not process memory, so the
    decision survives restarts.
    """

    def __init__(self, ledger: UsageLedger, store: QuoteStore):
        self.ledger = ledger
        self.store = store

    def min_interval_for(self, provider, now: datetime) -> timedelta:
        """Interval in force at `now`; off-hours interval applies when the market is closed."""
        if provider.off_hours_min_interval is not None and not is_market_hours(now):
            return provider.off_hours_min_interval
        return provider.min_interval

    def can_refresh(self, provider, now: Optional[datetime] = None, force: bool = False) -> RefreshDecision:
        """
        Decide whether a refresh cycle for provider may run.

        Args:
            provider: ProviderConfig
            now: Reference time (defaults to current UTC time)
            force: Skip the minimum-interval check. The hard stop still applies.

        Returns:
            RefreshDecision
        """
        now = now or utcnow()
        used = 0

        # 1. Hard quota stop
        if provider.hard_stop is not None:
            if provider.fail_closed_on_ledger_error and not self.ledger.is_available():
                reason = f"Usage ledger unavailable for {provider.name}. Blocking refresh to protect quota."
                logger.error(reason)
                return RefreshDecision(allowed=False, reason=reason, limit=provider.monthly_limit)

            used = self.ledger.count_since(
                provider.name,
                month_start(now),
                only_successful=provider.count_only_successful
            )
            if used >= provider.hard_stop:
                reason = (
                    f"Monthly budget nearly exhausted ({used}/{provider.monthly_limit} calls used, "
                    f"hard stop at {provider.hard_stop}). Blocking to preserve buffer."
                )
                logger.warning(f"[{provider.name}] {reason}")
                return RefreshDecision(allowed=False, reason=reason, used=used, limit=provider.monthly_limit)

        # 2. Minimum interval since last successful refresh
        if not force:
            last_refresh = self.store.get_last_refresh_timestamp()
            if last_refresh is not None:
                interval = self.min_interval_for(provider, now)
                elapsed = now - last_refresh
                if elapsed < interval:
                    next_eligible_at = last_refresh + interval
                    hours = elapsed.total_seconds() / 3600
                    reason = (
                        f"Last refresh was {hours:.1f}h ago. "
                        f"Minimum interval is {interval.total_seconds() / 3600:.1f}h."
                    )
                    logger.info(f"[{provider.name}] Skipping refresh: {reason}")
                    return RefreshDecision(
                        allowed=False,
                        reason=reason,
                        next_eligible_at=next_eligible_at,
                        used=used,
                        limit=provider.monthly_limit
                    )

        # 3. Soft warning
        warning = None
        if provider.warning_threshold is not None and used >= provider.warning_threshold:
            warning = f"Budget warning: {used}/{provider.monthly_limit} calls used this month"
            logger.warning(f"[{provider.name}] {warning}")

        return RefreshDecision(allowed=True, warning=warning, used=used, limit=provider.monthly_limit)

    def ensure_refresh(self, provider, now: Optional[datetime] = None, force: bool = False) -> RefreshDecision:
        """
        Like can_refresh, but a denial raises.

        Raises:
            QuotaExceeded: carrying the denial reason and next eligible time
        """
        decision = self.can_refresh(provider, now=now, force=force)
        if not decision.allowed:
            raise QuotaExceeded(decision.reason, decision.next_eligible_at)
        return decision
