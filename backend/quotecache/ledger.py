"""Append-only log of outbound upstream calls, per provider."""

from calendar import monthrange
from datetime import datetime
from pathlib import Path
from typing import Dict, Optional
import logging
import sqlite3

from .db import get_connection, to_db_timestamp, utcnow
from .errors import LedgerWriteFailure

logger = logging.getLogger(__name__)


def month_start(now: datetime) -> datetime:
    """First instant of the calendar month containing `now`."""
    return now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)


class UsageLedger:
    """
    Records every outbound call attempt and answers usage count queries.

    Writes are best-effort: a failed write is logged and dropped so that
    telemetry never blocks a price update. Reads return 0 when the usage
    table is unreachable; callers that must tell "no usage" apart from
    "ledger missing" use is_available().
    """

    def __init__(self, db_path: Path = None):
        self.db_path = db_path

    def record(
        self,
        provider: str,
        endpoint: str,
        success: bool,
        status_code: Optional[int] = None,
        now: Optional[datetime] = None
    ) -> None:
        """Append one usage record. Never raises."""
        timestamp = to_db_timestamp(now or utcnow())
        try:
            with get_connection(self.db_path) as conn:
                conn.execute("""
                    INSERT INTO api_usage (provider, endpoint, success, status_code, timestamp)
                    VALUES (?, ?, ?, ?, ?)
                """, (provider, endpoint, 1 if success else 0, status_code, timestamp))
                conn.commit()
        except Exception as e:
            failure = LedgerWriteFailure(f"Failed to record usage for {provider} {endpoint}: {e}")
            logger.error(str(failure))

    def count_since(self, provider: str, since: datetime, only_successful: bool = True) -> int:
        """Number of records for provider with timestamp >= since."""
        query = "SELECT COUNT(*) FROM api_usage WHERE provider = ? AND timestamp >= ?"
        params = [provider, to_db_timestamp(since)]
        if only_successful:
            query += " AND success = 1"

        try:
            with get_connection(self.db_path) as conn:
                return conn.execute(query, params).fetchone()[0]
        except sqlite3.Error as e:
            logger.warning(f"Usage ledger unavailable for {provider}, assuming 0 calls: {e}")
            return 0

    def is_available(self) -> bool:
        """Whether the usage table can be queried at all."""
        try:
            with get_connection(self.db_path) as conn:
                conn.execute("SELECT 1 FROM api_usage LIMIT 1").fetchall()
            return True
        except sqlite3.Error:
            return False

    def summary(
        self,
        provider: str,
        monthly_limit: Optional[int] = None,
        only_successful: bool = True,
        now: Optional[datetime] = None
    ) -> Dict:
        """
        Usage statistics for the current calendar month.

        Returns:
            Dict with calls_used, calls_remaining, calls_today, failed_calls,
            daily_average, projected_month_end and monthly_limit
        """
        now = now or utcnow()
        start = month_start(now)
        day_start = now.replace(hour=0, minute=0, second=0, microsecond=0)
        days_in_month = monthrange(now.year, now.month)[1]

        successful = self.count_since(provider, start, only_successful=True)
        attempts = self.count_since(provider, start, only_successful=False)
        used = successful if only_successful else attempts
        today = self.count_since(provider, day_start, only_successful=only_successful)

        daily_average = used / now.day

        return {
            'provider': provider,
            'month_start': to_db_timestamp(start),
            'calls_used': used,
            'calls_today': today,
            'failed_calls': max(attempts - successful, 0),
            'calls_remaining': (monthly_limit - used) if monthly_limit is not None else None,
            'daily_average': round(daily_average, 1),
            'projected_month_end': round(daily_average * days_in_month),
            'monthly_limit': monthly_limit,
        }
