"""
Local quote cache for equities, crypto and precious metals.

Keeps upstream API usage inside monthly quotas: every refresh cycle is
gated by a per-provider budget, planned to skip slow-changing metadata, and
merged per symbol into a SQLite store.
"""

from .db import init_db, get_connection, get_db_stats
from .store import QuoteStore
from .ledger import UsageLedger
from .retry import RetryExecutor, RetryExhausted
from .budget import BudgetGatekeeper, RefreshDecision, is_market_hours
from .planner import MetadataPlanner, SyncPlan
from .sync import SyncExecutor, SyncReport, run_sync_cycle, run_all
from .errors import (
    SyncError,
    QuotaExceeded,
    RateLimitError,
    UpstreamCallFailed,
    InvalidRecord,
    LedgerWriteFailure,
)

__all__ = [
    'init_db',
    'get_connection',
    'get_db_stats',
    'QuoteStore',
    'UsageLedger',
    'RetryExecutor',
    'RetryExhausted',
    'BudgetGatekeeper',
    'RefreshDecision',
    'is_market_hours',
    'MetadataPlanner',
    'SyncPlan',
    'SyncExecutor',
    'SyncReport',
    'run_sync_cycle',
    'run_all',
    'SyncError',
    'QuotaExceeded',
    'RateLimitError',
    'UpstreamCallFailed',
    'InvalidRecord',
    'LedgerWriteFailure',
]
