"""Shared fixtures: temp SQLite database, fake upstream client, provider configs."""

import sys
import os
from datetime import datetime, timedelta, timezone

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import pytest

from config import ProviderConfig
from quotecache import init_db, QuoteStore, UsageLedger, RetryExecutor, SyncExecutor
from quotecache.db import utcnow
from quotecache.upstream import UpstreamClient

# Wednesday 11:00 New York time, US market open
NOW = datetime(2026, 10, 14, 15, 0, tzinfo=timezone.utc)


class FakeClient(UpstreamClient):
    """In-memory upstream that records every logical call it receives."""

    provider = 'fake'
    endpoints = {'ids': '/map', 'metadata': '/info', 'quotes': '/quotes'}

    def __init__(self, ids=None, metadata=None, quotes=None, resolves_ids=True, fetches_metadata=True):
        super().__init__('test-key')
        self.ids = ids or {}
        self.metadata = metadata or {}
        self.quotes = quotes or {}
        self.resolves_ids = resolves_ids
        self.fetches_metadata = fetches_metadata
        self.calls = []
        # category -> exceptions raised (in order) before calls start succeeding
        self.failures = {}

    def _maybe_fail(self, category):
        """Simulate one HTTP request to the category's endpoint."""
        endpoint = self.endpoints[category]
        pending = self.failures.get(category)
        if pending:
            exc = pending.pop(0) if isinstance(pending, list) else pending
            self._record_request(endpoint, False, getattr(exc, 'status_code', None))
            raise exc
        self._record_request(endpoint, True, 200)

    def resolve_ids(self, symbols):
        self.calls.append(('ids', list(symbols)))
        self._maybe_fail('ids')
        return {s: self.ids[s] for s in symbols if s in self.ids}

    def fetch_metadata(self, internal_ids):
        self.calls.append(('metadata', list(internal_ids)))
        self._maybe_fail('metadata')
        return {i: dict(self.metadata[i]) for i in internal_ids if i in self.metadata}

    def fetch_quotes(self, internal_ids):
        self.calls.append(('quotes', list(internal_ids)))
        self._maybe_fail('quotes')
        return {i: dict(self.quotes[i]) for i in internal_ids if i in self.quotes}

    def categories(self):
        return [category for category, _ in self.calls]


def make_provider(**overrides) -> ProviderConfig:
    settings = dict(
        name='coinmarketcap',
        asset_class='crypto',
        symbols=['BTC', 'ETH'],
        monthly_limit=100,
        hard_stop=95,
        warning_threshold=85,
        min_interval=timedelta(hours=6),
        metadata_ttl=timedelta(days=7),
    )
    settings.update(overrides)
    return ProviderConfig(**settings)


def crypto_client(**overrides) -> FakeClient:
    settings = dict(
        ids={'BTC': '1', 'ETH': '1027'},
        metadata={
            '1': {'name': 'Bitcoin', 'logo': 'https://s2.coinmarketcap.com/static/img/coins/64x64/1.png'},
            '1027': {'name': 'Ethereum', 'logo': 'https://s2.coinmarketcap.com/static/img/coins/64x64/1027.png'},
        },
        quotes={
            '1': {'symbol': 'BTC', 'name': 'Bitcoin', 'price': 67250.12, 'percent_change': 1.84},
            '1027': {'symbol': 'ETH', 'name': 'Ethereum', 'price': 2610.5, 'percent_change': -0.42},
        },
    )
    settings.update(overrides)
    return FakeClient(**settings)


@pytest.fixture
def db_path(tmp_path):
    path = tmp_path / 'quote_cache.db'
    init_db(path)
    return path


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def make_executor(db_path, sleeps):
    """Build a SyncExecutor over the temp database that never really sleeps."""

    def factory(provider, client, write_delay=0.05, clock=utcnow):
        store = QuoteStore(provider.asset_class, db_path)
        ledger = UsageLedger(db_path)
        retry = RetryExecutor(3, 1000, sleep=sleeps.append)
        return SyncExecutor(
            provider,
            client,
            store,
            ledger,
            retry=retry,
            write_delay=write_delay,
            sleep=sleeps.append,
            clock=clock
        )

    return factory


def seed_usage(db_path, provider_name, count, success=True, when=None, endpoint='/quotes'):
    ledger = UsageLedger(db_path)
    when = when or (NOW - timedelta(hours=1))
    for _ in range(count):
        ledger.record(provider_name, endpoint, success, 200 if success else 500, now=when)


def usage_rows(db_path):
    from quotecache import get_connection
    with get_connection(db_path) as conn:
        return [dict(r) for r in conn.execute("SELECT * FROM api_usage ORDER BY id").fetchall()]
