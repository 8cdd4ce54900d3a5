"""
Tests for the Flask API endpoints.

Run with: pytest tests/test_app.py
From the backend directory.
"""

import sys
import os

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from datetime import timedelta

import pytest

import app as app_module
from quotecache.store import QuoteStore
from quotecache.sync import SyncReport
from tests.conftest import NOW, seed_usage


@pytest.fixture
def client(db_path):
    app_module.app.config['TESTING'] = True
    app_module.app.config['QUOTE_DB_PATH'] = db_path
    with app_module.app.test_client() as test_client:
        yield test_client


def test_health(client):
    response = client.get('/api/health')
    assert response.status_code == 200
    assert response.get_json() == {'status': 'healthy'}


def test_quotes_empty(client):
    response = client.get('/api/quotes/crypto')

    assert response.status_code == 200
    assert response.get_json() == {'quotes': [], 'last_updated': None}


def test_quotes_returns_cached_rows(client, db_path):
    store = QuoteStore('stocks', db_path)
    store.upsert_quote('MSFT', {'price': 410.0, 'display_name': 'Microsoft Corp'}, now=NOW - timedelta(hours=1))
    store.upsert_quote('AAPL', {'price': 230.0, 'percent_change': 0.5}, now=NOW)

    data = client.get('/api/quotes/stocks').get_json()

    assert [q['symbol'] for q in data['quotes']] == ['AAPL', 'MSFT']
    assert data['quotes'][1]['display_name'] == 'Microsoft Corp'
    assert data['quotes'][0]['last_updated'] == NOW.isoformat(timespec='microseconds')
    assert data['last_updated'] == NOW.isoformat(timespec='microseconds')


def test_unknown_asset_class(client):
    assert client.get('/api/quotes/bonds').status_code == 404
    assert client.get('/api/refresh/bonds').status_code == 404
    assert client.get('/api/budget/bonds').status_code == 404


def test_refresh_passes_force_and_returns_report(client, db_path, monkeypatch):
    seen = {}

    def fake_cycle(provider, db_path=None, force=False):
        seen.update(provider=provider.name, db_path=db_path, force=force)
        return SyncReport(provider=provider.name, asset_class=provider.asset_class, updated=3)

    monkeypatch.setattr(app_module, 'run_sync_cycle', fake_cycle)

    response = client.post('/api/refresh/commodities?force=true')

    assert response.status_code == 200
    assert response.get_json()['updated'] == 3
    assert seen == {'provider': 'metalpriceapi', 'db_path': db_path, 'force': True}


def test_refresh_skipped_is_not_an_error(client, monkeypatch):
    def fake_cycle(provider, db_path=None, force=False):
        return SyncReport(
            provider=provider.name,
            asset_class=provider.asset_class,
            status='skipped',
            skipped=True,
            skip_reason='Last refresh was 0.1h ago. Minimum interval is 6.0h.',
            next_eligible_at=NOW,
        )

    monkeypatch.setattr(app_module, 'run_sync_cycle', fake_cycle)

    response = client.get('/api/refresh/crypto')

    assert response.status_code == 200
    data = response.get_json()
    assert data['skipped'] is True
    assert data['next_eligible_at'] == NOW.isoformat()


def test_refresh_failure_returns_502(client, monkeypatch):
    def fake_cycle(provider, db_path=None, force=False):
        return SyncReport(
            provider=provider.name,
            asset_class=provider.asset_class,
            status='failed',
            error='quotes call to finnhub failed after 3 attempt(s)',
        )

    monkeypatch.setattr(app_module, 'run_sync_cycle', fake_cycle)

    response = client.get('/api/refresh/stocks')

    assert response.status_code == 502
    assert 'finnhub' in response.get_json()['error']


def test_budget(client, db_path):
    seed_usage(db_path, 'metalpriceapi', 3, when=NOW)
    QuoteStore('commodities', db_path).upsert_quote('XAU', {'price': 2400.0}, now=NOW)

    data = client.get('/api/budget/commodities').get_json()

    assert data['provider'] == 'metalpriceapi'
    assert data['monthly_limit'] == 100
    assert data['hard_stop'] == 95
    assert data['warning_threshold'] == 85
    assert data['last_refresh'] == NOW.isoformat(timespec='microseconds')
    assert data['calls_used'] >= 0
