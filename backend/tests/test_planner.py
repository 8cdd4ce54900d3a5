"""
Tests for metadata/ID call planning.

Run with: pytest tests/test_planner.py
From the backend directory.
"""

import sys
import os

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from datetime import timedelta

from quotecache.planner import MetadataPlanner
from tests.conftest import NOW


def _cached(internal_id, logo='https://example.com/logo.png', age=timedelta(days=1)):
    return {
        'provider_internal_id': internal_id,
        'logo_url': logo,
        'metadata_updated_at': NOW - age if age is not None else None,
    }


def test_empty_cache_needs_everything():
    plan = MetadataPlanner().plan(['BTC', 'ETH'], {}, now=NOW)

    assert plan.ids_needed == ['BTC', 'ETH']
    assert plan.metadata_needed == ['BTC', 'ETH']
    assert plan.price_ids() == []


def test_fresh_cache_needs_only_prices():
    cached = {'BTC': _cached('1'), 'ETH': _cached('1027')}

    plan = MetadataPlanner().plan(['BTC', 'ETH'], cached, now=NOW)

    assert not plan.needs_ids
    assert not plan.needs_metadata
    assert plan.price_ids() == ['1', '1027']


def test_stale_missing_logo_and_missing_timestamp_refetch_metadata():
    cached = {
        'BTC': _cached('1', age=timedelta(days=8)),
        'ETH': _cached('1027', logo=None),
        'SOL': _cached('5426', age=None),
        'XRP': _cached('52'),
    }

    plan = MetadataPlanner().plan(['BTC', 'ETH', 'SOL', 'XRP'], cached, now=NOW)

    assert plan.ids_needed == []
    assert plan.metadata_needed == ['BTC', 'ETH', 'SOL']
    assert plan.metadata_ids() == ['1', '1027', '5426']


def test_custom_ttl():
    cached = {'BTC': _cached('1', age=timedelta(hours=2))}

    assert MetadataPlanner(timedelta(hours=1)).plan(['BTC'], cached, now=NOW).needs_metadata
    assert not MetadataPlanner(timedelta(hours=3)).plan(['BTC'], cached, now=NOW).needs_metadata


def test_new_symbol_among_cached_ones():
    cached = {'BTC': _cached('1')}

    plan = MetadataPlanner().plan(['BTC', 'ETH'], cached, now=NOW)

    assert plan.ids_needed == ['ETH']
    assert plan.metadata_needed == ['ETH']


def test_symbols_are_normalized_and_deduplicated():
    plan = MetadataPlanner().plan(['btc', 'BTC', ' eth ', ''], {}, now=NOW)
    assert plan.tracked == ['BTC', 'ETH']


def test_apply_resolved_ids_drops_unresolved():
    plan = MetadataPlanner().plan(['BTC', 'NOPE'], {}, now=NOW)

    plan.apply_resolved_ids({'btc': 1})

    assert plan.id_map == {'BTC': '1'}
    assert plan.unresolved == ['NOPE']
    assert plan.metadata_needed == ['BTC']
    assert plan.price_ids() == ['1']


def test_provider_without_id_lookup_uses_symbols():
    plan = MetadataPlanner().plan(['XAU', 'XAG'], {}, now=NOW, resolves_ids=False, fetches_metadata=False)

    assert not plan.needs_ids
    assert not plan.needs_metadata
    assert plan.price_ids() == ['XAU', 'XAG']


def test_provider_without_id_lookup_still_plans_metadata():
    cached = {'AAPL': _cached(None)}

    plan = MetadataPlanner().plan(['AAPL', 'MSFT'], cached, now=NOW, resolves_ids=False)

    assert plan.metadata_needed == ['MSFT']
    assert plan.metadata_ids() == ['MSFT']
