"""Sync executor: one budget-aware refresh cycle per provider."""

from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional
import logging
import math
import sqlite3
import threading
import time

from .budget import BudgetGatekeeper
from .db import init_db, utcnow
from .errors import InvalidRecord, QuotaExceeded, RateLimitError, UpstreamCallFailed
from .ledger import UsageLedger
from .planner import MetadataPlanner, SyncPlan
from .retry import RetryExecutor, RetryExhausted
from .store import QuoteStore

logger = logging.getLogger(__name__)

CALL_CATEGORIES = ('ids', 'metadata', 'quotes')


@dataclass
class SyncReport:
    """Outcome of one cycle. Every anticipated failure ends up here, not in an exception."""
    provider: str
    asset_class: str
    status: str = 'ok'   # ok | partial | skipped | failed
    updated: int = 0
    failed: int = 0
    skipped: bool = False
    skip_reason: Optional[str] = None
    next_eligible_at: Optional[datetime] = None
    warning: Optional[str] = None
    error: Optional[str] = None
    calls_made: Dict[str, bool] = field(default_factory=lambda: {c: False for c in CALL_CATEGORIES})
    errors: List[Dict] = field(default_factory=list)
    timestamp: datetime = field(default_factory=utcnow)

    def add_error(self, symbol: str, reason: str) -> None:
        self.errors.append({'symbol': symbol, 'reason': reason})
        self.failed += 1

    def to_dict(self) -> Dict:
        return {
            'provider': self.provider,
            'asset_class': self.asset_class,
            'status': self.status,
            'updated': self.updated,
            'failed': self.failed,
            'skipped': self.skipped,
            'skip_reason': self.skip_reason,
            'next_eligible_at': self.next_eligible_at.isoformat() if self.next_eligible_at else None,
            'warning': self.warning,
            'error': self.error,
            'calls_made': dict(self.calls_made),
            'errors': list(self.errors),
            'timestamp': self.timestamp.isoformat(),
        }


def validate_price(symbol: str, quote: Optional[Dict]) -> float:
    """
    Return the quote's price as a finite float.

    Raises:
        InvalidRecord: if the price is missing, non-numeric, NaN or infinite
    """
    if quote is None:
        raise InvalidRecord(symbol, "Missing from quotes response")
    if quote.get('error'):
        raise InvalidRecord(symbol, str(quote['error']))

    price = quote.get('price')
    if price is None or isinstance(price, bool):
        raise InvalidRecord(symbol, f"Invalid price data for {symbol}: {price}")
    try:
        value = float(price)
    except (TypeError, ValueError):
        raise InvalidRecord(symbol, f"Invalid price data for {symbol}: {price!r}")
    if not math.isfinite(value):
        raise InvalidRecord(symbol, f"Invalid price data for {symbol}: {price}")
    return value


def _finite_or_none(value) -> Optional[float]:
    try:
        if value is None or isinstance(value, bool):
            return None
        value = float(value)
    except (TypeError, ValueError):
        return None
    return value if math.isfinite(value) else None


class SyncExecutor:
    """
    Runs one refresh cycle for a provider.

    gatekeeper -> planner -> batched upstream calls (through the retry
    executor; the client reports each HTTP request, which lands in the
    ledger stamped with clock()) -> per-symbol validation and upsert with a
    small delay between writes.
    """

    def __init__(
        self,
        provider,
        client,
        store: QuoteStore,
        ledger: UsageLedger,
        gatekeeper: Optional[BudgetGatekeeper] = None,
        planner: Optional[MetadataPlanner] = None,
        retry: Optional[RetryExecutor] = None,
        write_delay: float = 0.05,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], datetime] = utcnow
    ):
        self.provider = provider
        self.client = client
        self.client.on_request = self._record_request
        self.store = store
        self.ledger = ledger
        self.gatekeeper = gatekeeper or BudgetGatekeeper(ledger, store)
        self.planner = planner or MetadataPlanner(provider.metadata_ttl)
        self.retry = retry or RetryExecutor()
        self.write_delay = write_delay
        self._sleep = sleep
        self._clock = clock

    def _record_request(self, endpoint: str, success: bool, status_code: Optional[int]) -> None:
        self.ledger.record(self.provider.name, endpoint, success, status_code, now=self._clock())

    def _call(self, category: str, operation: Callable[[List[str]], Dict], items: List[str], report: SyncReport):
        """
        Run one batched upstream call through the retry executor.

        The client reports every HTTP request to the ledger itself. When a
        rate-limited attempt carries partial results, the next attempt only
        asks for the items still missing.
        """
        endpoint = self.client.endpoints.get(category, category)
        provider_name = self.provider.name
        done: Dict = {}

        def attempt():
            pending = [item for item in items if item not in done]
            try:
                result = operation(pending)
            except RateLimitError as e:
                if e.partial:
                    done.update(e.partial)
                raise
            if not isinstance(result, dict):
                raise UpstreamCallFailed(f"Invalid {category} response", category=category)
            done.update(result)
            return dict(done)

        report.calls_made[category] = True
        logger.info(f"[{provider_name}] Calling {category} endpoint {endpoint} for {len(items)} item(s)")
        try:
            return self.retry.execute(attempt)
        except RetryExhausted as e:
            last = e.last_error
            raise UpstreamCallFailed(
                f"{category} call to {provider_name} failed after {e.attempts} attempt(s): {last}",
                category=category,
                status_code=getattr(last, 'status_code', None)
            ) from e

    def run(self, force: bool = False, now: Optional[datetime] = None) -> SyncReport:
        """
        Execute one cycle.

        Args:
            force: Skip the minimum-interval check (hard stop still applies)
            now: Reference time for budget, staleness and written timestamps

        Returns:
            SyncReport
        """
        now = now or utcnow()
        provider = self.provider
        report = SyncReport(provider=provider.name, asset_class=provider.asset_class, timestamp=now)

        try:
            decision = self.gatekeeper.ensure_refresh(provider, now=now, force=force)
        except QuotaExceeded as e:
            report.status = 'skipped'
            report.skipped = True
            report.skip_reason = e.reason
            report.next_eligible_at = e.next_eligible_at
            return report
        report.warning = decision.warning

        try:
            cached = self.store.get_cached_state(provider.symbols)
            plan = self.planner.plan(
                provider.symbols,
                cached,
                now=now,
                resolves_ids=self.client.resolves_ids,
                fetches_metadata=self.client.fetches_metadata
            )

            if plan.needs_ids:
                resolved = self._call('ids', self.client.resolve_ids, plan.ids_needed, report)
                plan.apply_resolved_ids(resolved)
                for symbol in plan.unresolved:
                    report.add_error(symbol, "No provider ID found for symbol")

            metadata = {}
            metadata_ids = plan.metadata_ids()
            if metadata_ids:
                metadata = self._call('metadata', self.client.fetch_metadata, metadata_ids, report)

            price_ids = plan.price_ids()
            if not price_ids:
                raise UpstreamCallFailed("No symbols with a provider ID to fetch prices for", category='quotes')

            quotes = self._call('quotes', self.client.fetch_quotes, price_ids, report)

            self._merge(plan, cached, metadata, quotes, report, now)

        except UpstreamCallFailed as e:
            report.status = 'failed'
            report.error = str(e)
            logger.error(f"[{provider.name}] Sync cycle failed: {e}")
            return report
        except sqlite3.Error as e:
            report.status = 'failed'
            report.error = f"Quote store error: {e}"
            logger.error(f"[{provider.name}] Sync cycle failed on store access: {e}")
            return report

        report.status = 'partial' if report.failed else 'ok'
        logger.info(
            f"[{provider.name}] Sync complete: {report.updated} updated, {report.failed} failed, "
            f"calls={[c for c, made in report.calls_made.items() if made]}"
        )
        return report

    def _merge(
        self,
        plan: SyncPlan,
        cached: Dict[str, Dict],
        metadata: Dict[str, Dict],
        quotes: Dict[str, Dict],
        report: SyncReport,
        now: datetime
    ) -> None:
        """Validate and upsert each symbol independently."""
        metadata_scope = set(plan.metadata_needed)
        newly_resolved = set(plan.ids_needed)
        quotes = {str(k): v for k, v in quotes.items()}
        metadata = {str(k): v for k, v in metadata.items()}

        symbols = [s for s in plan.tracked if s in plan.id_map]
        writes = 0
        for symbol in symbols:
            internal_id = plan.id_map[symbol]
            quote = quotes.get(internal_id)

            try:
                price = validate_price(symbol, quote)
            except InvalidRecord as e:
                logger.warning(f"[{self.provider.name}] Skipping {symbol}: {e.reason}")
                report.add_error(symbol, e.reason)
                continue

            fields = self._price_fields(symbol, price, quote, cached.get(symbol), now)
            if symbol in newly_resolved:
                fields['provider_internal_id'] = internal_id

            if symbol in metadata_scope and internal_id in metadata:
                meta = metadata[internal_id] or {}
                fields['display_name'] = meta.get('name') or quote.get('name') or symbol
                fields['logo_url'] = meta.get('logo') or None
                fields['metadata_updated_at'] = now
            elif symbol not in cached:
                fields['display_name'] = quote.get('name') or symbol

            if writes > 0 and self.write_delay > 0:
                self._sleep(self.write_delay)

            try:
                self.store.upsert_quote(symbol, fields, now=now)
            except sqlite3.Error as e:
                logger.error(f"[{self.provider.name}] Failed to save quote for {symbol}: {e}")
                report.add_error(symbol, f"Store write failed: {e}")
                continue
            finally:
                writes += 1

            report.updated += 1

    def _price_fields(self, symbol: str, price: float, quote: Dict, existing: Optional[Dict], now: datetime) -> Dict:
        percent_change = _finite_or_none(quote.get('percent_change'))
        change = _finite_or_none(quote.get('change'))
        previous_price = existing.get('price') if existing else None

        # Providers without a daily change compare against the stored price
        if self.provider.derive_percent_change and previous_price and previous_price > 0:
            if change is None:
                change = price - previous_price
            if percent_change is None:
                percent_change = (price - previous_price) / previous_price * 100

        fields = {
            'price': price,
            'percent_change': percent_change,
            'change': change,
            'previous_price': previous_price,
            'last_updated': now,
        }
        if quote.get('unit'):
            fields['unit'] = quote['unit']
        return fields


def build_executor(
    provider,
    db_path: Path = None,
    client=None,
    retry: Optional[RetryExecutor] = None,
    write_delay: Optional[float] = None,
    sleep: Callable[[float], None] = time.sleep
) -> SyncExecutor:
    """Wire a SyncExecutor for provider with components built from Config."""
    from config import Config
    from .upstream import build_client

    store = QuoteStore(provider.asset_class, db_path)
    ledger = UsageLedger(db_path)
    if client is None:
        client = build_client(provider)
    if retry is None:
        retry = RetryExecutor(Config.SYNC_MAX_RETRIES, Config.SYNC_INITIAL_DELAY_MS, sleep=sleep)
    if write_delay is None:
        write_delay = Config.SYNC_WRITE_DELAY_MS / 1000.0

    return SyncExecutor(
        provider,
        client,
        store,
        ledger,
        retry=retry,
        write_delay=write_delay,
        sleep=sleep
    )


def run_sync_cycle(provider, db_path: Path = None, force: bool = False, now: Optional[datetime] = None,
                   **kwargs) -> SyncReport:
    """
    Trigger boundary: run one cycle for provider and return its report.

    Never raises for anticipated failures; anything unexpected is logged and
    reported as a failed cycle.
    """
    try:
        init_db(db_path)
        executor = build_executor(provider, db_path=db_path, **kwargs)
        return executor.run(force=force, now=now)
    except Exception as e:
        logger.exception(f"[{provider.name}] Unexpected error during sync cycle")
        return SyncReport(
            provider=provider.name,
            asset_class=provider.asset_class,
            status='failed',
            error=f"Unexpected error: {e}",
        )


def run_all(providers: Iterable, parallel: bool = True, **kwargs) -> Dict[str, SyncReport]:
    """
    Run one cycle per provider.

    Providers share no mutable state besides their own table and ledger
    partition, so they may run on separate threads.

    Returns:
        Dict of asset_class -> SyncReport
    """
    providers = list(providers)
    reports: Dict[str, SyncReport] = {}

    def run_one(provider):
        reports[provider.asset_class] = run_sync_cycle(provider, **kwargs)

    if not parallel:
        for provider in providers:
            run_one(provider)
        return reports

    threads = [
        threading.Thread(target=run_one, args=(provider,), name=f"sync-{provider.name}", daemon=True)
        for provider in providers
    ]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    return reports
