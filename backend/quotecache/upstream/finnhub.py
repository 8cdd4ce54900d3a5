"""Finnhub client: company profiles and quotes for US equities."""

from typing import Any, Dict, List, Optional
import logging
import time

from ..errors import RateLimitError, UpstreamCallFailed
from .base import UpstreamClient

logger = logging.getLogger(__name__)


class FinnhubClient(UpstreamClient):
    """
    Finnhub has no batch endpoints, so each logical call loops over symbols.

    Tickers are their own IDs. A failure for one symbol does not fail the
    batch: quotes come back with price None and an error, profiles are left
    out. Rate limiting fails the whole batch so the retry executor backs off;
    the symbols already answered ride along on the error and are not asked
    for again.
    """

    provider = 'finnhub'
    base_url = 'https://finnhub.io/api/v1'
    resolves_ids = False
    fetches_metadata = True

    endpoints = {
        'metadata': '/stock/profile2',
        'quotes': '/quote',
    }

    def __init__(self, api_key: str, session: Optional[Any] = None, base_url: Optional[str] = None,
                 timeout: float = 10, request_delay: float = 0.1):
        super().__init__(api_key, session=session, base_url=base_url, timeout=timeout)
        self.request_delay = request_delay

    def _pause(self, index: int, total: int) -> None:
        if self.request_delay > 0 and index < total - 1:
            time.sleep(self.request_delay)

    def _get(self, path: str, params: Optional[Dict] = None) -> Any:
        params = dict(params or {})
        params['token'] = self.api_key
        payload = super()._get(path, params)
        if isinstance(payload, dict) and payload.get('error'):
            raise UpstreamCallFailed(f"Finnhub API error: {payload['error']}", status_code=self.last_status_code)
        return payload

    def fetch_metadata(self, internal_ids: List[str]) -> Dict[str, Dict]:
        profiles = {}
        for i, symbol in enumerate(internal_ids):
            try:
                data = self._get(self.endpoints['metadata'], {'symbol': symbol})
            except RateLimitError as e:
                e.partial = profiles
                raise
            except UpstreamCallFailed as e:
                logger.warning(f"Failed to fetch company profile for {symbol}: {e}")
                continue

            if not data or not (data.get('name') or data.get('logo')):
                logger.warning(f"Incomplete profile data for {symbol}")
            else:
                profiles[symbol] = {'name': data.get('name'), 'logo': data.get('logo') or None}

            self._pause(i, len(internal_ids))
        return profiles

    def fetch_quotes(self, internal_ids: List[str]) -> Dict[str, Dict]:
        quotes = {}
        failures = 0
        for i, symbol in enumerate(internal_ids):
            try:
                data = self._get(self.endpoints['quotes'], {'symbol': symbol})
            except RateLimitError as e:
                e.partial = quotes
                raise
            except UpstreamCallFailed as e:
                logger.warning(f"Failed to fetch quote for {symbol}: {e}")
                quotes[symbol] = {
                    'symbol': symbol,
                    'price': None,
                    'percent_change': None,
                    'change': None,
                    'error': str(e),
                }
                failures += 1
                continue

            price = data.get('c')
            if price == 0 and data.get('pc') == 0:
                # Finnhub answers all zeros for unknown symbols
                quotes[symbol] = {
                    'symbol': symbol,
                    'price': None,
                    'percent_change': None,
                    'change': None,
                    'error': f"No quote data for {symbol} (unknown symbol?)",
                }
            else:
                quotes[symbol] = {
                    'symbol': symbol,
                    'price': price,
                    'percent_change': data.get('dp'),
                    'change': data.get('d'),
                }

            self._pause(i, len(internal_ids))

        if internal_ids and failures == len(internal_ids):
            raise UpstreamCallFailed(f"All {failures} Finnhub quote requests failed", category='quotes')
        return quotes
