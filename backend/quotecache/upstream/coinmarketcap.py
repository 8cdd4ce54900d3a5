"""CoinMarketCap client: symbol map, coin info and latest quotes."""

from typing import Dict, List
import logging

from ..errors import UpstreamCallFailed
from .base import UpstreamClient

logger = logging.getLogger(__name__)


class CoinMarketCapClient(UpstreamClient):
    provider = 'coinmarketcap'
    base_url = 'https://pro-api.coinmarketcap.com'
    resolves_ids = True
    fetches_metadata = True

    endpoints = {
        'ids': '/v1/cryptocurrency/map',
        'metadata': '/v2/cryptocurrency/info',
        'quotes': '/v2/cryptocurrency/quotes/latest',
    }

    def _headers(self) -> Dict[str, str]:
        return {'X-CMC_PRO_API_KEY': self.api_key, 'Accept': 'application/json'}

    def _get_data(self, category: str, params: Dict):
        payload = self._get(self.endpoints[category], params)

        status = payload.get('status') or {}
        if status.get('error_code'):
            raise UpstreamCallFailed(
                f"CoinMarketCap API error: {status.get('error_message') or 'Unknown error'}",
                category=category,
                status_code=self.last_status_code
            )

        data = payload.get('data')
        if data is None:
            raise UpstreamCallFailed(f"CoinMarketCap {category} response has no data", category=category)
        return data

    def resolve_ids(self, symbols: List[str]) -> Dict[str, str]:
        """
        Map symbols to CoinMarketCap IDs in one call.

        Several coins can share a ticker. Active coins win, then the lowest
        ID (the longest-listed coin).
        """
        data = self._get_data('ids', {'symbol': ','.join(symbols)})
        if not isinstance(data, list):
            raise UpstreamCallFailed("Invalid response format from CoinMarketCap map", category='ids')

        best: Dict[str, Dict] = {}
        for coin in data:
            symbol = str(coin.get('symbol', '')).upper()
            if not symbol or coin.get('id') is None:
                continue
            existing = best.get(symbol)
            if existing is None:
                best[symbol] = coin
                continue

            coin_active = coin.get('is_active', 1) == 1
            existing_active = existing.get('is_active', 1) == 1
            if coin_active and not existing_active:
                best[symbol] = coin
            elif coin_active == existing_active and coin['id'] < existing['id']:
                best[symbol] = coin

        wanted = {s.upper() for s in symbols}
        return {symbol: str(coin['id']) for symbol, coin in best.items() if symbol in wanted}

    def fetch_metadata(self, internal_ids: List[str]) -> Dict[str, Dict]:
        data = self._get_data('metadata', {'id': ','.join(internal_ids)})
        if not isinstance(data, dict):
            raise UpstreamCallFailed("Invalid response format from CoinMarketCap info", category='metadata')

        return {
            str(coin_id): {'name': info.get('name'), 'logo': info.get('logo')}
            for coin_id, info in data.items()
            if isinstance(info, dict)
        }

    def fetch_quotes(self, internal_ids: List[str]) -> Dict[str, Dict]:
        data = self._get_data('quotes', {'id': ','.join(internal_ids)})
        if not isinstance(data, dict):
            raise UpstreamCallFailed("Invalid response format from CoinMarketCap quotes", category='quotes')

        quotes = {}
        for coin_id, coin in data.items():
            if not isinstance(coin, dict):
                continue
            usd = (coin.get('quote') or {}).get('USD') or {}
            quotes[str(coin_id)] = {
                'symbol': coin.get('symbol'),
                'name': coin.get('name'),
                'price': usd.get('price'),
                'percent_change': usd.get('percent_change_24h'),
            }
        return quotes
