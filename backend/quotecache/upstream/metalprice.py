"""MetalpriceAPI client: USD prices for precious metals in one call."""

from typing import Dict, List, Optional
import logging

from ..errors import UpstreamCallFailed
from .base import UpstreamClient

logger = logging.getLogger(__name__)

# Free tier only covers precious metals
COMMODITY_META = {
    'XAU': {'name': 'Gold', 'unit': 'Troy Ounce'},
    'XAG': {'name': 'Silver', 'unit': 'Troy Ounce'},
    'XPT': {'name': 'Platinum', 'unit': 'Troy Ounce'},
    'XPD': {'name': 'Palladium', 'unit': 'Troy Ounce'},
}


def extract_usd_price(rates: Dict, symbol: str) -> Optional[float]:
    """
    USD price of one unit of symbol.

    The API returns both the inverse rate ("XAU": ounces per dollar) and,
    on most plans, the direct price ("USDXAU"). The direct key wins.
    """
    direct = rates.get(f"USD{symbol}")
    if isinstance(direct, (int, float)) and direct > 0:
        return float(direct)

    inverse = rates.get(symbol)
    if isinstance(inverse, (int, float)) and inverse > 0:
        return 1.0 / inverse

    return None


class MetalpriceClient(UpstreamClient):
    provider = 'metalpriceapi'
    base_url = 'https://api.metalpriceapi.com/v1'
    resolves_ids = False
    fetches_metadata = False

    endpoints = {
        'quotes': '/latest',
    }

    def fetch_quotes(self, internal_ids: List[str]) -> Dict[str, Dict]:
        payload = self._get(self.endpoints['quotes'], {
            'api_key': self.api_key,
            'base': 'USD',
            'currencies': ','.join(internal_ids),
        })

        if not payload.get('success'):
            raise UpstreamCallFailed(
                f"MetalpriceAPI error: {payload.get('error') or payload}",
                category='quotes',
                status_code=self.last_status_code
            )

        rates = payload.get('rates')
        if not isinstance(rates, dict):
            raise UpstreamCallFailed("MetalpriceAPI returned invalid response: missing rates", category='quotes')

        quotes = {}
        for symbol in internal_ids:
            meta = COMMODITY_META.get(symbol, {})
            price = extract_usd_price(rates, symbol)
            quote = {
                'symbol': symbol,
                'name': meta.get('name', symbol),
                'unit': meta.get('unit'),
                'price': price,
                'percent_change': None,
                'change': None,
            }
            if price is None:
                quote['error'] = f"No rate returned for {symbol}"
            quotes[symbol] = quote
        return quotes
