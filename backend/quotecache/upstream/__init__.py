"""Upstream quote provider clients."""

from .base import UpstreamClient
from .coinmarketcap import CoinMarketCapClient
from .finnhub import FinnhubClient
from .metalprice import MetalpriceClient, extract_usd_price

CLIENTS = {
    'coinmarketcap': CoinMarketCapClient,
    'finnhub': FinnhubClient,
    'metalpriceapi': MetalpriceClient,
}


def build_client(provider, session=None) -> UpstreamClient:
    """Create the client for a ProviderConfig."""
    try:
        client_cls = CLIENTS[provider.name]
    except KeyError:
        raise ValueError(f"No upstream client for provider: {provider.name}") from None
    return client_cls(provider.api_key, session=session)


__all__ = [
    'UpstreamClient',
    'CoinMarketCapClient',
    'FinnhubClient',
    'MetalpriceClient',
    'extract_usd_price',
    'build_client',
]
