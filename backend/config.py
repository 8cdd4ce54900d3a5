import os
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Dict, List, Optional

from dotenv import load_dotenv

load_dotenv()


def _env_list(name: str, default: str) -> List[str]:
    raw = os.getenv(name, default)
    return [s.strip().upper() for s in raw.split(',') if s.strip()]


def _env_int(name: str, default: Optional[int]) -> Optional[int]:
    raw = os.getenv(name)
    if raw is None or raw.strip() == '':
        return default
    if raw.strip().lower() == 'none':
        return None
    return int(raw)


class Config:
    DEBUG = os.getenv('DEBUG', 'True').lower() == 'true'

    # Upstream API keys
    COINMARKETCAP_API_KEY = os.getenv('COINMARKETCAP_API_KEY', '')
    FINNHUB_API_KEY = os.getenv('FINNHUB_API_KEY', '')
    METALPRICEAPI_KEY = os.getenv('METALPRICEAPI_KEY', '')

    # Cache configuration
    QUOTE_DB_PATH = os.getenv('QUOTE_DB_PATH', 'data/quote_cache.db')

    # Retry / courtesy delays
    SYNC_MAX_RETRIES = int(os.getenv('SYNC_MAX_RETRIES', '3'))
    SYNC_INITIAL_DELAY_MS = int(os.getenv('SYNC_INITIAL_DELAY_MS', '1000'))
    SYNC_WRITE_DELAY_MS = int(os.getenv('SYNC_WRITE_DELAY_MS', '50'))

    # Crypto (CoinMarketCap free tier: 10,000 credits/month)
    CRYPTO_SYMBOLS = _env_list('CRYPTO_SYMBOLS', 'BTC,ETH,SOL')
    CRYPTO_MONTHLY_LIMIT = _env_int('CRYPTO_MONTHLY_LIMIT', 10000)
    CRYPTO_HARD_STOP = _env_int('CRYPTO_HARD_STOP', 9000)
    CRYPTO_WARNING_THRESHOLD = _env_int('CRYPTO_WARNING_THRESHOLD', 8000)
    CRYPTO_MIN_INTERVAL_MINUTES = int(os.getenv('CRYPTO_MIN_INTERVAL_MINUTES', '5'))
    CRYPTO_METADATA_TTL_DAYS = int(os.getenv('CRYPTO_METADATA_TTL_DAYS', '7'))
    # Count every CoinMarketCap attempt, failed ones included, toward the budget
    CRYPTO_COUNT_FAILED_CALLS = os.getenv('CRYPTO_COUNT_FAILED_CALLS', 'True').lower() == 'true'

    # Stocks (Finnhub free tier: 60 calls/minute, no monthly cap)
    STOCK_SYMBOLS = _env_list('STOCK_SYMBOLS', 'NVDA,AAPL,MSFT,GOOGL,TSLA,AMZN,META')
    STOCK_MONTHLY_LIMIT = _env_int('STOCK_MONTHLY_LIMIT', None)
    STOCK_HARD_STOP = _env_int('STOCK_HARD_STOP', None)
    STOCK_WARNING_THRESHOLD = _env_int('STOCK_WARNING_THRESHOLD', None)
    STOCK_MIN_INTERVAL_MINUTES = int(os.getenv('STOCK_MIN_INTERVAL_MINUTES', '5'))
    STOCK_OFF_HOURS_INTERVAL_MINUTES = int(os.getenv('STOCK_OFF_HOURS_INTERVAL_MINUTES', '60'))
    STOCK_METADATA_TTL_DAYS = int(os.getenv('STOCK_METADATA_TTL_DAYS', '7'))

    # Commodities (MetalpriceAPI free tier: 100 calls/month)
    COMMODITY_SYMBOLS = _env_list('COMMODITY_SYMBOLS', 'XAU,XAG,XPT')
    COMMODITY_MONTHLY_LIMIT = _env_int('COMMODITY_MONTHLY_LIMIT', 100)
    COMMODITY_HARD_STOP = _env_int('COMMODITY_HARD_STOP', 95)
    COMMODITY_WARNING_THRESHOLD = _env_int('COMMODITY_WARNING_THRESHOLD', 85)
    COMMODITY_MIN_INTERVAL_MINUTES = int(os.getenv('COMMODITY_MIN_INTERVAL_MINUTES', '360'))

    # Fail closed (deny refresh) when the usage ledger cannot be read
    LEDGER_FAIL_CLOSED = os.getenv('LEDGER_FAIL_CLOSED', 'False').lower() == 'true'


@dataclass
class ProviderConfig:
    """
    Per-provider refresh policy.

    hard_stop and warning_threshold are absolute call counts for the current
    calendar month and sit below monthly_limit to keep a safety buffer.
    A provider with no monthly_limit is only gated by its minimum interval.
    """
    name: str
    asset_class: str
    symbols: List[str]
    monthly_limit: Optional[int] = None
    hard_stop: Optional[int] = None
    warning_threshold: Optional[int] = None
    min_interval: timedelta = timedelta(minutes=5)
    metadata_ttl: timedelta = timedelta(days=7)
    off_hours_min_interval: Optional[timedelta] = None
    count_only_successful: bool = True
    derive_percent_change: bool = False
    fail_closed_on_ledger_error: bool = False
    api_key: str = field(default='', repr=False)

    def __post_init__(self):
        if self.monthly_limit is not None and self.hard_stop is None:
            self.hard_stop = self.monthly_limit
        if self.hard_stop is not None and self.monthly_limit is not None:
            if self.hard_stop > self.monthly_limit:
                raise ValueError(
                    f"{self.name}: hard_stop ({self.hard_stop}) exceeds monthly_limit ({self.monthly_limit})"
                )


def get_provider_configs() -> Dict[str, ProviderConfig]:
    """Build provider configs from the environment, keyed by asset class."""
    return {
        'crypto': ProviderConfig(
            name='coinmarketcap',
            asset_class='crypto',
            symbols=Config.CRYPTO_SYMBOLS,
            monthly_limit=Config.CRYPTO_MONTHLY_LIMIT,
            hard_stop=Config.CRYPTO_HARD_STOP,
            warning_threshold=Config.CRYPTO_WARNING_THRESHOLD,
            min_interval=timedelta(minutes=Config.CRYPTO_MIN_INTERVAL_MINUTES),
            metadata_ttl=timedelta(days=Config.CRYPTO_METADATA_TTL_DAYS),
            count_only_successful=not Config.CRYPTO_COUNT_FAILED_CALLS,
            fail_closed_on_ledger_error=Config.LEDGER_FAIL_CLOSED,
            api_key=Config.COINMARKETCAP_API_KEY,
        ),
        'stocks': ProviderConfig(
            name='finnhub',
            asset_class='stocks',
            symbols=Config.STOCK_SYMBOLS,
            monthly_limit=Config.STOCK_MONTHLY_LIMIT,
            hard_stop=Config.STOCK_HARD_STOP,
            warning_threshold=Config.STOCK_WARNING_THRESHOLD,
            min_interval=timedelta(minutes=Config.STOCK_MIN_INTERVAL_MINUTES),
            off_hours_min_interval=timedelta(minutes=Config.STOCK_OFF_HOURS_INTERVAL_MINUTES),
            metadata_ttl=timedelta(days=Config.STOCK_METADATA_TTL_DAYS),
            fail_closed_on_ledger_error=Config.LEDGER_FAIL_CLOSED,
            api_key=Config.FINNHUB_API_KEY,
        ),
        'commodities': ProviderConfig(
            name='metalpriceapi',
            asset_class='commodities',
            symbols=Config.COMMODITY_SYMBOLS,
            monthly_limit=Config.COMMODITY_MONTHLY_LIMIT,
            hard_stop=Config.COMMODITY_HARD_STOP,
            warning_threshold=Config.COMMODITY_WARNING_THRESHOLD,
            min_interval=timedelta(minutes=Config.COMMODITY_MIN_INTERVAL_MINUTES),
            derive_percent_change=True,
            fail_closed_on_ledger_error=Config.LEDGER_FAIL_CLOSED,
            api_key=Config.METALPRICEAPI_KEY,
        ),
    }


def get_provider_config(key: str) -> ProviderConfig:
    """Look up a provider config by asset class or provider name."""
    configs = get_provider_configs()
    if key in configs:
        return configs[key]
    for provider in configs.values():
        if provider.name == key:
            return provider
    raise KeyError(f"Unknown provider or asset class: {key}")
