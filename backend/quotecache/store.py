"""Quote store: point lookups and single-row upserts per asset class."""

from datetime import datetime
from pathlib import Path
from typing import Dict, Iterable, List, Optional
import logging

from .db import QUOTE_TABLES, get_connection, to_db_timestamp, from_db_timestamp, utcnow

logger = logging.getLogger(__name__)

# Columns a caller may write through upsert_quote
WRITABLE_FIELDS = (
    'display_name',
    'logo_url',
    'price',
    'percent_change',
    'change',
    'previous_price',
    'unit',
    'provider_internal_id',
    'last_updated',
    'metadata_updated_at',
)

_TIMESTAMP_FIELDS = ('last_updated', 'metadata_updated_at', 'created_at')


class QuoteStore:
    """
    Cached quotes for one asset class.

    Every write is a single-row upsert keyed by symbol, so a cycle that
    fails halfway leaves the rows it already wrote intact.
    """

    def __init__(self, asset_class: str, db_path: Path = None):
        if asset_class not in QUOTE_TABLES:
            raise ValueError(f"Unknown asset class: {asset_class}")
        self.asset_class = asset_class
        self.table = QUOTE_TABLES[asset_class]
        self.db_path = db_path

    def _row_to_quote(self, row) -> Dict:
        quote = dict(row)
        for key in _TIMESTAMP_FIELDS:
            quote[key] = from_db_timestamp(quote.get(key))
        return quote

    def get_quote(self, symbol: str) -> Optional[Dict]:
        """
        Get cached quote for a symbol.

        Returns:
            Dict of quote columns (timestamps as datetimes), or None
        """
        with get_connection(self.db_path) as conn:
            row = conn.execute(
                f"SELECT * FROM {self.table} WHERE symbol = ?",
                (symbol.upper(),)
            ).fetchone()
        return self._row_to_quote(row) if row else None

    def get_quotes(self, symbols: Optional[Iterable[str]] = None) -> List[Dict]:
        """Get cached quotes ordered by symbol, optionally restricted to symbols."""
        with get_connection(self.db_path) as conn:
            if symbols is None:
                rows = conn.execute(
                    f"SELECT * FROM {self.table} ORDER BY symbol ASC"
                ).fetchall()
            else:
                wanted = [s.upper() for s in symbols]
                if not wanted:
                    return []
                placeholders = ','.join('?' * len(wanted))
                rows = conn.execute(
                    f"SELECT * FROM {self.table} WHERE symbol IN ({placeholders}) ORDER BY symbol ASC",
                    wanted
                ).fetchall()
        return [self._row_to_quote(row) for row in rows]

    def get_cached_state(self, symbols: Iterable[str]) -> Dict[str, Dict]:
        """Cached quotes for the given symbols, keyed by symbol."""
        return {q['symbol']: q for q in self.get_quotes(symbols)}

    def upsert_quote(self, symbol: str, fields: Dict, now: Optional[datetime] = None) -> None:
        """
        Insert or update one quote row.

        Only the given fields change on update. On insert, price is required,
        display_name defaults to the symbol and last_updated to now.

        Args:
            symbol: Quote symbol
            fields: Subset of WRITABLE_FIELDS
            now: Timestamp for created_at / default last_updated
        """
        unknown = set(fields) - set(WRITABLE_FIELDS)
        if unknown:
            raise ValueError(f"Unknown quote fields: {sorted(unknown)}")

        symbol = symbol.upper()
        now = now or utcnow()

        values = {}
        for key, value in fields.items():
            if key in _TIMESTAMP_FIELDS and value is not None:
                value = to_db_timestamp(value)
            values[key] = value

        insert_values = dict(values)
        insert_values.setdefault('display_name', symbol)
        insert_values.setdefault('last_updated', to_db_timestamp(now))
        insert_values['created_at'] = to_db_timestamp(now)

        columns = ['symbol'] + list(insert_values)
        placeholders = ','.join('?' * len(columns))
        params = [symbol] + list(insert_values.values())

        if values:
            updates = ', '.join(f"{key} = excluded.{key}" for key in values)
            conflict = f"ON CONFLICT(symbol) DO UPDATE SET {updates}"
        else:
            conflict = "ON CONFLICT(symbol) DO NOTHING"

        with get_connection(self.db_path) as conn:
            conn.execute(f"""
                INSERT INTO {self.table} ({', '.join(columns)})
                VALUES ({placeholders})
                {conflict}
            """, params)
            conn.commit()

        logger.debug(f"Upserted {self.asset_class} quote {symbol}: {sorted(values)}")

    def get_last_refresh_timestamp(self) -> Optional[datetime]:
        """Most recent successful price write across all symbols, or None."""
        with get_connection(self.db_path) as conn:
            row = conn.execute(f"SELECT MAX(last_updated) FROM {self.table}").fetchone()
        return from_db_timestamp(row[0]) if row else None
