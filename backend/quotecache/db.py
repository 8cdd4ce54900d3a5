"""Database connection and schema initialization for the quote cache."""

import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from contextlib import contextmanager
from typing import Generator, Optional
import logging

logger = logging.getLogger(__name__)

# Default database path relative to backend directory
_DEFAULT_DB_PATH = Path(__file__).parent.parent / "data" / "quote_cache.db"

# Asset class -> quote table
QUOTE_TABLES = {
    'stocks': 'stock_quotes',
    'crypto': 'crypto_quotes',
    'commodities': 'commodity_quotes',
}


def get_db_path(db_path: Path = None) -> Path:
    """Return the database path, creating parent directory if needed."""
    if db_path is None:
        db_path = _DEFAULT_DB_PATH
    db_path = Path(db_path)
    db_path.parent.mkdir(parents=True, exist_ok=True)
    return db_path


@contextmanager
def get_connection(db_path: Path = None) -> Generator[sqlite3.Connection, None, None]:
    """
    Context manager for database connections.

    Args:
        db_path: Optional custom path to database file

    Yields:
        SQLite connection with Row factory enabled
    """
    conn = sqlite3.connect(get_db_path(db_path), timeout=10)
    conn.row_factory = sqlite3.Row
    try:
        yield conn
    finally:
        conn.close()


# Columns added after the first schema; existing databases get them on init_db
_LATER_QUOTE_COLUMNS = {
    'change': 'REAL',
    'unit': 'TEXT',
}


def _add_missing_columns(cursor: sqlite3.Cursor, table: str) -> None:
    existing = {row[1] for row in cursor.execute(f"PRAGMA table_info({table})").fetchall()}
    for column, column_type in _LATER_QUOTE_COLUMNS.items():
        if column not in existing:
            logger.info(f"Adding column {column} to {table}")
            cursor.execute(f"ALTER TABLE {table} ADD COLUMN {column} {column_type}")


def init_db(db_path: Path = None) -> None:
    """
    Initialize database schema if tables don't exist.

    Args:
        db_path: Optional custom path to database file
    """
    with get_connection(db_path) as conn:
        cursor = conn.cursor()

        # One quote table per asset class, identical columns
        for table in QUOTE_TABLES.values():
            cursor.execute(f"""
                CREATE TABLE IF NOT EXISTS {table} (
                    symbol TEXT PRIMARY KEY,
                    display_name TEXT,
                    logo_url TEXT,
                    price REAL NOT NULL,
                    percent_change REAL,
                    change REAL,
                    previous_price REAL,
                    unit TEXT,
                    provider_internal_id TEXT,
                    last_updated TEXT NOT NULL,
                    metadata_updated_at TEXT,
                    created_at TEXT NOT NULL
                )
            """)
            _add_missing_columns(cursor, table)
            cursor.execute(f"""
                CREATE INDEX IF NOT EXISTS idx_{table}_last_updated
                ON {table}(last_updated)
            """)

        # Append-only outbound call log
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS api_usage (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                provider TEXT NOT NULL,
                endpoint TEXT,
                success INTEGER NOT NULL DEFAULT 1,
                status_code INTEGER,
                timestamp TEXT NOT NULL
            )
        """)
        cursor.execute("""
            CREATE INDEX IF NOT EXISTS idx_api_usage_provider_timestamp
            ON api_usage(provider, timestamp)
        """)

        conn.commit()
        logger.info("Database schema initialized successfully")


def get_db_stats(db_path: Path = None) -> dict:
    """
    Get database statistics.

    Returns:
        Dict with quote counts per asset class, usage_records, database_size_mb
    """
    db_path = get_db_path(db_path)

    stats = {}
    with get_connection(db_path) as conn:
        cursor = conn.cursor()

        for asset_class, table in QUOTE_TABLES.items():
            cursor.execute(f"SELECT COUNT(*) FROM {table}")
            stats[f'{asset_class}_quotes'] = cursor.fetchone()[0]

        cursor.execute("SELECT COUNT(*) FROM api_usage")
        stats['usage_records'] = cursor.fetchone()[0]

    # Get file size
    size_mb = 0
    if db_path.exists():
        size_mb = round(db_path.stat().st_size / (1024 * 1024), 2)
    stats['database_size_mb'] = size_mb

    return stats


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_db_timestamp(dt: datetime) -> str:
    """
    Serialize a datetime as fixed-width UTC ISO-8601.

    Fixed width keeps string comparison in SQL consistent with time order.
    Naive datetimes are taken to be UTC.
    """
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat(timespec='microseconds')


def from_db_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse a stored timestamp back into an aware UTC datetime."""
    if value is None or value == '':
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        dt = datetime.fromisoformat(value)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt
