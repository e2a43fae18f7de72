"""SQLite3 드라이버 (aiosqlite 커넥션풀 + aiosql 쿼리 로딩)"""

from database.sqlite3.connection import (
    SCHEMA_VERSION,
    AsyncConnectionPool,
    PoolSettings,
    SQLiteDatabase,
    SQLiteSettings,
    SqliteOptions,
    TransactionContext,
)

__all__ = [
    'SCHEMA_VERSION',
    'AsyncConnectionPool',
    'PoolSettings',
    'SQLiteDatabase',
    'SQLiteSettings',
    'SqliteOptions',
    'TransactionContext',
]
