"""
비동기 데이터베이스 패키지

사용 예시:
    from database import get_db
    from database.registry import DatabaseRegistry

    await DatabaseRegistry.init_from_config(config)
    db = get_db('default')

    async with db.transaction() as ctx:
        await queries.upsert_job(ctx.connection, ...)
"""

from database.exception import (
    DatabaseError,
    DatabaseNotFoundError,
    ConnectionPoolExhaustedError,
    TransactionError,
    ReadOnlyTransactionError,
)
from database.registry import DatabaseRegistry, get_db

__all__ = [
    'DatabaseError',
    'DatabaseNotFoundError',
    'ConnectionPoolExhaustedError',
    'TransactionError',
    'ReadOnlyTransactionError',
    'DatabaseRegistry',
    'get_db',
]
