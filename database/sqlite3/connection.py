"""
SQLite 저장소 연결 계층

scheduler.store.sqlite가 사용하는 aiosqlite 커넥션풀과 트랜잭션입니다.

- 커넥션은 autocommit 모드(isolation_level=None)로 열고 트랜잭션은 명시적으로 시작합니다.
- 쓰기 트랜잭션은 BEGIN IMMEDIATE로 쓰기 락을 먼저 잡으므로
  리스 획득 같은 조건부 UPDATE가 같은 DB를 쓰는 다른 인스턴스와 직렬화됩니다.
- 스키마는 init.sql(CREATE ... IF NOT EXISTS)로 만들고 PRAGMA user_version에 버전을 기록합니다.
"""

import asyncio
import logging
import re
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, AsyncIterator

import aiosql
import aiosqlite
from aiosql.queries import Queries
from pydantic import BaseModel, Field, ValidationError

from database.base import BaseDatabase
from database.exception import (
    ConnectionPoolExhaustedError,
    DatabaseError,
    ReadOnlyTransactionError,
)

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1
INIT_SQL_PATH = Path(__file__).parent / 'sql' / 'init.sql'

# init.sql 실행 순서
_INIT_QUERIES = (
    'create_scheduled_jobs_table',
    'create_job_executions_table',
    'create_job_history_table',
    'create_indexes',
)

_WRITE_QUERY = re.compile(r'^\s*(INSERT|UPDATE|DELETE|REPLACE|CREATE|DROP|ALTER)\b', re.IGNORECASE)


class PoolSettings(BaseModel):
    """커넥션풀 설정 (database.yaml의 pool 섹션)"""
    pool_size: int = Field(default=5, ge=1)
    pool_timeout: float = Field(default=30.0, gt=0)
    max_idle_time: float = Field(default=300.0, gt=0)


class SqliteOptions(BaseModel):
    """연결마다 적용할 PRAGMA (database.yaml의 options 섹션)"""
    busy_timeout: int = Field(default=5000, ge=0)
    journal_mode: str = 'WAL'
    synchronous: str = 'NORMAL'
    cache_size: int = -2000
    foreign_keys: bool = True

    def pragmas(self) -> list[str]:
        return [
            f"PRAGMA busy_timeout = {self.busy_timeout}",
            f"PRAGMA journal_mode = {self.journal_mode}",
            f"PRAGMA synchronous = {self.synchronous}",
            f"PRAGMA cache_size = {self.cache_size}",
            f"PRAGMA foreign_keys = {'ON' if self.foreign_keys else 'OFF'}",
        ]


class SQLiteSettings(BaseModel):
    """databases.<name> 항목"""
    path: str | None = None
    pool: PoolSettings = Field(default_factory=PoolSettings)
    options: SqliteOptions = Field(default_factory=SqliteOptions)


@dataclass
class PooledConnection:
    connection: aiosqlite.Connection
    last_used: float = field(default_factory=time.monotonic)


class TransactionContext:
    """
    트랜잭션 안에서 쓰는 연결 핸들

    aiosql 쿼리에는 connection을 넘기고, ad-hoc SQL은 execute/fetch_*로 실행합니다.
    """

    def __init__(self, connection: aiosqlite.Connection, readonly: bool = False):
        self._connection = connection
        self._readonly = readonly

    @property
    def connection(self) -> aiosqlite.Connection:
        return self._connection

    @property
    def readonly(self) -> bool:
        return self._readonly

    async def execute(self, sql: str, parameters: Any = ()) -> aiosqlite.Cursor:
        if self._readonly and _WRITE_QUERY.match(sql):
            raise ReadOnlyTransactionError(f"Write query in readonly transaction: {sql.split()[0]}")

        logger.debug(f"[SQL] {' '.join(sql.split())} | params: {parameters}")
        return await self._connection.execute(sql, parameters)

    async def fetch_all(self, sql: str, parameters: Any = ()) -> list[aiosqlite.Row]:
        cursor = await self.execute(sql, parameters)
        rows = await cursor.fetchall()
        await cursor.close()
        return list(rows)

    async def fetch_one(self, sql: str, parameters: Any = ()) -> aiosqlite.Row | None:
        cursor = await self.execute(sql, parameters)
        row = await cursor.fetchone()
        await cursor.close()
        return row


class AsyncConnectionPool:
    """
    고정 크기 aiosqlite 커넥션풀

    유휴 연결은 큐에 보관합니다. max_idle_time보다 오래 쉬었던 연결은
    꺼낼 때 다시 엽니다.
    """

    def __init__(self, db_path: Path, settings: PoolSettings, options: SqliteOptions):
        self._db_path = db_path
        self._settings = settings
        self._options = options
        self._connections: list[PooledConnection] = []
        self._idle: asyncio.Queue[PooledConnection] = asyncio.Queue()
        self._closed = False

    async def open(self) -> None:
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        for _ in range(self._settings.pool_size):
            pooled = PooledConnection(await self._connect())
            self._connections.append(pooled)
            self._idle.put_nowait(pooled)

        logger.info(
            f"Connection pool opened: {self._db_path} "
            f"(size={self._settings.pool_size}, timeout={self._settings.pool_timeout}s)"
        )

    async def _connect(self) -> aiosqlite.Connection:
        conn = await aiosqlite.connect(
            self._db_path,
            timeout=self._options.busy_timeout / 1000.0,
            isolation_level=None,
        )
        conn.row_factory = aiosqlite.Row
        for pragma in self._options.pragmas():
            await conn.execute(pragma)
        return conn

    async def acquire(self, timeout: float | None = None) -> PooledConnection:
        if self._closed:
            raise DatabaseError(f"Connection pool is closed: {self._db_path}")

        wait = timeout if timeout is not None else self._settings.pool_timeout
        try:
            pooled = await asyncio.wait_for(self._idle.get(), timeout=wait)
        except asyncio.TimeoutError:
            raise ConnectionPoolExhaustedError(
                f"Connection pool exhausted after {wait}s "
                f"(size={self.size}, path={self._db_path})"
            ) from None

        if time.monotonic() - pooled.last_used > self._settings.max_idle_time:
            try:
                await pooled.connection.close()
                pooled.connection = await self._connect()
                logger.debug(f"Reopened idle connection: {self._db_path}")
            except Exception:
                self.release(pooled)
                raise
        return pooled

    def release(self, pooled: PooledConnection) -> None:
        pooled.last_used = time.monotonic()
        if not self._closed:
            self._idle.put_nowait(pooled)

    async def close(self) -> None:
        self._closed = True
        for pooled in self._connections:
            try:
                await pooled.connection.close()
            except Exception as e:
                logger.error(f"Error closing connection: {e}")
        self._connections.clear()
        logger.info(f"Connection pool closed: {self._db_path}")

    @property
    def size(self) -> int:
        return len(self._connections)

    @property
    def available(self) -> int:
        return self._idle.qsize()


class SQLiteDatabase(BaseDatabase):
    """
    SQLite 데이터베이스

    사용 예시:
        db = await SQLiteDatabase.create('default', {'path': './data/nexusjobs.db'})
        queries = db.load_queries('scheduler', sql_path)

        async with db.transaction() as ctx:
            await queries.upsert_job(ctx.connection, ...)
    """

    def __init__(self, name: str, settings: SQLiteSettings):
        super().__init__(name)
        self._settings = settings
        self._pool: AsyncConnectionPool | None = None
        self._queries: dict[str, Queries] = {}

    @classmethod
    async def create(cls, name: str, config: dict[str, Any]) -> 'SQLiteDatabase':
        try:
            settings = SQLiteSettings.model_validate(config)
        except ValidationError as e:
            raise DatabaseError(f"Invalid sqlite3 config for '{name}': {e}") from e

        instance = cls(name, settings)
        db_path = Path(settings.path or f'./data/{name}.db')
        instance._pool = AsyncConnectionPool(db_path, settings.pool, settings.options)
        await instance._pool.open()
        try:
            await instance._ensure_schema()
        except Exception:
            await instance.close()
            raise

        logger.info(f"SQLiteDatabase '{name}' ready: {db_path}")
        return instance

    async def _ensure_schema(self) -> None:
        """테이블/인덱스 생성 후 user_version 기록"""
        queries = aiosql.from_path(str(INIT_SQL_PATH), "aiosqlite")

        pooled = await self.pool.acquire()
        conn = pooled.connection
        try:
            async with conn.execute("PRAGMA user_version") as cursor:
                (version,) = await cursor.fetchone()
            if version > SCHEMA_VERSION:
                raise DatabaseError(
                    f"Database '{self.name}' has schema version {version}, "
                    f"this build supports up to {SCHEMA_VERSION}"
                )

            for query_name in _INIT_QUERIES:
                await getattr(queries, query_name)(conn)

            if version < SCHEMA_VERSION:
                await conn.execute(f"PRAGMA user_version = {SCHEMA_VERSION}")
                logger.info(f"Schema initialized: {self.name} (version {version} -> {SCHEMA_VERSION})")
        finally:
            self.pool.release(pooled)

    @asynccontextmanager
    async def transaction(self, readonly: bool = False) -> AsyncIterator[TransactionContext]:
        """
        트랜잭션 컨텍스트

        정상 종료 시 커밋(읽기 전용은 종료), 예외 시 롤백합니다.
        """
        pooled = await self.pool.acquire()
        conn = pooled.connection
        try:
            await conn.execute("BEGIN DEFERRED" if readonly else "BEGIN IMMEDIATE")
            try:
                yield TransactionContext(conn, readonly)
                await conn.commit()
            except BaseException:
                await conn.rollback()
                raise
        finally:
            self.pool.release(pooled)

    @property
    def pool(self) -> AsyncConnectionPool:
        if self._pool is None:
            raise DatabaseError(f"Database '{self.name}' not initialized")
        return self._pool

    @property
    def settings(self) -> SQLiteSettings:
        return self._settings

    def load_queries(self, name: str, sql_path: str) -> Queries:
        """aiosql로 SQL 파일 로드 (이름별 캐시)"""
        if name not in self._queries:
            self._queries[name] = aiosql.from_path(sql_path, "aiosqlite")
        return self._queries[name]

    async def close(self) -> None:
        if self._pool:
            await self._pool.close()
        logger.info(f"SQLiteDatabase '{self.name}' closed")
