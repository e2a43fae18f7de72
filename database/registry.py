"""
데이터베이스 레지스트리

database.yaml의 databases 섹션에 정의된 DB를 이름으로 초기화하고 공유합니다.

설정 예시:
    databases:
      default:
        type: sqlite3
        path: ./data/nexusjobs.db
        pool:
          pool_size: 5
"""

import logging
from typing import Any

from database.base import BaseDatabase
from database.exception import DatabaseError, DatabaseNotFoundError
from database.sqlite3.connection import SQLiteDatabase

logger = logging.getLogger(__name__)

_DRIVERS: dict[str, type[BaseDatabase]] = {
    'sqlite3': SQLiteDatabase,
}


class DatabaseRegistry:
    """이름 → 데이터베이스 인스턴스 레지스트리"""

    _databases: dict[str, BaseDatabase] = {}

    @classmethod
    async def init_from_config(cls, config: dict[str, Any], names: list[str] | None = None) -> None:
        """
        설정으로 데이터베이스 초기화

        Args:
            config: databases 섹션을 포함한 설정
            names: 초기화할 DB 이름 목록 (None이면 전체)
        """
        databases = config.get('databases', {})
        targets = names if names is not None else list(databases.keys())

        for name in targets:
            if name in cls._databases:
                logger.debug(f"Database already initialized: {name}")
                continue

            db_config = databases.get(name)
            if db_config is None:
                raise DatabaseNotFoundError(name)

            db_type = db_config.get('type', 'sqlite3')
            driver = _DRIVERS.get(db_type)
            if driver is None:
                raise DatabaseError(f"Unsupported database type: {db_type} (name={name})")

            cls._databases[name] = await driver.create(name, db_config)
            logger.info(f"Database registered: {name} (type={db_type})")

    @classmethod
    def register(cls, db: BaseDatabase) -> None:
        """이미 생성된 인스턴스 등록"""
        cls._databases[db.name] = db

    @classmethod
    def get(cls, name: str = 'default') -> BaseDatabase:
        db = cls._databases.get(name)
        if db is None:
            raise DatabaseNotFoundError(name)
        return db

    @classmethod
    def get_all(cls) -> dict[str, BaseDatabase]:
        return dict(cls._databases)

    @classmethod
    async def close_all(cls) -> None:
        """모든 데이터베이스 연결 종료"""
        for name, db in list(cls._databases.items()):
            try:
                await db.close()
            except Exception as e:
                logger.error(f"Error closing database '{name}': {e}")
        cls._databases.clear()

    @classmethod
    def clear(cls) -> None:
        """레지스트리 초기화 (연결은 닫지 않음, 테스트용)"""
        cls._databases.clear()


def get_db(name: str = 'default') -> BaseDatabase:
    """등록된 데이터베이스 반환"""
    return DatabaseRegistry.get(name)
