"""nexusjobs - asyncio 기반 잡 스케줄링/실행 엔진"""

__version__ = "0.1.0"
