"""
애플리케이션 조립

스토어, 핸들러 레지스트리, 실행기, Dispatcher, 스케줄링 API를 하나로 묶습니다.

사용 예시:
    app = SchedulerApp.in_memory()
    app.registry.register("report", generate_report)
    await app.service.schedule_job({"name": "daily-report", "job_type": "report", ...})
    await app.run(stop_event)
"""

import asyncio
import importlib
import logging
import pkgutil
import signal
import sys
from datetime import datetime
from typing import Any, Callable

from database.registry import DatabaseRegistry, get_db
from dispatcher.main import Dispatcher
from dispatcher.model.dispatcher import DispatcherConfig
from scheduler.model import utcnow
from scheduler.service import SchedulerService
from scheduler.store.base import ExecutionLogStore, JobStore
from scheduler.store.memory import MemoryExecutionLogStore, MemoryJobStore
from scheduler.store.sqlite import SQLiteExecutionLogStore, SQLiteJobStore
from worker.base import HandlerRegistry
from worker.executor import Executor
from worker.model.executor import ExecutorConfig
from worker.notifier import Notifier

logger = logging.getLogger(__name__)


def load_handlers(package: str = "worker.job") -> None:
    """핸들러 모듈 로드 (데코레이터 등록을 위해, 하위 폴더 재귀 탐색)"""
    root = importlib.import_module(package)

    def load_recursive(pkg, prefix: str):
        for _, module_name, is_pkg in pkgutil.iter_modules(pkg.__path__):
            full_name = f"{prefix}.{module_name}"
            module = importlib.import_module(full_name)
            logger.debug(f"Loaded handler module: {full_name}")
            if is_pkg:
                load_recursive(module, full_name)

    load_recursive(root, package)


def install_signal_handlers(stop_event: asyncio.Event) -> None:
    """SIGINT/SIGTERM 수신 시 stop_event 설정"""
    loop = asyncio.get_running_loop()

    def signal_handler():
        logger.info("Received shutdown signal")
        stop_event.set()

    # Windows는 add_signal_handler를 지원하지 않음
    if sys.platform != "win32":
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, signal_handler)


class SchedulerApp:
    """잡 스케줄러 애플리케이션"""

    def __init__(
        self,
        job_store: JobStore,
        log_store: ExecutionLogStore,
        registry: HandlerRegistry | None = None,
        notifier: Notifier | None = None,
        dispatcher_config: DispatcherConfig | None = None,
        executor_config: ExecutorConfig | None = None,
        clock: Callable[[], datetime] = utcnow,
        owns_database: bool = False,
    ):
        dispatcher_config = dispatcher_config or DispatcherConfig()
        executor_config = executor_config or ExecutorConfig()
        if dispatcher_config.instance_id:
            executor_config = executor_config.model_copy(update={"instance_id": dispatcher_config.instance_id})

        self.job_store = job_store
        self.log_store = log_store
        self.registry = registry or HandlerRegistry()
        self.executor = Executor(job_store, log_store, self.registry, notifier, executor_config, clock)
        self.dispatcher = Dispatcher(dispatcher_config, job_store, log_store, self.executor, clock)
        self.service = SchedulerService(job_store, log_store, self.executor, self.registry, clock)
        self._owns_database = owns_database

    @classmethod
    def in_memory(cls, **kwargs: Any) -> "SchedulerApp":
        """인메모리 스토어로 생성 (테스트, 단일 프로세스 임베딩)"""
        return cls(MemoryJobStore(), MemoryExecutionLogStore(), **kwargs)

    @classmethod
    async def from_config(cls, config: dict[str, Any], **kwargs: Any) -> "SchedulerApp":
        """
        설정으로 생성 (SQLite 스토어)

        Args:
            config: load_config() 결과 (databases, dispatcher, executor 섹션)
        """
        dispatcher_config = DispatcherConfig(**(config.get("dispatcher") or {}))
        executor_config = ExecutorConfig(**(config.get("executor") or {}))

        await DatabaseRegistry.init_from_config(config, [dispatcher_config.database])
        db = get_db(dispatcher_config.database)

        return cls(
            SQLiteJobStore(db),
            SQLiteExecutionLogStore(db),
            dispatcher_config=dispatcher_config,
            executor_config=executor_config,
            owns_database=True,
            **kwargs,
        )

    async def run(self, stop_event: asyncio.Event) -> None:
        """stop_event가 설정될 때까지 Dispatcher 실행"""
        async def wait_stop():
            await stop_event.wait()
            await self.dispatcher.stop()

        stopper = asyncio.create_task(wait_stop())
        try:
            await self.dispatcher.start()
        finally:
            stopper.cancel()

    async def close(self) -> None:
        await self.dispatcher.stop()
        if self._owns_database:
            await DatabaseRegistry.close_all()
