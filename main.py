"""
nexusjobs 통합 진입점

설정을 읽어 로깅과 DB를 초기화하고 SIGINT/SIGTERM까지 Dispatcher를 실행합니다.

사용법:
    python main.py                    # ./config 사용
    python main.py /path/to/config    # 설정 디렉터리 지정
"""

import sys
import os

# Windows 인코딩 설정 (cp949 -> UTF-8)
if sys.platform == "win32":
    os.environ["PYTHONUTF8"] = "1"

import asyncio
import logging

from common.config import load_config
from common.logging import configure_from
from nexusjobs.app import SchedulerApp, install_signal_handlers, load_handlers

logger = logging.getLogger(__name__)


async def main(config_dir: str | None = None):
    """메인 함수"""
    config = load_config(config_dir)

    configure_from(config)

    load_handlers()
    app = await SchedulerApp.from_config(config)

    stop_event = asyncio.Event()
    install_signal_handlers(stop_event)

    try:
        await app.run(stop_event)
    except asyncio.CancelledError:
        logger.info("Tasks cancelled")
    finally:
        await app.close()
        logger.info("Scheduler stopped")


if __name__ == "__main__":
    config_dir = sys.argv[1] if len(sys.argv) > 1 else None

    print("Starting nexusjobs scheduler")
    try:
        asyncio.run(main(config_dir))
    except KeyboardInterrupt:
        print("\nShutdown requested by user")
