"""
JSON 구조화 로깅 설정

ELK/Loki 등 로그 수집 시스템과 연동 가능한 JSON 포맷 로깅을 제공합니다.
여러 인스턴스가 같은 DB를 공유할 때 구분할 수 있도록
service, instance_id 같은 고정 필드를 모든 레코드에 붙일 수 있습니다.
"""

import logging
import sys
from typing import Any

from pythonjsonlogger import jsonlogger

TEXT_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """JSON 로그 포매터 (고정 필드 포함)"""

    def __init__(self, *args, static_fields: dict[str, Any] | None = None, **kwargs):
        super().__init__(*args, **kwargs)
        self._static_fields = dict(static_fields or {})

    def add_fields(self, log_record, record, message_dict):
        super().add_fields(log_record, record, message_dict)
        log_record['timestamp'] = self.formatTime(record)
        log_record['level'] = record.levelname
        log_record['logger'] = record.name
        for key, value in self._static_fields.items():
            log_record.setdefault(key, value)

        if 'message' not in log_record and record.getMessage():
            log_record['message'] = record.getMessage()


def setup_logging(
    level: str = "INFO",
    json_format: bool = True,
    log_file: str | None = None,
    static_fields: dict[str, Any] | None = None,
) -> None:
    """
    로깅 설정

    Args:
        level: 로그 레벨 (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_format: JSON 포맷 사용 여부 (False면 기본 텍스트 포맷)
        log_file: 로그 파일 경로 (None이면 stdout만 사용)
        static_fields: JSON 레코드마다 붙일 고정 필드 (예: {"service": "nexusjobs"})
    """
    if json_format:
        formatter = CustomJsonFormatter(
            '%(timestamp)s %(level)s %(name)s %(message)s',
            static_fields=static_fields,
        )
    else:
        formatter = logging.Formatter(TEXT_FORMAT)

    stream_handler = logging.StreamHandler(sys.stdout)
    stream_handler.setFormatter(formatter)
    handlers: list[logging.Handler] = [stream_handler]

    if log_file:
        file_handler = logging.FileHandler(log_file, encoding='utf-8')
        file_handler.setFormatter(formatter)
        handlers.append(file_handler)

    logging.basicConfig(
        level=getattr(logging, level.upper()),
        handlers=handlers,
        force=True  # 기존 설정 덮어쓰기
    )

    # 외부 라이브러리 로그 레벨 조정
    logging.getLogger('asyncio').setLevel(logging.WARNING)
    logging.getLogger('aiosqlite').setLevel(logging.WARNING)


def configure_from(config: dict[str, Any], level: str | None = None, json_format: bool | None = None) -> None:
    """
    load_config() 결과의 logging 섹션으로 설정

    level, json_format 인자가 주어지면 설정 파일 값보다 우선합니다.
    """
    log_cfg = config.get("logging") or {}
    dispatcher_cfg = config.get("dispatcher") or {}

    static_fields = {"service": log_cfg.get("service", "nexusjobs")}
    if dispatcher_cfg.get("instance_id"):
        static_fields["instance_id"] = dispatcher_cfg["instance_id"]

    setup_logging(
        level=level or log_cfg.get("level", "INFO"),
        json_format=log_cfg.get("json_format", True) if json_format is None else json_format,
        log_file=log_cfg.get("log_file"),
        static_fields=static_fields,
    )
