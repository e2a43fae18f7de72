"""
YAML 설정 로딩

config/ 디렉터리의 database.yaml, scheduler.yaml을 읽어 하나의 dict로 합칩니다.

    databases:   DatabaseRegistry.init_from_config
    dispatcher:  DispatcherConfig
    executor:    ExecutorConfig
    logging:     setup_logging (level, json_format, log_file)
"""

import logging
import os
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger(__name__)

CONFIG_FILES = ("database.yaml", "scheduler.yaml")

# 프로젝트 루트의 config/ (NEXUSJOBS_CONFIG_DIR로 변경 가능)
DEFAULT_CONFIG_DIR = Path(__file__).parent.parent / "config"


def default_config_dir() -> Path:
    return Path(os.environ.get("NEXUSJOBS_CONFIG_DIR", DEFAULT_CONFIG_DIR))


def load_config(config_dir: str | Path | None = None) -> dict[str, Any]:
    """
    설정 로드

    없는 파일은 건너뜁니다. 같은 최상위 키는 뒤 파일이 덮어씁니다.
    """
    config_path = Path(config_dir) if config_dir else default_config_dir()
    config: dict[str, Any] = {}

    for file_name in CONFIG_FILES:
        path = config_path / file_name
        if not path.exists():
            logger.debug(f"Config file not found, skipped: {path}")
            continue
        with open(path, encoding="utf-8") as f:
            loaded = yaml.safe_load(f) or {}
        if not isinstance(loaded, dict):
            raise ValueError(f"Config file must contain a mapping: {path}")
        config.update(loaded)

    return config
