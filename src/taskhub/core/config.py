"""配置常量模块 -- 可通过环境变量覆盖

包含数据库路径、快照存储介质、保留策略等可配置项。
"""

import os
from pathlib import Path

import structlog

log = structlog.get_logger()


def _get_base_dir() -> Path:
    """获取项目 data 基础目录"""
    return Path(os.environ.get("TASKHUB_DATA_DIR", "data"))


def get_db_path() -> str:
    """获取 SQLite 数据库路径"""
    return os.environ.get(
        "TASKHUB_DB_PATH",
        str(_get_base_dir() / "sqlite" / "taskhub.db"),
    )


def get_store_backend() -> str:
    """获取完成快照存储介质：sqlite（默认）或 json"""
    backend = os.environ.get("TASKHUB_STORE_BACKEND", "sqlite").strip().lower()
    if backend not in ("sqlite", "json"):
        log.warning(
            "invalid_store_backend_config",
            env_var="TASKHUB_STORE_BACKEND",
            value=backend,
            fallback="sqlite",
        )
        return "sqlite"
    return backend


def get_json_store_path() -> Path:
    """获取 JSON 文件介质的快照存储路径"""
    return Path(
        os.environ.get(
            "COMPLETED_TASKS_STORE_PATH",
            str(_get_base_dir() / "completed-tasks.json"),
        )
    )


def get_snapshot_retention_days() -> int:
    """快照保留天数，0 表示永久保留"""
    raw = os.environ.get("TASKHUB_SNAPSHOT_RETENTION_DAYS", "0")
    try:
        days = int(raw)
    except ValueError:
        log.warning(
            "invalid_retention_config",
            env_var="TASKHUB_SNAPSHOT_RETENTION_DAYS",
            value=raw,
            fallback=0,
        )
        return 0
    return max(days, 0)


# 刷新失败提示文案
PARTIAL_FETCH_MESSAGE = "Heads up: {source} couldn't be loaded right now."
TOTAL_FETCH_FAILURE_MESSAGE = "We couldn't load your tasks right now. Please try again."
