"""structlog 配置模块

dev 模式：pretty print 可读输出
json 模式：结构化 JSON 输出

provider 凭据（token、refresh token、API key）在渲染前统一脱敏。
"""

import logging
import os
from collections.abc import MutableMapping
from typing import Any

import structlog

SERVICE_NAME = "taskhub"

# 日志字段名包含这些片段时值被替换
_SECRET_MARKERS = ("token", "secret", "api_key", "apikey", "password", "authorization")
_REDACTED = "***"


def redact_secrets(
    _logger: Any, _method: str, event_dict: MutableMapping[str, Any]
) -> MutableMapping[str, Any]:
    """structlog processor：把疑似凭据的字段值替换为 ***"""
    for key in list(event_dict):
        lowered = key.lower()
        if any(marker in lowered for marker in _SECRET_MARKERS) and event_dict[key]:
            event_dict[key] = _REDACTED
    return event_dict


def _add_service(
    _logger: Any, _method: str, event_dict: MutableMapping[str, Any]
) -> MutableMapping[str, Any]:
    event_dict.setdefault("service", SERVICE_NAME)
    return event_dict


def _resolve_level(raw: str) -> int:
    level = logging.getLevelName(raw.strip().upper())
    return level if isinstance(level, int) else logging.INFO


def setup_logging() -> None:
    """初始化 structlog 配置

    根据 TASKHUB_LOG_FORMAT 环境变量选择渲染模式：
    - "json": 结构化 JSON 输出（生产环境）
    - "dev" (默认): pretty print 可读输出
    日志级别由 TASKHUB_LOG_LEVEL 控制（默认 INFO，非法值回退 INFO）。
    """
    log_format = os.environ.get("TASKHUB_LOG_FORMAT", "dev").strip().lower()
    log_level = _resolve_level(os.environ.get("TASKHUB_LOG_LEVEL", "INFO"))

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        _add_service,
        redact_secrets,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if log_format == "json":
        renderer: structlog.types.Processor = structlog.processors.JSONRenderer(
            ensure_ascii=False
        )
        shared_processors.append(structlog.processors.format_exc_info)
    else:
        renderer = structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    # uvicorn 与 httpx 的标准库日志走同一格式
    formatter = structlog.stdlib.ProcessorFormatter(
        processor=renderer,
        foreign_pre_chain=shared_processors,
    )

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(log_level)

    # httpx 每个请求一条 INFO，且 URL 里可能带 Trello key/token
    logging.getLogger("httpx").setLevel(logging.WARNING)
