"""TaskHub Provider -- 外部任务来源集成

各 provider 的 HTTP 客户端与纯函数 normalizer 的公开接口导出。
"""

# 配置
from .config import ProviderConfig, load_provider_config

# 异常
from .exceptions import ProviderError, ProviderNotConfiguredError, ProviderRequestError

# 客户端
from .github import GitHubClient, map_issue_to_record
from .google_tasks import GoogleTasksClient, build_insert_payload, map_task_to_record
from .http import HttpProviderClient
from .trello import (
    TrelloClient,
    build_url,
    ensure_base_url,
    filter_cards_by_board,
    map_cards_to_records,
    map_lists_to_options,
)

__all__ = [
    "ProviderConfig",
    "load_provider_config",
    "ProviderError",
    "ProviderNotConfiguredError",
    "ProviderRequestError",
    "HttpProviderClient",
    "GitHubClient",
    "map_issue_to_record",
    "GoogleTasksClient",
    "map_task_to_record",
    "build_insert_payload",
    "TrelloClient",
    "map_cards_to_records",
    "map_lists_to_options",
    "filter_cards_by_board",
    "ensure_base_url",
    "build_url",
]
