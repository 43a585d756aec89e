"""ProviderConfig -- Provider 配置加载

从环境变量加载各集成的凭证与筛选项，密钥统一用 SecretStr 包装，
避免被日志或 repr 意外输出。
"""

import os

import structlog
from pydantic import BaseModel, Field, SecretStr

log = structlog.get_logger()

DEFAULT_TRELLO_BASE_URL = "https://api.trello.com/1"
DEFAULT_TRELLO_CARD_LIMIT = 200
MAX_TRELLO_CARD_LIMIT = 500


def _split_ids(raw: str | None) -> list[str]:
    """逗号分隔的 ID 列表，去空白、去空项、保序去重"""
    if not raw:
        return []
    ids: list[str] = []
    for value in raw.split(","):
        value = value.strip()
        if value and value not in ids:
            ids.append(value)
    return ids


class ProviderConfig(BaseModel):
    """Provider 包配置 -- 从环境变量加载

    环境变量:
        TASKHUB_HTTP_TIMEOUT_S: 远端调用超时（秒，默认 30）
        GITHUB_TOKEN: GitHub 访问令牌
        GOOGLE_CLIENT_ID / GOOGLE_CLIENT_SECRET / GOOGLE_REFRESH_TOKEN: Google OAuth 凭证
        GOOGLE_TASKS_LIST_IDS: 只展示这些列表（逗号分隔，默认全部）
        TRELLO_API_KEY / TRELLO_TOKEN / TRELLO_MEMBER_ID: Trello 凭证
        TRELLO_BOARD_IDS: 只展示这些看板（逗号分隔，默认全部）
        TRELLO_FELLOW_BOARD_IDS: 同步 Fellow action item 的看板
        TRELLO_CARD_LIMIT: 单次拉取卡片上限（默认 200，最大 500）
        TRELLO_API_BASE_URL: Trello API 地址
    """

    timeout_s: int = Field(default=30, ge=1, description="远端调用超时（秒）")

    github_token: SecretStr = Field(default=SecretStr(""), description="GitHub 访问令牌")

    google_client_id: str = Field(default="", description="Google OAuth client id")
    google_client_secret: SecretStr = Field(default=SecretStr(""))
    google_refresh_token: SecretStr = Field(default=SecretStr(""))
    google_task_list_ids: list[str] = Field(default_factory=list)

    trello_api_key: SecretStr = Field(default=SecretStr(""))
    trello_token: SecretStr = Field(default=SecretStr(""))
    trello_member_id: str = Field(default="")
    trello_board_ids: list[str] = Field(default_factory=list)
    trello_fellow_board_ids: list[str] = Field(default_factory=list)
    trello_card_limit: int = Field(
        default=DEFAULT_TRELLO_CARD_LIMIT,
        ge=1,
        le=MAX_TRELLO_CARD_LIMIT,
    )
    trello_api_base_url: str = Field(default=DEFAULT_TRELLO_BASE_URL)

    @property
    def github_configured(self) -> bool:
        return bool(self.github_token.get_secret_value())

    @property
    def google_configured(self) -> bool:
        return bool(
            self.google_client_id
            and self.google_client_secret.get_secret_value()
            and self.google_refresh_token.get_secret_value()
        )

    @property
    def trello_configured(self) -> bool:
        return bool(
            self.trello_api_key.get_secret_value()
            and self.trello_token.get_secret_value()
            and self.trello_member_id
        )

    @property
    def fellow_configured(self) -> bool:
        return self.trello_configured and bool(self.trello_fellow_board_ids)


def load_provider_config() -> ProviderConfig:
    """从环境变量加载 Provider 配置

    数值项非法时记录 warning 并使用默认值，不阻塞启动。

    Returns:
        ProviderConfig 实例
    """
    kwargs: dict = {}

    if val := os.environ.get("TASKHUB_HTTP_TIMEOUT_S"):
        try:
            kwargs["timeout_s"] = max(int(val), 1)
        except ValueError:
            log.warning(
                "invalid_timeout_config",
                env_var="TASKHUB_HTTP_TIMEOUT_S",
                value=val,
                fallback=30,
            )

    if val := os.environ.get("GITHUB_TOKEN", "").strip():
        kwargs["github_token"] = SecretStr(val)

    if val := os.environ.get("GOOGLE_CLIENT_ID", "").strip():
        kwargs["google_client_id"] = val
    if val := os.environ.get("GOOGLE_CLIENT_SECRET", "").strip():
        kwargs["google_client_secret"] = SecretStr(val)
    if val := os.environ.get("GOOGLE_REFRESH_TOKEN", "").strip():
        kwargs["google_refresh_token"] = SecretStr(val)
    kwargs["google_task_list_ids"] = _split_ids(os.environ.get("GOOGLE_TASKS_LIST_IDS"))

    if val := os.environ.get("TRELLO_API_KEY", "").strip():
        kwargs["trello_api_key"] = SecretStr(val)
    if val := os.environ.get("TRELLO_TOKEN", "").strip():
        kwargs["trello_token"] = SecretStr(val)
    if val := os.environ.get("TRELLO_MEMBER_ID", "").strip():
        kwargs["trello_member_id"] = val
    kwargs["trello_board_ids"] = _split_ids(os.environ.get("TRELLO_BOARD_IDS"))
    # 兼容旧的单看板变量 TRELLO_FELLOW_BOARD_ID
    kwargs["trello_fellow_board_ids"] = _split_ids(
        ",".join(
            filter(
                None,
                [
                    os.environ.get("TRELLO_FELLOW_BOARD_IDS"),
                    os.environ.get("TRELLO_FELLOW_BOARD_ID"),
                ],
            )
        )
    )

    if val := os.environ.get("TRELLO_CARD_LIMIT"):
        try:
            limit = int(val)
        except ValueError:
            limit = 0
        if limit <= 0:
            log.warning(
                "invalid_card_limit_config",
                env_var="TRELLO_CARD_LIMIT",
                value=val,
                fallback=DEFAULT_TRELLO_CARD_LIMIT,
            )
        else:
            kwargs["trello_card_limit"] = min(limit, MAX_TRELLO_CARD_LIMIT)

    if val := os.environ.get("TRELLO_API_BASE_URL", "").strip():
        kwargs["trello_api_base_url"] = val

    return ProviderConfig(**kwargs)
