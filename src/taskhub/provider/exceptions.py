"""Provider 异常体系

区分"未配置/未授权"（UI 提示去配置）与"暂时不可用"（UI 提示稍后重试）。
"""


class ProviderError(Exception):
    """Provider 包基础异常"""

    def __init__(
        self,
        message: str,
        recoverable: bool = True,
        status_code: int | None = None,
    ) -> None:
        """
        Args:
            message: 错误描述
            recoverable: 是否可通过重试恢复
            status_code: 远端 HTTP 状态码（如有）
        """
        super().__init__(message)
        self.recoverable = recoverable
        self.status_code = status_code


class ProviderNotConfiguredError(ProviderError):
    """集成未配置或凭证被拒绝（401/403）

    重试无法恢复，需要用户补全配置。
    """

    def __init__(self, source: str, message: str | None = None) -> None:
        """
        Args:
            source: 来源展示名（GitHub / Google Tasks / Trello / Fellow）
            message: 错误描述，默认提示缺少配置
        """
        super().__init__(
            message or f"{source} integration is not configured.",
            recoverable=False,
            status_code=503,
        )
        self.source = source


class ProviderRequestError(ProviderError):
    """远端请求失败（网络错误或非 2xx 响应）"""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message, recoverable=True, status_code=status_code)
