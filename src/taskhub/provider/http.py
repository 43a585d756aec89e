"""各 provider HTTP 客户端的公共基类

封装 httpx.AsyncClient：统一超时、错误消息提取，
把网络错误与非 2xx 响应转换为 ProviderError 子类。
"""

from typing import Any

import httpx
import structlog

from .exceptions import ProviderNotConfiguredError, ProviderRequestError

log = structlog.get_logger()


def extract_error_message(response: httpx.Response, default: str) -> str:
    """从错误响应体中提取可读消息

    兼容 Google（error.message / error_description）、
    GitHub（message）、Trello（message / error 或纯文本）几种格式。
    """
    try:
        data = response.json()
    except ValueError:
        text = response.text.strip()
        return text or default

    if isinstance(data, dict):
        error = data.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
        for field in ("error_description", "message"):
            if data.get(field):
                return str(data[field])
        if isinstance(error, str) and error:
            return error
    return default


class HttpProviderClient:
    """Provider HTTP 客户端基类

    Attributes:
        source_label: 来源展示名，用于错误消息与日志
        auth_failure_message: 401/403 时返回的提示
    """

    source_label = "Provider"
    auth_failure_message: str | None = None

    def __init__(
        self,
        timeout_s: int = 30,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        """
        Args:
            timeout_s: 请求超时（秒）
            http_client: 外部注入的客户端（测试时配合 httpx.MockTransport）
        """
        self._owns_client = http_client is None
        self._http = http_client or httpx.AsyncClient(timeout=timeout_s)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._http.aclose()

    async def _request(
        self,
        method: str,
        url: str,
        *,
        default_error: str,
        **kwargs: Any,
    ) -> httpx.Response:
        """发送请求，失败时抛出 ProviderError 子类

        Raises:
            ProviderNotConfiguredError: 401/403
            ProviderRequestError: 网络错误或其他非 2xx 响应
        """
        try:
            response = await self._http.request(method, url, **kwargs)
        except httpx.HTTPError as e:
            log.error(
                "provider_request_failed",
                provider=self.source_label,
                method=method,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise ProviderRequestError(f"{default_error} ({e})") from e

        if response.status_code in (401, 403):
            log.error(
                "provider_auth_failed",
                provider=self.source_label,
                status_code=response.status_code,
            )
            raise ProviderNotConfiguredError(self.source_label, self.auth_failure_message)

        if response.is_error:
            message = extract_error_message(response, default_error)
            log.warning(
                "provider_request_rejected",
                provider=self.source_label,
                method=method,
                status_code=response.status_code,
                error=message,
            )
            raise ProviderRequestError(message, status_code=response.status_code)

        return response

    @staticmethod
    def _json_or_none(response: httpx.Response) -> Any:
        """部分写接口返回空响应体"""
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError:
            return None
