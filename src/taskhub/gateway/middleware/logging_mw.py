"""LoggingMiddleware -- 请求级日志

为每个 HTTP 请求绑定 request_id 与路由模板到 structlog contextvars，
并通过 X-Request-ID 响应头返回。上游已带 X-Request-ID 时沿用。
"""

import re
import time

import structlog
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response
from ulid import ULID

REQUEST_ID_HEADER = "X-Request-ID"

# 探活接口只记 debug
QUIET_PATHS = frozenset({"/health", "/ready"})

_SAFE_REQUEST_ID = re.compile(r"^[A-Za-z0-9._-]{1,64}$")


def _request_id(request: Request) -> str:
    incoming = request.headers.get(REQUEST_ID_HEADER, "").strip()
    if _SAFE_REQUEST_ID.match(incoming):
        return incoming
    return str(ULID())


def _route_template(request: Request) -> str | None:
    route = request.scope.get("route")
    return getattr(route, "path", None)


class LoggingMiddleware(BaseHTTPMiddleware):
    """请求级日志中间件"""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        request_id = _request_id(request)
        path = request.url.path
        start = time.monotonic()

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            request_id=request_id,
            method=request.method,
            path=path,
        )

        log = structlog.get_logger()
        quiet = path in QUIET_PATHS
        if not quiet:
            await log.ainfo("request_started")

        try:
            response = await call_next(request)
        except Exception as e:
            await log.aexception(
                "request_failed",
                route=_route_template(request),
                error_type=type(e).__name__,
                duration_ms=int((time.monotonic() - start) * 1000),
            )
            raise

        fields = {
            "route": _route_template(request),
            "status_code": response.status_code,
            "duration_ms": int((time.monotonic() - start) * 1000),
        }
        if response.status_code >= 500:
            await log.awarning("request_completed", **fields)
        elif quiet:
            await log.adebug("request_completed", **fields)
        else:
            await log.ainfo("request_completed", **fields)

        response.headers[REQUEST_ID_HEADER] = request_id
        return response
