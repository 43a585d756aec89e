"""请求日志与 structlog 配置测试"""

from httpx import AsyncClient
from structlog.testing import capture_logs
from taskhub.gateway.middleware.logging_config import redact_secrets


class TestRequestLogging:
    """LoggingMiddleware"""

    async def test_upstream_request_id_reused(self, client: AsyncClient):
        resp = await client.get("/health", headers={"X-Request-ID": "edge-123"})
        assert resp.headers["X-Request-ID"] == "edge-123"

    async def test_unsafe_request_id_replaced(self, client: AsyncClient):
        resp = await client.get("/health", headers={"X-Request-ID": "bad id!"})
        assert resp.headers["X-Request-ID"] != "bad id!"
        assert len(resp.headers["X-Request-ID"]) == 26

    async def test_route_template_bound(self, client: AsyncClient):
        with capture_logs() as logs:
            await client.get("/api/task-priority")

        completed = [entry for entry in logs if entry["event"] == "request_completed"]
        assert completed[-1]["route"] == "/api/task-priority"
        assert completed[-1]["status_code"] == 200


class TestRedactSecrets:
    """凭据脱敏"""

    def test_secret_fields_masked(self):
        event = redact_secrets(
            None,
            "info",
            {"event": "x", "refresh_token": "abc", "trello_api_key": "k", "task_key": "GitHub::1"},
        )
        assert event["refresh_token"] == "***"
        assert event["trello_api_key"] == "***"
        assert event["task_key"] == "GitHub::1"

    def test_empty_values_left_alone(self):
        event = redact_secrets(None, "info", {"event": "x", "token": None})
        assert event["token"] is None
