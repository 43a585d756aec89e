"""GoogleTasksClient 测试

测试内容：
1. refresh token 换取 access token 并缓存
2. 列表筛选（配置顺序、跳过 Completed tasks 列表）
3. 单个列表失败不影响其他列表
4. insert / delete 请求格式
"""

import json

import httpx
import pytest
from taskhub.core.models import TaskSource, TodoListData
from taskhub.provider import (
    GoogleTasksClient,
    ProviderNotConfiguredError,
    build_insert_payload,
)

LISTS = [
    {"id": "L1", "title": "Inbox"},
    {"id": "L2", "title": "Work"},
    {"id": "L-done", "title": "Completed tasks"},
]


class FakeGoogle:
    """按路径分发的 Google API 模拟"""

    def __init__(self, failing_lists: set[str] | None = None) -> None:
        self.token_requests = 0
        self.failing_lists = failing_lists or set()
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.url.host == "oauth2.googleapis.com":
            self.token_requests += 1
            return httpx.Response(200, json={"access_token": "at-1", "expires_in": 3600})

        assert request.headers["Authorization"] == "Bearer at-1"
        path = request.url.path
        if path.endswith("/users/@me/lists"):
            return httpx.Response(200, json={"items": LISTS})
        for list_id in ("L1", "L2", "L-done"):
            if path.endswith(f"/lists/{list_id}/tasks") and request.method == "GET":
                if list_id in self.failing_lists:
                    return httpx.Response(500, json={"error": {"message": "backend error"}})
                return httpx.Response(
                    200,
                    json={"items": [{"id": f"{list_id}-t", "title": f"Task in {list_id}"}]},
                )
        if request.method == "POST":
            return httpx.Response(200, json={"id": "new-1", **json.loads(request.content)})
        if request.method == "DELETE":
            return httpx.Response(204)
        return httpx.Response(404, json={"error": {"message": "not found"}})


def _client(fake: FakeGoogle, list_ids: list[str] | None = None) -> GoogleTasksClient:
    return GoogleTasksClient(
        client_id="cid",
        client_secret="secret",
        refresh_token="rt",
        list_ids=list_ids,
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(fake)),
    )


class TestGoogleTasksClient:
    """Google Tasks API 调用"""

    async def test_fetch_records_skips_completed_list(self):
        fake = FakeGoogle()
        records = await _client(fake).fetch_records()

        assert [r.original_id for r in records] == ["L1-t", "L2-t"]
        first = records[0]
        assert first.source == TaskSource.TODO_LIST
        assert first.id == "google-L1-t"
        assert first.container_name == "Inbox"
        assert isinstance(first.extension, TodoListData)
        assert first.extension.list_id == "L1"
        # 候选容器包含 Completed tasks，供完成流程定位目标列表
        assert first.find_container_option("completed tasks").id == "L-done"
        # access token 只换取一次
        assert fake.token_requests == 1

    async def test_configured_list_ids_filter_and_order(self):
        fake = FakeGoogle()
        records = await _client(fake, list_ids=["L2", "missing"]).fetch_records()
        assert [r.original_id for r in records] == ["L2-t"]

    async def test_one_list_failure_is_isolated(self):
        fake = FakeGoogle(failing_lists={"L1"})
        records = await _client(fake).fetch_records()
        assert [r.original_id for r in records] == ["L2-t"]

    async def test_missing_credentials_not_configured(self):
        client = GoogleTasksClient(client_id="", client_secret="", refresh_token="")
        with pytest.raises(ProviderNotConfiguredError):
            await client.fetch_records()
        await client.aclose()

    async def test_insert_and_delete(self):
        fake = FakeGoogle()
        client = _client(fake)

        created = await client.insert_task(
            "L-done",
            {"id": "t1", "title": "Buy milk", "notes": "2%", "status": "completed"},
        )
        await client.delete_task("L1", "t1")

        assert created["id"] == "new-1"
        insert_request = next(r for r in fake.requests if r.method == "POST" and "lists/" in r.url.path)
        assert insert_request.url.path.endswith("/lists/L-done/tasks")
        assert json.loads(insert_request.content) == {
            "title": "Buy milk",
            "notes": "2%",
            "status": "completed",
        }
        delete_request = next(r for r in fake.requests if r.method == "DELETE")
        assert delete_request.url.path.endswith("/lists/L1/tasks/t1")


class TestBuildInsertPayload:
    """复制任务的字段"""

    def test_keeps_links(self):
        payload = build_insert_payload(
            {
                "id": "t1",
                "title": "",
                "links": [{"description": "doc", "link": "https://x", "type": "email"}],
            }
        )
        assert payload["title"] == "Untitled task"
        assert payload["links"] == [{"description": "doc", "link": "https://x", "type": "email"}]
        assert "id" not in payload
