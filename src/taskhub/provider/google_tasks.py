"""Google Tasks 集成

用 refresh token 换取 access token，拉取任务列表与未完成任务；
跨列表"移动"由 get + insert + delete 组成，新任务 id 与原 id 不同。
"""

import asyncio
import time
from typing import Any
from urllib.parse import quote

import httpx
import structlog

from taskhub.core.models import ContainerOption, TaskRecord, TaskSource, TodoListData

from .exceptions import ProviderError, ProviderNotConfiguredError, ProviderRequestError
from .http import HttpProviderClient

log = structlog.get_logger()

TASKS_BASE_URL = "https://tasks.googleapis.com/tasks/v1"
TOKEN_ENDPOINT = "https://oauth2.googleapis.com/token"

COMPLETED_LIST_NAME = "Completed tasks"

# access token 提前过期的余量（秒）
_TOKEN_EXPIRY_MARGIN_S = 60


def task_url(list_id: str, task_id: str) -> str:
    return (
        f"https://tasks.google.com/embed/list/{quote(list_id, safe='')}"
        f"?task={quote(task_id, safe='')}"
    )


def map_task_to_record(
    task: dict[str, Any],
    task_list: dict[str, Any],
    options: list[ContainerOption],
) -> TaskRecord:
    """Google Task -> TaskRecord"""
    task_id = str(task.get("id") or "")
    list_id = str(task_list.get("id") or "")
    list_title = task_list.get("title") or ""
    return TaskRecord(
        source=TaskSource.TODO_LIST,
        original_id=task_id or None,
        id=f"google-{task_id}" if task_id else None,
        title=task.get("title") or "Untitled task",
        description=task.get("notes") or "",
        url=task_url(list_id, task_id) if task_id else "",
        container_id=list_id or None,
        container_name=list_title or None,
        container_options=options,
        status=task.get("status"),
        due=task.get("due"),
        extension=TodoListData(task_id=task_id or None, list_id=list_id or None),
    )


def build_insert_payload(task: dict[str, Any]) -> dict[str, Any]:
    """复制任务时保留的字段"""
    payload: dict[str, Any] = {"title": task.get("title") or "Untitled task"}
    for field in ("notes", "due", "status"):
        if task.get(field):
            payload[field] = task[field]
    links = task.get("links")
    if isinstance(links, list) and links:
        payload["links"] = [
            {
                "description": link.get("description"),
                "link": link.get("link"),
                "type": link.get("type"),
            }
            for link in links
            if isinstance(link, dict)
        ]
    return payload


def _is_completed_list(task_list: dict[str, Any]) -> bool:
    title = task_list.get("title")
    return isinstance(title, str) and title.strip().lower() == COMPLETED_LIST_NAME.lower()


class GoogleTasksClient(HttpProviderClient):
    """Google Tasks API 客户端"""

    source_label = TaskSource.TODO_LIST.value
    auth_failure_message = (
        "Google Tasks integration authentication failed. "
        "Please verify GOOGLE_CLIENT_ID, GOOGLE_CLIENT_SECRET, and GOOGLE_REFRESH_TOKEN."
    )

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        refresh_token: str,
        list_ids: list[str] | None = None,
        timeout_s: int = 30,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        super().__init__(timeout_s=timeout_s, http_client=http_client)
        self._client_id = client_id
        self._client_secret = client_secret
        self._refresh_token = refresh_token
        self._list_ids = list(list_ids or [])
        self._access_token: str | None = None
        self._token_expires_at = 0.0

    async def _get_access_token(self) -> str:
        if not (self._client_id and self._client_secret and self._refresh_token):
            raise ProviderNotConfiguredError(
                self.source_label,
                "Google Tasks integration is not configured. Please provide "
                "GOOGLE_CLIENT_ID, GOOGLE_CLIENT_SECRET, and GOOGLE_REFRESH_TOKEN.",
            )
        if self._access_token and time.monotonic() < self._token_expires_at:
            return self._access_token

        response = await self._request(
            "POST",
            TOKEN_ENDPOINT,
            data={
                "client_id": self._client_id,
                "client_secret": self._client_secret,
                "refresh_token": self._refresh_token,
                "grant_type": "refresh_token",
            },
            default_error="Failed to refresh Google access token.",
        )
        data = response.json()
        access_token = data.get("access_token") if isinstance(data, dict) else None
        if not access_token:
            raise ProviderRequestError(
                "Google access token response did not include an access_token."
            )
        expires_in = data.get("expires_in") or 3600
        self._access_token = access_token
        self._token_expires_at = time.monotonic() + max(
            float(expires_in) - _TOKEN_EXPIRY_MARGIN_S, 0
        )
        return access_token

    async def _auth_headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {await self._get_access_token()}"}

    async def _paginate(
        self,
        url: str,
        params: dict[str, str],
        default_error: str,
    ) -> list[dict[str, Any]]:
        items: list[dict[str, Any]] = []
        page_token: str | None = None
        while True:
            query = {**params, "maxResults": "100"}
            if page_token:
                query["pageToken"] = page_token
            response = await self._request(
                "GET",
                url,
                headers=await self._auth_headers(),
                params=query,
                default_error=default_error,
            )
            data = response.json()
            if isinstance(data.get("items"), list):
                items.extend(data["items"])
            page_token = data.get("nextPageToken")
            if not page_token:
                return items

    async def list_task_lists(self) -> list[dict[str, Any]]:
        """全部任务列表；配置了 GOOGLE_TASKS_LIST_IDS 时按配置顺序筛选"""
        lists = await self._paginate(
            f"{TASKS_BASE_URL}/users/@me/lists",
            {},
            "Failed to retrieve Google Task lists.",
        )
        if not self._list_ids:
            return lists
        by_id = {item.get("id"): item for item in lists}
        return [by_id[list_id] for list_id in self._list_ids if list_id in by_id]

    async def list_tasks(self, list_id: str) -> list[dict[str, Any]]:
        """列表中未完成、未删除、未隐藏的任务"""
        return await self._paginate(
            f"{TASKS_BASE_URL}/lists/{quote(list_id, safe='')}/tasks",
            {"showCompleted": "false", "showDeleted": "false", "showHidden": "false"},
            f"Failed to retrieve tasks for Google Task list {list_id}.",
        )

    async def fetch_records(self) -> list[TaskRecord]:
        """拉取并映射为 TaskRecord

        "Completed tasks" 列表本身不展示；单个列表拉取失败只记录日志，不影响其他列表。
        """
        lists = await self.list_task_lists()
        if not lists:
            return []
        options = [
            ContainerOption(id=item["id"], name=item.get("title") or "")
            for item in lists
            if item.get("id")
        ]
        visible = [item for item in lists if not _is_completed_list(item)]

        async def load(task_list: dict[str, Any]) -> list[TaskRecord]:
            try:
                tasks = await self.list_tasks(task_list["id"])
            except ProviderNotConfiguredError:
                raise
            except ProviderError as e:
                log.warning(
                    "google_task_list_load_failed",
                    list_id=task_list.get("id"),
                    error=str(e),
                )
                return []
            return [map_task_to_record(task, task_list, options) for task in tasks]

        per_list = await asyncio.gather(*(load(item) for item in visible))
        records = [record for chunk in per_list for record in chunk]
        log.info("google_tasks_loaded", count=len(records), lists=len(visible))
        return records

    async def get_task(self, list_id: str, task_id: str) -> dict[str, Any]:
        response = await self._request(
            "GET",
            f"{TASKS_BASE_URL}/lists/{quote(list_id, safe='')}/tasks/{quote(task_id, safe='')}",
            headers=await self._auth_headers(),
            default_error="Unable to retrieve the Google Task to update.",
        )
        return response.json()

    async def insert_task(self, list_id: str, task: dict[str, Any]) -> dict[str, Any]:
        """在目标列表中新建与 task 等价的任务，返回新任务（id 与原任务不同）"""
        response = await self._request(
            "POST",
            f"{TASKS_BASE_URL}/lists/{quote(list_id, safe='')}/tasks",
            headers=await self._auth_headers(),
            json=build_insert_payload(task),
            default_error="Failed to move the Google Task to the selected list.",
        )
        return response.json()

    async def delete_task(self, list_id: str, task_id: str) -> None:
        await self._request(
            "DELETE",
            f"{TASKS_BASE_URL}/lists/{quote(list_id, safe='')}/tasks/{quote(task_id, safe='')}",
            headers=await self._auth_headers(),
            default_error="The Google Task was moved but removing the original entry failed.",
        )
