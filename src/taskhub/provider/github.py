"""GitHub Issues 集成

拉取分配给当前用户的 open issue，并提供完成流程需要的评论、关闭操作。
"""

from typing import Any

import httpx
import structlog

from taskhub.core.models import IssueTrackerData, TaskRecord, TaskSource

from .exceptions import ProviderNotConfiguredError, ProviderRequestError
from .http import HttpProviderClient

log = structlog.get_logger()

GITHUB_API_BASE_URL = "https://api.github.com"


def map_issue_to_record(issue: dict[str, Any]) -> TaskRecord:
    """GitHub issue -> TaskRecord"""
    repository = issue.get("repository") or {}
    repo = repository.get("full_name") or ""
    issue_id = issue.get("id")
    number = issue.get("number")

    return TaskRecord(
        source=TaskSource.ISSUE_TRACKER,
        original_id=str(issue_id) if issue_id is not None else None,
        id=f"github-{issue_id}" if issue_id is not None else None,
        title=issue.get("title") or "Untitled issue",
        description=issue.get("body") or "",
        url=issue.get("html_url") or "",
        container_id=repo or None,
        container_name=repo or None,
        status=issue.get("state") or "open",
        extension=IssueTrackerData(
            issue_id=issue_id,
            repo=repo or None,
            issue_number=number,
        ),
    )


def _split_repo(repo: str) -> tuple[str, str]:
    owner, _, name = (repo or "").partition("/")
    if not owner or not name:
        raise ProviderRequestError(f"Unable to determine the GitHub repository from '{repo}'.")
    return owner, name


class GitHubClient(HttpProviderClient):
    """GitHub REST API 客户端"""

    source_label = TaskSource.ISSUE_TRACKER.value
    auth_failure_message = (
        "GitHub integration authentication failed. Please verify the configured GITHUB_TOKEN."
    )

    def __init__(
        self,
        token: str,
        base_url: str = GITHUB_API_BASE_URL,
        timeout_s: int = 30,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        super().__init__(timeout_s=timeout_s, http_client=http_client)
        self._token = token
        self._base_url = base_url.rstrip("/")

    def _headers(self) -> dict[str, str]:
        if not self._token:
            raise ProviderNotConfiguredError(
                self.source_label,
                "GitHub integration is not configured. Please provide GITHUB_TOKEN.",
            )
        return {
            "Authorization": f"Bearer {self._token}",
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
        }

    async def list_assigned_issues(self) -> list[dict[str, Any]]:
        """分配给当前用户的 open issue（跨仓库，逐页拉取）"""
        headers = self._headers()
        issues: list[dict[str, Any]] = []
        page = 1
        while True:
            response = await self._request(
                "GET",
                f"{self._base_url}/issues",
                headers=headers,
                params={"filter": "assigned", "state": "open", "per_page": 100, "page": page},
                default_error="Failed to load GitHub tasks.",
            )
            data = response.json()
            if not isinstance(data, list) or not data:
                break
            issues.extend(item for item in data if isinstance(item, dict))
            if len(data) < 100:
                break
            page += 1
        return issues

    async def fetch_records(self) -> list[TaskRecord]:
        """拉取并映射为 TaskRecord"""
        issues = await self.list_assigned_issues()
        records = [map_issue_to_record(issue) for issue in issues]
        log.info("github_issues_loaded", count=len(records))
        return records

    async def add_comment(self, repo: str, issue_number: int, body: str) -> None:
        owner, name = _split_repo(repo)
        await self._request(
            "POST",
            f"{self._base_url}/repos/{owner}/{name}/issues/{issue_number}/comments",
            headers=self._headers(),
            json={"body": body},
            default_error="Failed to add the comment to the GitHub issue.",
        )

    async def close_issue(self, repo: str, issue_number: int) -> None:
        owner, name = _split_repo(repo)
        await self._request(
            "PATCH",
            f"{self._base_url}/repos/{owner}/{name}/issues/{issue_number}",
            headers=self._headers(),
            json={"state": "closed"},
            default_error="Failed to mark the GitHub issue as done.",
        )
