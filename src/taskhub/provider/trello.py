"""Trello 集成（含 Fellow action item 看板）

Fellow 的 action item 以卡片形式同步到专用 Trello 看板上，
这些看板上的卡片以 Fellow 来源展示，其余看板以 Trello 来源展示。
"""

import asyncio
import re
from collections.abc import Iterable, Mapping
from typing import Any
from urllib.parse import quote, urlsplit, urlunsplit

import httpx
import structlog

from taskhub.core.models import (
    SOURCE_ID_PREFIXES,
    ActionItemsData,
    BoardData,
    ContainerOption,
    TaskRecord,
    TaskSource,
)

from .config import DEFAULT_TRELLO_BASE_URL, DEFAULT_TRELLO_CARD_LIMIT
from .exceptions import ProviderError, ProviderNotConfiguredError
from .http import HttpProviderClient

log = structlog.get_logger()

COMPLETED_LIST_NAME = "Completed"

_SCHEME_RE = re.compile(r"^[a-zA-Z][a-zA-Z0-9+.-]*://")
_HTTP_URL_RE = re.compile(r"^https?://", re.IGNORECASE)

_CARD_FIELDS = "name,url,shortUrl,due,dueComplete,idBoard,idList,desc,closed"


def ensure_base_url(raw: str | None) -> str:
    """规范化 API 地址：补 https://，去掉 query/fragment 和末尾斜杠"""
    normalized = (raw or "").strip() or DEFAULT_TRELLO_BASE_URL
    if not _SCHEME_RE.match(normalized):
        normalized = f"https://{normalized}"
    parts = urlsplit(normalized)
    path = parts.path.rstrip("/")
    return urlunsplit((parts.scheme, parts.netloc, path, "", "")).rstrip("/")


def build_url(base_url: str, path: str) -> str:
    if not path:
        return ensure_base_url(base_url)
    if _SCHEME_RE.match(path):
        return path
    normalized_path = path if path.startswith("/") else f"/{path}"
    return f"{ensure_base_url(base_url)}{normalized_path}"


def _text(value: Any) -> str:
    return value.strip() if isinstance(value, str) else ""


def map_lists_to_options(lists: Iterable[Any] | None) -> list[ContainerOption]:
    options: list[ContainerOption] = []
    seen: set[str] = set()
    for item in lists or []:
        if not isinstance(item, Mapping):
            continue
        list_id = _text(item.get("id"))
        if not list_id or list_id in seen:
            continue
        seen.add(list_id)
        options.append(ContainerOption(id=list_id, name=_text(item.get("name")) or "Untitled list"))
    return options


def filter_cards_by_board(
    cards: Iterable[Any],
    include: Iterable[str] | None = None,
    exclude: Iterable[str] | None = None,
) -> list[dict[str, Any]]:
    """按看板筛选卡片：include 为空表示不限制，exclude 中的看板总是剔除"""
    included = {board_id.strip() for board_id in include or [] if board_id.strip()}
    excluded = {board_id.strip() for board_id in exclude or [] if board_id.strip()}
    result: list[dict[str, Any]] = []
    for card in cards:
        if not isinstance(card, dict):
            continue
        board_id = _text(card.get("idBoard"))
        if included and board_id not in included:
            continue
        if board_id and board_id in excluded:
            continue
        result.append(card)
    return result


def _card_url(card: Mapping[str, Any]) -> str:
    for candidate in (card.get("shortUrl"), card.get("url")):
        value = _text(candidate)
        if value and _HTTP_URL_RE.match(value):
            return value
    return ""


def _card_status(card: Mapping[str, Any]) -> str:
    if card.get("dueComplete") is True:
        return "Completed"
    if card.get("closed") is True:
        return "Closed"
    return ""


def map_cards_to_records(
    cards: Iterable[Any],
    board_lists: Mapping[str, list[dict[str, Any]]] | None = None,
    fellow_board_ids: Iterable[str] | None = None,
) -> list[TaskRecord]:
    """Trello 卡片 -> TaskRecord

    已在 "Completed" 列的卡片不再展示（由本地完成快照覆盖）；
    重复卡片按 id 去重。
    """
    board_lists = board_lists or {}
    fellow_boards = {board_id.strip() for board_id in fellow_board_ids or []}
    records: list[TaskRecord] = []
    seen: set[str] = set()

    for card in cards:
        if not isinstance(card, Mapping):
            continue
        card_id = _text(card.get("id"))
        if not card_id or card_id in seen:
            continue
        seen.add(card_id)

        board_id = _text(card.get("idBoard"))
        list_id = _text(card.get("idList"))
        lists_for_board = board_lists.get(board_id, [])

        list_name = _text((card.get("list") or {}).get("name"))
        if not list_name and list_id:
            for item in lists_for_board:
                if _text(item.get("id")) == list_id and _text(item.get("name")):
                    list_name = _text(item.get("name"))
                    break

        if list_name.lower() == COMPLETED_LIST_NAME.lower():
            continue

        if board_id and board_id in fellow_boards:
            source = TaskSource.ACTION_ITEMS
            extension: ActionItemsData | BoardData = ActionItemsData(
                card_id=card_id,
                list_id=list_id or None,
                board_id=board_id or None,
            )
        else:
            source = TaskSource.BOARD
            extension = BoardData(
                card_id=card_id,
                list_id=list_id or None,
                board_id=board_id or None,
            )

        board_name = _text((card.get("board") or {}).get("name"))
        records.append(
            TaskRecord(
                source=source,
                original_id=card_id,
                id=f"{SOURCE_ID_PREFIXES[source]}{card_id}",
                title=_text(card.get("name")) or "Untitled card",
                description=_text(card.get("desc")),
                url=_card_url(card),
                container_id=list_id or None,
                container_name=list_name or None,
                container_options=map_lists_to_options(lists_for_board),
                status=_card_status(card),
                due=card.get("due") or None,
                extension=extension,
                board_name=board_name or None,
            )
        )
    return records


class TrelloClient(HttpProviderClient):
    """Trello REST API 客户端"""

    source_label = TaskSource.BOARD.value
    auth_failure_message = (
        "Trello integration authentication failed. Please verify the configured "
        "TRELLO_API_KEY, TRELLO_TOKEN, and TRELLO_MEMBER_ID."
    )

    def __init__(
        self,
        api_key: str,
        token: str,
        member_id: str = "",
        board_ids: list[str] | None = None,
        fellow_board_ids: list[str] | None = None,
        card_limit: int = DEFAULT_TRELLO_CARD_LIMIT,
        base_url: str = DEFAULT_TRELLO_BASE_URL,
        timeout_s: int = 30,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        super().__init__(timeout_s=timeout_s, http_client=http_client)
        self._api_key = api_key
        self._token = token
        self._member_id = member_id
        self._board_ids = list(board_ids or [])
        self._fellow_board_ids = list(fellow_board_ids or [])
        self._card_limit = card_limit
        self._base_url = ensure_base_url(base_url)

    @property
    def fellow_board_ids(self) -> list[str]:
        return list(self._fellow_board_ids)

    def _auth_params(self) -> dict[str, str]:
        if not self._api_key or not self._token:
            raise ProviderNotConfiguredError(
                self.source_label,
                "Trello integration is not configured. Please provide the "
                "TRELLO_API_KEY and TRELLO_TOKEN environment variables.",
            )
        return {"key": self._api_key, "token": self._token}

    def _require_member_id(self) -> str:
        if not self._member_id:
            raise ProviderNotConfiguredError(
                self.source_label,
                "Trello integration is not configured. Please provide the "
                "TRELLO_MEMBER_ID environment variable.",
            )
        return self._member_id

    async def list_member_cards(self) -> list[dict[str, Any]]:
        """成员名下的 open 卡片，附带看板名与列名"""
        member_id = self._require_member_id()
        params = {
            **self._auth_params(),
            "filter": "open",
            "fields": _CARD_FIELDS,
            "board": "true",
            "board_fields": "name,url",
            "list": "true",
            "list_fields": "name",
            "limit": str(self._card_limit),
        }
        response = await self._request(
            "GET",
            build_url(self._base_url, f"members/{quote(member_id, safe='')}/cards"),
            params=params,
            headers={"Accept": "application/json"},
            default_error="Failed to load Trello cards.",
        )
        data = response.json()
        return data if isinstance(data, list) else []

    async def list_board_lists(self, board_id: str) -> list[dict[str, Any]]:
        if not board_id:
            return []
        response = await self._request(
            "GET",
            build_url(self._base_url, f"boards/{quote(board_id, safe='')}/lists"),
            params={**self._auth_params(), "filter": "open", "fields": "name"},
            headers={"Accept": "application/json"},
            default_error=f"Failed to load Trello lists for board {board_id}.",
        )
        data = response.json()
        return data if isinstance(data, list) else []

    async def _load_board_lists(self, cards: list[dict[str, Any]]) -> dict[str, list]:
        board_ids = list(dict.fromkeys(_text(card.get("idBoard")) for card in cards))
        board_ids = [board_id for board_id in board_ids if board_id]

        async def load(board_id: str) -> tuple[str, list]:
            try:
                return board_id, await self.list_board_lists(board_id)
            except ProviderNotConfiguredError:
                raise
            except ProviderError as e:
                log.warning("trello_board_lists_load_failed", board_id=board_id, error=str(e))
                return board_id, []

        return dict(await asyncio.gather(*(load(board_id) for board_id in board_ids)))

    async def fetch_board_records(self) -> list[TaskRecord]:
        """普通看板卡片（排除 Fellow 看板）"""
        cards = filter_cards_by_board(
            await self.list_member_cards(),
            include=self._board_ids,
            exclude=self._fellow_board_ids,
        )
        records = map_cards_to_records(cards, await self._load_board_lists(cards))
        log.info("trello_cards_loaded", count=len(records))
        return records

    async def fetch_action_item_records(self) -> list[TaskRecord]:
        """Fellow 看板上的 action item 卡片；未配置 Fellow 看板时返回空"""
        if not self._fellow_board_ids:
            return []
        cards = filter_cards_by_board(
            await self.list_member_cards(),
            include=self._fellow_board_ids,
        )
        records = map_cards_to_records(
            cards,
            await self._load_board_lists(cards),
            fellow_board_ids=self._fellow_board_ids,
        )
        log.info("fellow_action_items_loaded", count=len(records))
        return records

    async def move_card(self, card_id: str, list_id: str) -> None:
        await self._request(
            "PUT",
            build_url(self._base_url, f"cards/{quote(card_id, safe='')}/idList"),
            params={**self._auth_params(), "value": list_id},
            headers={"Accept": "application/json"},
            default_error="Failed to move the Trello card to Completed.",
        )

    async def add_comment(self, card_id: str, text: str) -> None:
        await self._request(
            "POST",
            build_url(self._base_url, f"cards/{quote(card_id, safe='')}/actions/comments"),
            params=self._auth_params(),
            data={"text": text},
            default_error="Adding the comment to Trello failed.",
        )
