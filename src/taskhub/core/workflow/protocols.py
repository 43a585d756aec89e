"""完成流程依赖的远端写接口

provider 客户端通过结构化子类型满足这些 Protocol，core 不依赖具体实现。
"""

from typing import Any, Protocol


class IssueTrackerGateway(Protocol):
    """Issue 跟踪器（GitHub）"""

    async def add_comment(self, repo: str, issue_number: int, body: str) -> None: ...

    async def close_issue(self, repo: str, issue_number: int) -> None: ...


class TodoListGateway(Protocol):
    """待办列表（Google Tasks）-- 跨列表移动 = 读取 + 新建 + 删除"""

    async def get_task(self, list_id: str, task_id: str) -> dict[str, Any]: ...

    async def insert_task(self, list_id: str, task: dict[str, Any]) -> dict[str, Any]:
        """在目标列表中新建等价任务，返回带新 id 的任务"""
        ...

    async def delete_task(self, list_id: str, task_id: str) -> None: ...


class BoardGateway(Protocol):
    """卡片看板（Trello，Fellow action item 看板同样适用）"""

    async def move_card(self, card_id: str, list_id: str) -> None: ...

    async def add_comment(self, card_id: str, text: str) -> None: ...
