"""Store Protocol 接口定义

定义 CompletionStore、PriorityStore 的抽象接口，
使用 Python Protocol 实现结构化子类型（duck typing）。
SQLite 与 JSON 文件两种介质都满足 CompletionStore。
"""

from collections.abc import Mapping
from datetime import datetime
from typing import Any, Protocol

from ..models.enums import PriorityLevel
from ..models.snapshot import CompletedSnapshot
from .retention import RetentionPolicy


class CompletionStore(Protocol):
    """已完成快照存储接口

    以 (source, original_id) 为 key 的追加偏向 key-value 存储。
    upsert 返回前写入必须已持久化。
    """

    async def get_all(self) -> list[CompletedSnapshot]:
        """返回全部快照（按首次写入顺序）"""
        ...

    async def get(self, source: str, original_id: str) -> CompletedSnapshot | None:
        """按 key 查询单个快照"""
        ...

    async def upsert(
        self,
        snapshot: CompletedSnapshot | Mapping[str, Any],
    ) -> CompletedSnapshot:
        """写入或合并快照；缺少 source/original_id 时抛出 SnapshotValidationError"""
        ...

    async def prune(
        self,
        policy: RetentionPolicy,
        now: datetime | None = None,
    ) -> list[CompletedSnapshot]:
        """删除保留策略拒绝的快照，返回被删除的快照"""
        ...


class PriorityStore(Protocol):
    """任务优先级存储接口"""

    async def get_priority_map(self) -> dict[str, str]:
        """返回 {source::original_id: priority}"""
        ...

    async def set_priority(
        self,
        source: str,
        original_id: str,
        priority: PriorityLevel | str | None,
    ) -> dict[str, str]:
        """设置或清除（priority 为空）优先级，返回更新后的完整 map"""
        ...

    async def rekey(self, previous_key: str, next_key: str) -> bool:
        """身份轮换后把优先级从旧 key 迁到新 key，返回是否迁移"""
        ...
