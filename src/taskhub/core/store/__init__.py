"""TaskHub Core Store -- 完成快照与优先级持久化

提供工厂函数创建共享数据库连接的 Store 实例组。
完成快照可选 SQLite（默认）或 JSON 文件介质，优先级始终存 SQLite。
"""

import asyncio
from pathlib import Path

import aiosqlite

from .completion_store import SqliteCompletionStore
from .exceptions import PriorityValidationError, SnapshotValidationError
from .json_store import JsonFileCompletionStore
from .priority_store import SqlitePriorityStore
from .protocols import CompletionStore, PriorityStore
from .retention import KeepForever, MaxAge, RetentionPolicy, policy_from_days
from .snapshot_merge import merge_snapshot, validate_snapshot
from .sqlite_init import init_db


class StoreGroup:
    """Store 实例组 -- 共享同一个数据库连接和写锁"""

    def __init__(
        self,
        conn: aiosqlite.Connection,
        backend: str = "sqlite",
        json_path: Path | None = None,
    ) -> None:
        self.conn = conn
        self.backend = backend
        write_lock = asyncio.Lock()
        self.completion_store: CompletionStore
        if backend == "json":
            if json_path is None:
                raise ValueError("json backend requires json_path")
            self.completion_store = JsonFileCompletionStore(json_path)
        else:
            self.completion_store = SqliteCompletionStore(conn, write_lock)
        self.priority_store: PriorityStore = SqlitePriorityStore(conn, write_lock)

    async def close(self) -> None:
        await self.conn.close()


async def create_store_group(
    db_path: str,
    backend: str = "sqlite",
    json_path: str | Path | None = None,
) -> StoreGroup:
    """创建 Store 实例组

    Args:
        db_path: SQLite 数据库文件路径
        backend: 完成快照介质，sqlite 或 json
        json_path: json 介质的文件路径

    Returns:
        StoreGroup 实例
    """
    # 确保数据库目录存在
    db_dir = Path(db_path).parent
    db_dir.mkdir(parents=True, exist_ok=True)

    conn = await aiosqlite.connect(db_path)
    conn.row_factory = aiosqlite.Row
    await init_db(conn)

    return StoreGroup(
        conn=conn,
        backend=backend,
        json_path=Path(json_path) if json_path is not None else None,
    )


__all__ = [
    "StoreGroup",
    "create_store_group",
    "CompletionStore",
    "PriorityStore",
    "SqliteCompletionStore",
    "JsonFileCompletionStore",
    "SqlitePriorityStore",
    "SnapshotValidationError",
    "PriorityValidationError",
    "RetentionPolicy",
    "KeepForever",
    "MaxAge",
    "policy_from_days",
    "merge_snapshot",
    "validate_snapshot",
    "init_db",
]
