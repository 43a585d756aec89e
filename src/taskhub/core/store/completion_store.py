"""CompletionStore SQLite 实现

completed_tasks 表以 task_key（source::original_id）唯一，
payload 列保存完整快照 JSON（含 provider 专有字段）。
"""

import asyncio
from collections.abc import Mapping
from datetime import UTC, datetime
from typing import Any

import aiosqlite
import structlog

from ..identity import build_task_key
from ..models.snapshot import CompletedSnapshot
from .retention import RetentionPolicy
from .snapshot_merge import merge_snapshot, snapshot_key, validate_snapshot

log = structlog.get_logger()


class SqliteCompletionStore:
    """CompletionStore 的 SQLite 实现"""

    def __init__(
        self,
        conn: aiosqlite.Connection,
        write_lock: asyncio.Lock | None = None,
    ) -> None:
        self._conn = conn
        # 共享连接上的写事务需要串行化，避免 A 的 commit 带上 B 的半截写入
        self._write_lock = write_lock or asyncio.Lock()

    async def get_all(self) -> list[CompletedSnapshot]:
        """返回全部快照，按首次插入顺序"""
        cursor = await self._conn.execute(
            "SELECT payload FROM completed_tasks ORDER BY seq ASC",
        )
        rows = await cursor.fetchall()
        return [self._row_to_snapshot(row) for row in rows]

    async def get(self, source: str, original_id: str) -> CompletedSnapshot | None:
        """按 key 查询单个快照"""
        return await self._get_by_key(build_task_key(source, original_id))

    async def upsert(
        self,
        snapshot: CompletedSnapshot | Mapping[str, Any],
    ) -> CompletedSnapshot:
        """写入或合并快照，事务提交后返回合并结果"""
        incoming = validate_snapshot(snapshot)
        key = snapshot_key(incoming)

        async with self._write_lock:
            existing = await self._get_by_key(key)
            merged = merge_snapshot(existing, incoming, datetime.now(UTC))
            try:
                await self._conn.execute(
                    """
                    INSERT INTO completed_tasks (task_key, source, original_id,
                                                 created_at, updated_at, completed_at, payload)
                    VALUES (?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT(task_key) DO UPDATE SET
                        updated_at = excluded.updated_at,
                        completed_at = excluded.completed_at,
                        payload = excluded.payload
                    """,
                    (
                        key,
                        merged.source,
                        merged.original_id,
                        merged.created_at.isoformat(),
                        merged.updated_at.isoformat(),
                        merged.completed_at.isoformat(),
                        merged.model_dump_json(),
                    ),
                )
                await self._conn.commit()
            except Exception:
                await self._conn.rollback()
                raise

        log.info(
            "completed_snapshot_upserted",
            task_key=key,
            created=existing is None,
        )
        return merged

    async def prune(
        self,
        policy: RetentionPolicy,
        now: datetime | None = None,
    ) -> list[CompletedSnapshot]:
        """删除保留策略拒绝的快照"""
        reference = now or datetime.now(UTC)
        async with self._write_lock:
            expired = [
                snapshot
                for snapshot in await self.get_all()
                if not policy.should_keep(snapshot, reference)
            ]
            if not expired:
                return []
            try:
                await self._conn.executemany(
                    "DELETE FROM completed_tasks WHERE task_key = ?",
                    [(snapshot_key(snapshot),) for snapshot in expired],
                )
                await self._conn.commit()
            except Exception:
                await self._conn.rollback()
                raise

        log.info("completed_snapshots_pruned", count=len(expired), policy=repr(policy))
        return expired

    async def _get_by_key(self, key: str) -> CompletedSnapshot | None:
        cursor = await self._conn.execute(
            "SELECT payload FROM completed_tasks WHERE task_key = ?",
            (key,),
        )
        row = await cursor.fetchone()
        if row is None:
            return None
        return self._row_to_snapshot(row)

    @staticmethod
    def _row_to_snapshot(row: aiosqlite.Row) -> CompletedSnapshot:
        """数据库行转换为 CompletedSnapshot"""
        return CompletedSnapshot.model_validate_json(row["payload"])
