"""PriorityStore SQLite 实现

task_priorities 表以 task_key（source::original_id）为主键，
与完成快照互不相关，只在对账之后 join 进输出。
"""

import asyncio
from datetime import UTC, datetime

import aiosqlite
import structlog

from ..identity import build_task_key, split_task_key
from ..models.enums import PriorityLevel, TaskSource
from .exceptions import PriorityValidationError

log = structlog.get_logger()


def _normalize_priority(priority: PriorityLevel | str | None) -> PriorityLevel | None:
    if priority is None:
        return None
    value = str(priority).strip().lower()
    if not value:
        return None
    try:
        return PriorityLevel(value)
    except ValueError:
        raise PriorityValidationError(
            "Invalid priority. Must be high, medium, or low."
        ) from None


class SqlitePriorityStore:
    """PriorityStore 的 SQLite 实现"""

    def __init__(
        self,
        conn: aiosqlite.Connection,
        write_lock: asyncio.Lock | None = None,
    ) -> None:
        self._conn = conn
        self._write_lock = write_lock or asyncio.Lock()

    async def get_priority_map(self) -> dict[str, str]:
        """返回 {source::original_id: priority}"""
        cursor = await self._conn.execute(
            "SELECT task_key, priority FROM task_priorities ORDER BY task_key",
        )
        rows = await cursor.fetchall()
        return {row["task_key"]: row["priority"] for row in rows}

    async def set_priority(
        self,
        source: str,
        original_id: str,
        priority: PriorityLevel | str | None,
    ) -> dict[str, str]:
        """设置优先级；priority 为空时删除该条目"""
        source = (source or "").strip()
        original_id = (original_id or "").strip()
        if not source or not original_id:
            raise PriorityValidationError("Missing required fields: source, original_id")
        level = _normalize_priority(priority)
        key = build_task_key(TaskSource.coerce(source), original_id)

        async with self._write_lock:
            try:
                if level is None:
                    await self._conn.execute(
                        "DELETE FROM task_priorities WHERE task_key = ?",
                        (key,),
                    )
                else:
                    await self._conn.execute(
                        """
                        INSERT INTO task_priorities (task_key, source, original_id,
                                                     priority, updated_at)
                        VALUES (?, ?, ?, ?, ?)
                        ON CONFLICT(task_key) DO UPDATE SET
                            priority = excluded.priority,
                            updated_at = excluded.updated_at
                        """,
                        (
                            key,
                            TaskSource.coerce(source).value,
                            original_id,
                            level.value,
                            datetime.now(UTC).isoformat(),
                        ),
                    )
                await self._conn.commit()
            except Exception:
                await self._conn.rollback()
                raise

        log.info(
            "task_priority_updated",
            task_key=key,
            priority=level.value if level else None,
        )
        return await self.get_priority_map()

    async def rekey(self, previous_key: str, next_key: str) -> bool:
        """任务身份轮换后把优先级迁到新 key

        新 key 已有优先级时以新 key 为准；返回是否发生了迁移。
        """
        if previous_key == next_key:
            return False
        next_source, next_original_id = split_task_key(next_key)

        async with self._write_lock:
            try:
                cursor = await self._conn.execute(
                    """
                    INSERT INTO task_priorities (task_key, source, original_id,
                                                 priority, updated_at)
                    SELECT ?, ?, ?, priority, ?
                    FROM task_priorities WHERE task_key = ?
                    ON CONFLICT(task_key) DO NOTHING
                    """,
                    (
                        next_key,
                        next_source,
                        next_original_id,
                        datetime.now(UTC).isoformat(),
                        previous_key,
                    ),
                )
                moved = cursor.rowcount > 0
                await self._conn.execute(
                    "DELETE FROM task_priorities WHERE task_key = ?",
                    (previous_key,),
                )
                await self._conn.commit()
            except Exception:
                await self._conn.rollback()
                raise

        if moved:
            log.info("task_priority_rekeyed", previous_key=previous_key, next_key=next_key)
        return moved
