"""快照 upsert 合并规则（与存储介质无关）

- 已存在：新快照浅合并覆盖旧快照，保留原 created_at，updated_at 推进到 now，
  completed_at 取新值 -> 旧值 -> now
- 不存在：created_at/updated_at 均为 now，缺 id 时合成确定性 fallback id
"""

from collections.abc import Mapping
from datetime import UTC, datetime, timedelta
from typing import Any

from pydantic import ValidationError

from ..identity import build_task_key, fallback_task_id
from ..models.snapshot import CompletedSnapshot
from .exceptions import SnapshotValidationError

MISSING_KEY_MESSAGE = "Completed task snapshots must include both source and original_id."


def ensure_utc(value: datetime | None) -> datetime | None:
    """无时区的时间按 UTC 处理"""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=UTC)


def validate_snapshot(snapshot: CompletedSnapshot | Mapping[str, Any]) -> CompletedSnapshot:
    """校验快照，缺少 source/original_id 时抛出 SnapshotValidationError"""
    if isinstance(snapshot, CompletedSnapshot):
        validated = snapshot
    elif isinstance(snapshot, Mapping):
        try:
            validated = CompletedSnapshot.model_validate(dict(snapshot))
        except ValidationError as e:
            raise SnapshotValidationError(f"Invalid completed task snapshot: {e}") from e
    else:
        raise SnapshotValidationError("A valid completed task snapshot is required.")

    if not validated.source or not validated.original_id:
        raise SnapshotValidationError(MISSING_KEY_MESSAGE)
    return validated


def snapshot_key(snapshot: CompletedSnapshot) -> str:
    return build_task_key(snapshot.source, snapshot.original_id)


def merge_snapshot(
    existing: CompletedSnapshot | None,
    incoming: CompletedSnapshot,
    now: datetime,
) -> CompletedSnapshot:
    """计算 upsert 后的快照

    Args:
        existing: 同 key 的已有快照，不存在为 None
        incoming: 已校验的新快照
        now: 当前时间

    Returns:
        合并后的快照
    """
    key = snapshot_key(incoming)
    now = ensure_utc(now)
    merged: dict[str, Any] = existing.model_dump(exclude_none=True) if existing else {}
    merged.update(incoming.model_dump(exclude_unset=True, exclude_none=True))

    merged["source"] = incoming.source
    merged["original_id"] = incoming.original_id
    merged["id"] = incoming.id or (existing.id if existing else None) or fallback_task_id(key)

    if existing is not None and existing.created_at is not None:
        merged["created_at"] = existing.created_at
        previous = ensure_utc(existing.updated_at)
        # 同 key 并发写时以 updated_at 最后者为准，这里保证严格递增
        if previous is not None and previous >= now:
            now = previous + timedelta(microseconds=1)
    else:
        merged["created_at"] = now
    merged["updated_at"] = now
    merged["completed_at"] = (
        incoming.completed_at or (existing.completed_at if existing else None) or now
    )
    return CompletedSnapshot.model_validate(merged)
