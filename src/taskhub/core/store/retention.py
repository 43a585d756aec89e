"""快照保留策略

默认永久保留；配置 TASKHUB_SNAPSHOT_RETENTION_DAYS > 0 时按完成时间淘汰。
"""

from datetime import datetime, timedelta
from typing import Protocol

from ..models.snapshot import CompletedSnapshot
from .snapshot_merge import ensure_utc


class RetentionPolicy(Protocol):
    """保留策略：返回 False 的快照在 prune 时删除"""

    def should_keep(self, snapshot: CompletedSnapshot, now: datetime) -> bool: ...


class KeepForever:
    """永久保留（默认）"""

    def should_keep(self, snapshot: CompletedSnapshot, now: datetime) -> bool:
        return True

    def __repr__(self) -> str:
        return "KeepForever()"


class MaxAge:
    """按年龄淘汰：参考时间 completed_at > updated_at > created_at，都缺失时保留"""

    def __init__(self, days: int) -> None:
        if days <= 0:
            raise ValueError("MaxAge requires a positive number of days")
        self.max_age = timedelta(days=days)

    def should_keep(self, snapshot: CompletedSnapshot, now: datetime) -> bool:
        reference = snapshot.completed_at or snapshot.updated_at or snapshot.created_at
        if reference is None:
            return True
        return ensure_utc(now) - ensure_utc(reference) <= self.max_age

    def __repr__(self) -> str:
        return f"MaxAge(days={self.max_age.days})"


def policy_from_days(days: int) -> RetentionPolicy:
    """由配置天数构造策略，0 表示永久保留"""
    if days > 0:
        return MaxAge(days)
    return KeepForever()
