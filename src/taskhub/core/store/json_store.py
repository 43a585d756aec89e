"""CompletionStore JSON 文件实现

整个快照集合以 JSON 数组保存在单个文件中。
写入先落临时文件并 fsync，再原子 rename 覆盖，进程中途崩溃不会留下半截文件。
"""

import asyncio
import json
import os
from collections.abc import Mapping
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import structlog

from ..models.snapshot import CompletedSnapshot
from .retention import RetentionPolicy
from .snapshot_merge import merge_snapshot, snapshot_key, validate_snapshot

log = structlog.get_logger()


class JsonFileCompletionStore:
    """CompletionStore 的 JSON 文件实现"""

    def __init__(self, file_path: str | Path) -> None:
        self._path = Path(file_path)
        self._lock = asyncio.Lock()

    @property
    def path(self) -> Path:
        return self._path

    async def get_all(self) -> list[CompletedSnapshot]:
        """读取全部快照；文件不存在或已损坏时视为空集合"""
        return self._read()

    async def get(self, source: str, original_id: str) -> CompletedSnapshot | None:
        target = CompletedSnapshot(source=source, original_id=original_id)
        key = snapshot_key(target)
        for snapshot in self._read():
            if snapshot_key(snapshot) == key:
                return snapshot
        return None

    async def upsert(
        self,
        snapshot: CompletedSnapshot | Mapping[str, Any],
    ) -> CompletedSnapshot:
        """写入或合并快照，rename 完成后返回合并结果"""
        incoming = validate_snapshot(snapshot)
        key = snapshot_key(incoming)

        async with self._lock:
            snapshots = self._read()
            index = next(
                (i for i, item in enumerate(snapshots) if snapshot_key(item) == key),
                None,
            )
            existing = snapshots[index] if index is not None else None
            merged = merge_snapshot(existing, incoming, datetime.now(UTC))
            if index is None:
                snapshots.append(merged)
            else:
                snapshots[index] = merged
            self._write(snapshots)

        log.info(
            "completed_snapshot_upserted",
            task_key=key,
            created=existing is None,
            medium="json",
        )
        return merged

    async def prune(
        self,
        policy: RetentionPolicy,
        now: datetime | None = None,
    ) -> list[CompletedSnapshot]:
        reference = now or datetime.now(UTC)
        async with self._lock:
            kept: list[CompletedSnapshot] = []
            expired: list[CompletedSnapshot] = []
            for snapshot in self._read():
                if policy.should_keep(snapshot, reference):
                    kept.append(snapshot)
                else:
                    expired.append(snapshot)
            if expired:
                self._write(kept)

        if expired:
            log.info(
                "completed_snapshots_pruned",
                count=len(expired),
                policy=repr(policy),
                medium="json",
            )
        return expired

    def _read(self) -> list[CompletedSnapshot]:
        if not self._path.exists():
            return []
        try:
            raw = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            log.warning(
                "completed_store_read_failed",
                path=str(self._path),
                error=str(e),
            )
            return []
        if not isinstance(raw, list):
            log.warning("completed_store_not_a_list", path=str(self._path))
            return []

        snapshots: list[CompletedSnapshot] = []
        for item in raw:
            if not isinstance(item, dict):
                continue
            try:
                snapshots.append(CompletedSnapshot.model_validate(item))
            except ValueError as e:
                log.warning("completed_store_entry_skipped", error=str(e))
        return snapshots

    def _write(self, snapshots: list[CompletedSnapshot]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        payload = json.dumps(
            [snapshot.model_dump(mode="json") for snapshot in snapshots],
            ensure_ascii=False,
            indent=2,
        )
        tmp_path = self._path.with_name(f"{self._path.name}.tmp")
        with tmp_path.open("w", encoding="utf-8") as fh:
            fh.write(payload)
            fh.flush()
            os.fsync(fh.fileno())
        os.replace(tmp_path, self._path)
