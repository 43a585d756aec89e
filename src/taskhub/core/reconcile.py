"""对账引擎

把各 provider 当前返回的 live 记录与本地持久化的"已完成"快照合并为一个有序集合。
纯函数：给定相同输入（及相同的 now）输出确定，按 key 首次出现的顺序排列。

合并规则：
- live 记录之间：后来者的非空字段覆盖，完成相关字段不动
- 快照叠加：locally_completed=True；notes/completed_at 取快照；status 仅在快照定义时覆盖；
  id 保持 live 的 id；描述性字段两侧互为兜底，任何一侧都不会抹掉另一侧已有的字段
"""

from collections.abc import Iterable, Mapping
from datetime import UTC, datetime
from typing import Any

from .identity import build_task_key, derive_original_id, fallback_task_id
from .models.enums import PriorityLevel
from .models.snapshot import CompletedSnapshot
from .models.task import TaskRecord

COMPLETED_LOCALLY_STATUS = "Completed locally"

_PRIORITY_VALUES = frozenset(level.value for level in PriorityLevel)

# live 记录合并阶段不触碰的完成字段
_COMPLETION_FIELDS = frozenset({"locally_completed", "completed_at", "notes"})

# 快照优先，缺失时回退到 live
_OVERLAY_FIRST_FIELDS = ("container_id", "container_name")

# live 优先，缺失时回退到快照
_LIVE_FIRST_FIELDS = ("title", "description", "url", "container_options")

_OVERLAY_HANDLED_FIELDS = frozenset(
    {"id", "original_id", "source", "status", *_COMPLETION_FIELDS}
    | set(_OVERLAY_FIRST_FIELDS)
    | set(_LIVE_FIRST_FIELDS)
)


def _present(value: Any) -> bool:
    return value is not None and value != "" and value != [] and value != {}


def _as_record(value: TaskRecord | Mapping[str, Any]) -> TaskRecord:
    if isinstance(value, TaskRecord):
        return value
    return TaskRecord.model_validate(dict(value))


def normalize_snapshot(snapshot: CompletedSnapshot | Mapping[str, Any]) -> TaskRecord:
    """把快照映射为 TaskRecord 形状的叠加层

    只包含快照里实际出现的字段（model_fields_set 可用于判断"是否定义了 notes"），
    status 原样保留（缺失即缺失，由 merge 决定兜底），缺少描述时由所在容器合成。
    """
    if not isinstance(snapshot, CompletedSnapshot):
        snapshot = CompletedSnapshot.model_validate(dict(snapshot))

    data = snapshot.model_dump(exclude_unset=True)
    data["locally_completed"] = True
    container_name = data.get("container_name")
    if not _present(data.get("description")) and _present(container_name):
        data["description"] = f"Completed in {container_name}"
    return TaskRecord.model_validate(data)


def _merge_live(existing: TaskRecord, incoming: TaskRecord) -> TaskRecord:
    """同一 key 的 live 记录浅合并：新记录的非空字段胜出"""
    merged = existing.model_dump()
    for name, value in incoming.model_dump().items():
        if name in _COMPLETION_FIELDS or not _present(value):
            continue
        merged[name] = value
    return TaskRecord.model_validate(merged)


def _apply_overlay(existing: TaskRecord, overlay: TaskRecord, now: datetime) -> TaskRecord:
    """把完成快照叠加到已有条目上"""
    merged = existing.model_dump()
    overlay_data = overlay.model_dump()

    merged["locally_completed"] = True
    if _present(overlay.status):
        merged["status"] = overlay.status
    elif not _present(existing.status):
        merged["status"] = COMPLETED_LOCALLY_STATUS
    merged["completed_at"] = overlay.completed_at or existing.completed_at or now
    if "notes" in overlay.model_fields_set:
        merged["notes"] = overlay.notes

    # live 已有 id 时保持不变
    if not _present(existing.id):
        merged["id"] = overlay.id

    for name in _OVERLAY_FIRST_FIELDS:
        if _present(overlay_data.get(name)):
            merged[name] = overlay_data[name]

    for name in _LIVE_FIRST_FIELDS:
        if not _present(merged.get(name)) and _present(overlay_data.get(name)):
            merged[name] = overlay_data[name]

    # 其余字段（extension、priority、未知 extra 键）：只补缺，不覆盖
    for name, value in overlay_data.items():
        if name in _OVERLAY_HANDLED_FIELDS:
            continue
        if not _present(merged.get(name)) and _present(value):
            merged[name] = value

    return TaskRecord.model_validate(merged)


class _KeyAllocator:
    """为记录计算合并 key；无法解析身份的记录获得唯一的本地身份，永不参与合并"""

    def __init__(self) -> None:
        self._taken: set[str] = set()

    def identify(self, record: TaskRecord) -> tuple[str, TaskRecord]:
        original_id = derive_original_id(record)
        if original_id:
            key = build_task_key(record.source, original_id)
            self._taken.add(key)
            if record.original_id != original_id:
                record = record.model_copy(update={"original_id": original_id})
            return key, record

        base_id = fallback_task_id(build_task_key(record.source, ""))
        local_id = base_id
        suffix = 0
        while build_task_key(record.source, local_id) in self._taken:
            suffix += 1
            local_id = f"{base_id}-{suffix}"
        key = build_task_key(record.source, local_id)
        self._taken.add(key)
        return key, record.model_copy(update={"id": local_id, "original_id": local_id})


def merge(
    live_records: Iterable[TaskRecord | Mapping[str, Any]],
    completed_snapshots: Iterable[CompletedSnapshot | Mapping[str, Any]],
    *,
    now: datetime | None = None,
) -> list[TaskRecord]:
    """合并 live 记录与已完成快照

    Args:
        live_records: 所有 provider 本轮返回的记录（按输入顺序）
        completed_snapshots: Completion Store 中的全部快照
        now: 合并时间（快照和已有条目都没有完成时间时使用），默认当前 UTC 时间

    Returns:
        按 key 首次出现顺序排列的 TaskRecord 列表
    """
    merge_time = now or datetime.now(UTC)
    allocator = _KeyAllocator()
    entries: dict[str, TaskRecord] = {}

    for raw in live_records:
        key, record = allocator.identify(_as_record(raw))
        if key in entries:
            entries[key] = _merge_live(entries[key], record)
        else:
            entries[key] = record

    for snapshot in completed_snapshots:
        key, overlay = allocator.identify(normalize_snapshot(snapshot))
        if key in entries:
            merged = _apply_overlay(entries[key], overlay, merge_time)
        else:
            # provider 已不再返回的任务：仍以已完成状态出现在结果中
            merged = overlay
            updates: dict[str, Any] = {}
            if not _present(merged.status):
                updates["status"] = COMPLETED_LOCALLY_STATUS
            if merged.completed_at is None:
                updates["completed_at"] = merge_time
            if updates:
                merged = merged.model_copy(update=updates)
        if not _present(merged.id):
            merged = merged.model_copy(update={"id": fallback_task_id(key)})
        entries[key] = merged

    return list(entries.values())


def attach_priorities(
    records: Iterable[TaskRecord],
    priority_map: Mapping[str, str],
) -> list[TaskRecord]:
    """对账完成后按 (source, original_id) join 优先级"""
    result: list[TaskRecord] = []
    for record in records:
        key = build_task_key(record.source, record.original_id or derive_original_id(record))
        value = priority_map.get(key)
        if value in _PRIORITY_VALUES:
            record = record.model_copy(update={"priority": PriorityLevel(value)})
        result.append(record)
    return result
