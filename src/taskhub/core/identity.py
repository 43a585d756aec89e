"""任务身份解析

为任意任务记录推导 provider 稳定的 original_id，并与来源组合成规范 key。
纯函数，无 I/O、无状态、不抛异常：无法解析时返回空字符串。
"""

import re
from collections.abc import Mapping
from typing import Any

from pydantic import BaseModel

from .models.enums import SOURCE_ID_PREFIXES, TaskSource

KEY_SEPARATOR = "::"
UNKNOWN_SOURCE = "Unknown"

# 扩展字段 -> 旧版扁平字段名
_LEGACY_NATIVE_FIELDS: dict[str, tuple[str, ...]] = {
    "task_id": ("googleTaskId",),
    "list_id": ("googleTaskListId", "trelloListId"),
    "card_id": ("trelloCardId",),
    "action_item_id": ("fellowActionId",),
}

# 每个来源按优先级尝试的原生字段
_NATIVE_ID_FIELDS: dict[TaskSource, tuple[str, ...]] = {
    TaskSource.TODO_LIST: ("task_id",),
    TaskSource.BOARD: ("card_id",),
    TaskSource.ACTION_ITEMS: ("action_item_id", "card_id"),
}

_UNSAFE_ID_CHARS = re.compile(r"[^a-zA-Z0-9]")


def _present(value: Any) -> bool:
    return value is not None and value != ""


def _field(record: Any, name: str) -> Any:
    if isinstance(record, Mapping):
        return record.get(name)
    if isinstance(record, BaseModel):
        if name in type(record).model_fields:
            return getattr(record, name)
        return (record.model_extra or {}).get(name)
    return getattr(record, name, None)


def native_field(record: Any, name: str) -> Any:
    """读取 provider 原生字段：先查 extension，再查扁平字段（含旧版字段名）"""
    extension = _field(record, "extension")
    if extension is not None:
        value = _field(extension, name)
        if _present(value):
            return value
    value = _field(record, name)
    if _present(value):
        return value
    for legacy in _LEGACY_NATIVE_FIELDS.get(name, ()):
        value = _field(record, legacy)
        if _present(value):
            return value
    return None


def _strip_prefix(value: str, prefix: str) -> str:
    if value.startswith(prefix) and len(value) > len(prefix):
        return value[len(prefix) :]
    return value


def derive_original_id(record: Any) -> str:
    """推导 provider 稳定 ID

    规则（按顺序，第一个非空者胜出）：
    1. 显式 original_id
    2. provider 原生字段（GitHub: issue_id > repo#number > number）
    3. 去掉来源前缀的视图 id
    4. 原始视图 id
    5. 空字符串（无法解析）

    Args:
        record: TaskRecord / CompletedSnapshot / dict

    Returns:
        original_id 字符串，无法解析时为 ""
    """
    if record is None:
        return ""

    explicit = _field(record, "original_id")
    if not _present(explicit) and isinstance(record, Mapping):
        explicit = record.get("originalId")
    if _present(explicit):
        return str(explicit)

    source = TaskSource.coerce(_field(record, "source"))

    if source == TaskSource.ISSUE_TRACKER:
        issue_id = native_field(record, "issue_id")
        if _present(issue_id):
            return str(issue_id)
        issue_number = native_field(record, "issue_number")
        repo = native_field(record, "repo")
        if _present(issue_number) and _present(repo):
            return f"{repo}#{issue_number}"
        if _present(issue_number):
            return str(issue_number)
    else:
        for name in _NATIVE_ID_FIELDS.get(source, ()):
            value = native_field(record, name)
            if _present(value):
                return str(value)

    view_id = _field(record, "id")
    if _present(view_id):
        view_id = str(view_id)
        prefix = SOURCE_ID_PREFIXES.get(source)
        if prefix:
            return _strip_prefix(view_id, prefix)
        return view_id

    return ""


def build_task_key(source: TaskSource | str | None, original_id: str | None) -> str:
    """构造规范 key：`{source}::{original_id}`

    source 取值不含分隔符，因此 key 对 (source, original_id) 单射。
    """
    normalized_source = str(source) if _present(source) else UNKNOWN_SOURCE
    normalized_id = "" if original_id is None else str(original_id)
    return f"{normalized_source}{KEY_SEPARATOR}{normalized_id}"


def split_task_key(key: str) -> tuple[str, str]:
    """build_task_key 的逆操作"""
    source, _, original_id = key.partition(KEY_SEPARATOR)
    return source, original_id


def task_key_for(record: Any) -> str:
    """记录的规范 key（来源 + 推导出的 original_id）"""
    source = _field(record, "source")
    if _present(source):
        source = TaskSource.coerce(source)
    return build_task_key(source, derive_original_id(record))


def fallback_task_id(key: str) -> str:
    """由 key 合成确定性的本地 id（非字母数字字符替换为 -）"""
    return f"completed-{_UNSAFE_ID_CHARS.sub('-', key)}"
