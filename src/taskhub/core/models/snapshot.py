"""CompletedSnapshot Domain Model

本地"已完成"记录，按 (source, original_id) 唯一。
每次完成动作写入一次，后续相关编辑（如补充备注）覆盖更新，从不删除
（除非配置了保留策略，见 store.retention）。
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .enums import TaskSource
from .task import ProviderExtension, _stringify

# 旧版存储列名 -> 当前字段名
_LEGACY_COLUMNS: dict[str, str] = {
    "originalId": "original_id",
    "completedAt": "completed_at",
    "updatedAt": "updated_at",
    "createdAt": "created_at",
    "locallyCompleted": "locally_completed",
    "pipeline_id": "container_id",
    "pipelineId": "container_id",
    "pipeline_name": "container_name",
    "pipelineName": "container_name",
}


class CompletedSnapshot(BaseModel):
    """已完成任务快照

    除基础字段外，provider 专有键通过 extra="allow" 原样保留。
    """

    model_config = ConfigDict(extra="allow")

    source: str = Field(default="", description="任务来源展示名")
    original_id: str = Field(default="", description="provider 原生稳定 ID")
    id: str | None = Field(default=None, description="视图层 ID")
    title: str | None = None
    description: str | None = None
    notes: str | None = None
    status: str | None = None
    locally_completed: bool = True
    container_id: str | None = None
    container_name: str | None = None
    url: str | None = None
    completed_at: datetime | None = None
    updated_at: datetime | None = None
    created_at: datetime | None = None
    extension: ProviderExtension | None = None

    @model_validator(mode="before")
    @classmethod
    def _map_legacy_columns(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        mapped = dict(data)
        for legacy, current in _LEGACY_COLUMNS.items():
            if legacy in mapped:
                value = mapped.pop(legacy)
                if mapped.get(current) in (None, ""):
                    mapped[current] = value
        # 旧版 GitHub 快照把仓库名放在 repo 列里
        if mapped.get("container_name") in (None, "") and mapped.get("repo"):
            mapped["container_name"] = mapped["repo"]
        # 无法识别的来源归为 Other，原始文本保留在 source_label
        label = TaskSource.unrecognized_label(mapped.get("source"))
        if label:
            mapped.setdefault("source_label", label)
        return mapped

    @field_validator("source", mode="before")
    @classmethod
    def _coerce_source(cls, value: Any) -> Any:
        # 空来源保留为空，交给 store 校验拒绝；其余统一为 TaskSource 展示名
        if value is None or str(value).strip() == "":
            return ""
        return TaskSource.coerce(value).value

    @field_validator("original_id", mode="before")
    @classmethod
    def _coerce_original_id(cls, value: Any) -> Any:
        if value is None:
            return ""
        return str(_stringify(value)).strip()

    @field_validator("id", "container_id", mode="before")
    @classmethod
    def _coerce_ids(cls, value: Any) -> Any:
        return _stringify(value)

    @field_validator("notes", "title", mode="before")
    @classmethod
    def _coerce_text(cls, value: Any) -> Any:
        if value is None or isinstance(value, str):
            return value
        return str(value)
