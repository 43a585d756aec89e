"""TaskRecord Domain Model

TaskRecord 是每次对账（reconciliation）时合成的统一任务视图，本身从不持久化；
只有 CompletedSnapshot 会被落盘。

Provider 专有字段使用带 `kind` 判别字段的 tagged union（extension），
引擎自身只读写共享基础字段；其他未知字段通过 extra="allow" 原样保留。
"""

from datetime import datetime
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .enums import PriorityLevel, TaskSource


def _stringify(value: Any) -> Any:
    """数字 id 统一转成字符串（GitHub issue id 等为整数）"""
    if isinstance(value, bool):
        return value
    if isinstance(value, int | float):
        return str(value)
    return value


class ContainerOption(BaseModel):
    """任务可移动到的候选容器（列表 / 看板列 / 仓库）"""

    id: str = Field(description="容器 ID")
    name: str = Field(default="", description="容器名称")

    @field_validator("id", mode="before")
    @classmethod
    def _coerce_id(cls, value: Any) -> Any:
        return _stringify(value)


class IssueTrackerData(BaseModel):
    """GitHub issue 专有字段"""

    kind: Literal["issue_tracker"] = "issue_tracker"
    issue_id: str | None = Field(default=None, description="全局稳定的 issue 数字 ID")
    repo: str | None = Field(default=None, description="owner/name")
    issue_number: int | None = Field(default=None, description="仓库内 issue 编号")

    @field_validator("issue_id", mode="before")
    @classmethod
    def _coerce_issue_id(cls, value: Any) -> Any:
        return _stringify(value)


class TodoListData(BaseModel):
    """Google Tasks 专有字段

    task_id 在跨列表移动时会变化（移动 = 新建 + 删除）。
    """

    kind: Literal["todo_list"] = "todo_list"
    task_id: str | None = None
    list_id: str | None = None


class BoardData(BaseModel):
    """Trello 卡片专有字段"""

    kind: Literal["board"] = "board"
    card_id: str | None = None
    list_id: str | None = None
    board_id: str | None = None


class ActionItemsData(BaseModel):
    """Fellow action item 专有字段

    Fellow action item 以卡片形式同步在专用 Trello 看板上，因此同时携带卡片字段。
    """

    kind: Literal["action_items"] = "action_items"
    action_item_id: str | None = None
    card_id: str | None = None
    list_id: str | None = None
    board_id: str | None = None


ProviderExtension = Annotated[
    IssueTrackerData | TodoListData | BoardData | ActionItemsData,
    Field(discriminator="kind"),
]


class TaskRecord(BaseModel):
    """统一任务记录

    (source, original_id) 永久唯一标识一个逻辑任务；id 是视图层使用的标识，
    对于移动即换 id 的 provider 可能变化。
    """

    model_config = ConfigDict(extra="allow")

    source: TaskSource = Field(default=TaskSource.OTHER, description="任务来源")
    original_id: str | None = Field(default=None, description="provider 原生稳定 ID")
    id: str | None = Field(default=None, description="视图层 ID")
    title: str | None = None
    description: str | None = None
    url: str | None = None
    container_id: str | None = Field(default=None, description="当前所在容器 ID")
    container_name: str | None = Field(default=None, description="当前所在容器名称")
    container_options: list[ContainerOption] = Field(
        default_factory=list,
        description="可移动到的候选容器（有序、按 id 去重）",
    )
    status: str | None = Field(default=None, description="provider 状态文本")
    locally_completed: bool = Field(default=False, description="是否已叠加本地完成记录")
    completed_at: datetime | None = None
    notes: str | None = None
    priority: PriorityLevel | None = Field(default=None, description="对账后 join 的优先级")
    due: str | None = None
    extension: ProviderExtension | None = Field(default=None, description="provider 专有字段")

    @model_validator(mode="before")
    @classmethod
    def _keep_source_label(cls, data: Any) -> Any:
        if isinstance(data, dict):
            label = TaskSource.unrecognized_label(data.get("source"))
            if label and "source_label" not in data:
                data = {**data, "source_label": label}
        return data

    @field_validator("source", mode="before")
    @classmethod
    def _coerce_source(cls, value: Any) -> TaskSource:
        return TaskSource.coerce(value)

    @field_validator("original_id", "id", "container_id", mode="before")
    @classmethod
    def _coerce_ids(cls, value: Any) -> Any:
        return _stringify(value)

    @field_validator("container_options", mode="after")
    @classmethod
    def _dedupe_options(cls, value: list[ContainerOption]) -> list[ContainerOption]:
        seen: set[str] = set()
        options: list[ContainerOption] = []
        for option in value:
            if not option.id or option.id in seen:
                continue
            seen.add(option.id)
            options.append(option)
        return options

    def find_container_option(self, name: str) -> ContainerOption | None:
        """按名称（忽略大小写和首尾空白）查找候选容器"""
        target = name.strip().lower()
        for option in self.container_options:
            if option.name.strip().lower() == target:
                return option
        return None
