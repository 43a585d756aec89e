"""按来源生成完成计划

计划是有序步骤列表；每次确认都从原始任务重新生成，
再跳过已完成步骤，因此重试总是从第一个未完成步骤继续。
"""

from pydantic import BaseModel, Field

from ..identity import native_field
from ..models.enums import FailureKind, TaskSource, WorkflowStep
from ..models.task import ContainerOption, TaskRecord

# 各来源的"已完成"容器名
COMPLETED_CONTAINER_NAMES: dict[TaskSource, str] = {
    TaskSource.TODO_LIST: "Completed tasks",
    TaskSource.BOARD: "Completed",
    TaskSource.ACTION_ITEMS: "Completed",
}


class PlanError(Exception):
    """无法为任务生成计划（缺少标识字段或目标容器）"""

    def __init__(self, message: str, kind: FailureKind = FailureKind.VALIDATION) -> None:
        super().__init__(message)
        self.kind = kind


class CompletionPlan(BaseModel):
    """完成计划"""

    steps: list[WorkflowStep] = Field(default_factory=list)
    target: ContainerOption | None = Field(default=None, description="目标已完成容器")
    current_container_id: str | None = None


def _current_container(task: TaskRecord) -> str | None:
    value = native_field(task, "list_id") or task.container_id
    return str(value) if value else None


def _resolve_target(task: TaskRecord) -> ContainerOption:
    name = COMPLETED_CONTAINER_NAMES[task.source]
    option = task.find_container_option(name)
    if option is None:
        if task.source == TaskSource.TODO_LIST:
            raise PlanError(f'Couldn\'t find a "{name}" list for this Google Task.')
        raise PlanError(f'Couldn\'t find a "{name}" list for this card.')
    return option


def _issue_tracker_plan(task: TaskRecord, note: str) -> CompletionPlan:
    if not native_field(task, "repo") or "/" not in str(native_field(task, "repo")):
        raise PlanError("Unable to determine the GitHub issue to close.")
    if not native_field(task, "issue_number"):
        raise PlanError("Unable to determine the GitHub issue to close.")
    steps = [WorkflowStep.POST_COMMENT] if note else []
    steps.append(WorkflowStep.CLOSE_ISSUE)
    return CompletionPlan(steps=steps)


def _todo_list_plan(task: TaskRecord, note: str) -> CompletionPlan:
    target = _resolve_target(task)
    current = _current_container(task)
    if not native_field(task, "task_id") or not current:
        raise PlanError("Unable to determine the Google Task identifiers to update.")
    if target.id == current:
        steps = [WorkflowStep.RELABEL]
    else:
        steps = [WorkflowStep.COPY_TO_COMPLETED, WorkflowStep.DELETE_ORIGINAL]
    return CompletionPlan(steps=steps, target=target, current_container_id=current)


def _board_plan(task: TaskRecord, note: str) -> CompletionPlan:
    target = _resolve_target(task)
    if not native_field(task, "card_id"):
        raise PlanError("Unable to determine the card to update.")
    current = _current_container(task)
    if target.id == current:
        steps = [WorkflowStep.POST_COMMENT] if note else []
        steps.append(WorkflowStep.RELABEL)
    else:
        steps = [WorkflowStep.MOVE_CARD]
        if note:
            steps.append(WorkflowStep.POST_COMMENT)
    return CompletionPlan(steps=steps, target=target, current_container_id=current)


def build_plan(task: TaskRecord, note: str = "") -> CompletionPlan:
    """生成完成计划

    Raises:
        PlanError: 缺少必要的标识字段或"已完成"容器
    """
    if task.source == TaskSource.ISSUE_TRACKER:
        return _issue_tracker_plan(task, note)
    if task.source == TaskSource.TODO_LIST:
        return _todo_list_plan(task, note)
    if task.source in (TaskSource.BOARD, TaskSource.ACTION_ITEMS):
        return _board_plan(task, note)
    # 其他来源：纯本地完成
    return CompletionPlan()
