"""完成流程模型

CompletionAttempt 显式记录一次完成尝试的状态与已完成步骤，
失败后重试从第一个未完成步骤继续，而不是从头再来。
"""

from datetime import datetime

from pydantic import BaseModel, Field

from .enums import FailureKind, WorkflowState, WorkflowStep
from .task import TaskRecord


class WorkflowFailure(BaseModel):
    """流程失败（以值返回给调用方，不向上抛出）"""

    kind: FailureKind
    message: str = Field(description="面向用户的错误描述")
    step: WorkflowStep | None = Field(default=None, description="失败所在步骤")


class IdentityRotation(BaseModel):
    """provider 原生 ID 变化事件（如 Google Tasks 跨列表移动）

    同时携带新旧 id，使 UI 侧的乐观状态能在一次对账周期内迁移到新 id。
    """

    previous_id: str | None
    previous_key: str
    next_id: str
    next_key: str


class CompletionAttempt(BaseModel):
    """单个任务的一次完成尝试"""

    task_key: str
    task: TaskRecord = Field(description="发起时的任务记录")
    state: WorkflowState = WorkflowState.IDLE
    plan: list[WorkflowStep] = Field(default_factory=list)
    completed_steps: list[WorkflowStep] = Field(default_factory=list)
    note: str = ""
    # 步骤间传递的中间结果（如移动后新建任务的 id）
    context: dict[str, str] = Field(default_factory=dict)
    failure: WorkflowFailure | None = None
    started_at: datetime | None = None
    finished_at: datetime | None = None

    @property
    def remaining_steps(self) -> list[WorkflowStep]:
        return [step for step in self.plan if step not in self.completed_steps]


class CompletionOutcome(BaseModel):
    """完成流程结果"""

    ok: bool
    state: WorkflowState
    task: TaskRecord | None = Field(default=None, description="完成后的任务记录")
    rotation: IdentityRotation | None = None
    failure: WorkflowFailure | None = None
