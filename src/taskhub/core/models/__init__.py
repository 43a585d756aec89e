"""taskhub Core Domain Models -- 公共类型导出

所有公共模型类型从此入口导入。
"""

from .enums import (
    IN_FLIGHT_WORKFLOW_STATES,
    SOURCE_ID_PREFIXES,
    TERMINAL_WORKFLOW_STATES,
    VALID_WORKFLOW_TRANSITIONS,
    FailureKind,
    PriorityLevel,
    TaskSource,
    WorkflowState,
    WorkflowStep,
    validate_workflow_transition,
)
from .snapshot import CompletedSnapshot
from .task import (
    ActionItemsData,
    BoardData,
    ContainerOption,
    IssueTrackerData,
    ProviderExtension,
    TaskRecord,
    TodoListData,
)
from .workflow import (
    CompletionAttempt,
    CompletionOutcome,
    IdentityRotation,
    WorkflowFailure,
)

__all__ = [
    # 枚举
    "TaskSource",
    "SOURCE_ID_PREFIXES",
    "WorkflowState",
    "WorkflowStep",
    "FailureKind",
    "PriorityLevel",
    # 状态机
    "VALID_WORKFLOW_TRANSITIONS",
    "TERMINAL_WORKFLOW_STATES",
    "IN_FLIGHT_WORKFLOW_STATES",
    "validate_workflow_transition",
    # TaskRecord
    "TaskRecord",
    "ContainerOption",
    "ProviderExtension",
    "IssueTrackerData",
    "TodoListData",
    "BoardData",
    "ActionItemsData",
    # Snapshot
    "CompletedSnapshot",
    # Workflow
    "CompletionAttempt",
    "CompletionOutcome",
    "IdentityRotation",
    "WorkflowFailure",
]
