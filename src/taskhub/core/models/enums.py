"""枚举定义

包含 TaskSource 来源枚举、WorkflowState 完成流程状态机、FailureKind、PriorityLevel，
以及 VALID_WORKFLOW_TRANSITIONS 合法流转映射和 TERMINAL_WORKFLOW_STATES 终态集合。
"""

from enum import StrEnum


class TaskSource(StrEnum):
    """任务来源 -- 值即展示名称"""

    ISSUE_TRACKER = "GitHub"
    TODO_LIST = "Google Tasks"
    BOARD = "Trello"
    ACTION_ITEMS = "Fellow"
    OTHER = "Other"

    @classmethod
    def coerce(cls, value: object) -> "TaskSource":
        """宽松解析：展示名或枚举名（大小写不敏感），无法识别时归为 OTHER"""
        if isinstance(value, TaskSource):
            return value
        if value is None:
            return cls.OTHER
        text = str(value).strip()
        folded = text.casefold()
        for member in cls:
            if folded == member.value.casefold() or text.upper() == member.name:
                return member
        return cls.OTHER

    @classmethod
    def unrecognized_label(cls, value: object) -> str | None:
        """无法识别、将被归为 OTHER 的原始来源文本；可识别或为空时返回 None"""
        if value is None or isinstance(value, TaskSource):
            return None
        text = str(value).strip()
        if not text or cls.coerce(text) != cls.OTHER or text.upper() == cls.OTHER.name:
            return None
        return text


# 视图 id 前缀（provider normalizer 生成 `{prefix}{native_id}` 形式的 id）
SOURCE_ID_PREFIXES: dict[TaskSource, str] = {
    TaskSource.ISSUE_TRACKER: "github-",
    TaskSource.TODO_LIST: "google-",
    TaskSource.BOARD: "trello-",
    TaskSource.ACTION_ITEMS: "fellow-",
}


class WorkflowState(StrEnum):
    """完成流程状态机"""

    IDLE = "IDLE"
    CONFIRMING = "CONFIRMING"
    EXECUTING = "EXECUTING"
    PERSISTING = "PERSISTING"
    DONE = "DONE"
    FAILED = "FAILED"


VALID_WORKFLOW_TRANSITIONS: dict[WorkflowState, set[WorkflowState]] = {
    WorkflowState.IDLE: {WorkflowState.CONFIRMING},
    # 用户确认后执行，或取消回到 IDLE
    WorkflowState.CONFIRMING: {WorkflowState.EXECUTING, WorkflowState.IDLE},
    WorkflowState.EXECUTING: {WorkflowState.PERSISTING, WorkflowState.FAILED},
    WorkflowState.PERSISTING: {WorkflowState.DONE, WorkflowState.FAILED},
    # 失败不回滚远端副作用，控制权交还给用户（重试或取消）
    WorkflowState.FAILED: {WorkflowState.CONFIRMING},
    WorkflowState.DONE: set(),
}

TERMINAL_WORKFLOW_STATES: set[WorkflowState] = {WorkflowState.DONE}

# 执行中的状态：同一 key 的第二次尝试必须被拒绝
IN_FLIGHT_WORKFLOW_STATES: set[WorkflowState] = {
    WorkflowState.EXECUTING,
    WorkflowState.PERSISTING,
}


class WorkflowStep(StrEnum):
    """完成流程中的单个远端（或本地）步骤，每步可独立重试"""

    POST_COMMENT = "post_comment"
    CLOSE_ISSUE = "close_issue"
    RELABEL = "relabel"
    COPY_TO_COMPLETED = "copy_to_completed"
    DELETE_ORIGINAL = "delete_original"
    MOVE_CARD = "move_card"


class FailureKind(StrEnum):
    """流程失败分类"""

    CONFIGURATION = "configuration"
    VALIDATION = "validation"
    REMOTE = "remote"
    PERSISTENCE = "persistence"
    BUSY = "busy"


class PriorityLevel(StrEnum):
    """任务优先级"""

    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


def validate_workflow_transition(
    from_state: WorkflowState, to_state: WorkflowState
) -> bool:
    """验证完成流程状态流转是否合法

    Args:
        from_state: 当前状态
        to_state: 目标状态

    Returns:
        True 如果流转合法，否则 False
    """
    allowed = VALID_WORKFLOW_TRANSITIONS.get(from_state, set())
    return to_state in allowed
