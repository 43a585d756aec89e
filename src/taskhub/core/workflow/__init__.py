"""TaskHub Core Workflow -- 完成流程状态机与编排"""

from .orchestrator import CompletionWorkflow, WorkflowTransitionError
from .plans import COMPLETED_CONTAINER_NAMES, CompletionPlan, PlanError, build_plan
from .protocols import BoardGateway, IssueTrackerGateway, TodoListGateway

__all__ = [
    "CompletionWorkflow",
    "WorkflowTransitionError",
    "CompletionPlan",
    "PlanError",
    "build_plan",
    "COMPLETED_CONTAINER_NAMES",
    "IssueTrackerGateway",
    "TodoListGateway",
    "BoardGateway",
]
