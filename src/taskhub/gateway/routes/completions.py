"""完成流程路由

POST /api/completions: 确认完成一个任务（begin + confirm）。
- 200: 完成成功，返回完成后的任务与可能的身份轮换
- 400: 请求或任务数据不合法
- 409: 同一任务已有完成流程在执行
- 502: 远端 provider 调用失败（已发生的副作用不回滚）
- 503: 集成未配置
- 500: 远端成功但本地保存失败
POST /api/completions/cancel: 取消等待确认或已失败的完成尝试。
"""

from typing import Any

import structlog
from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field, ValidationError
from starlette.responses import JSONResponse
from taskhub.core.identity import build_task_key
from taskhub.core.models import (
    CompletionOutcome,
    FailureKind,
    TaskRecord,
    TaskSource,
    WorkflowState,
)
from taskhub.core.workflow import CompletionWorkflow

from ..deps import get_aggregator, get_workflow
from ..services.aggregator import TaskAggregator

log = structlog.get_logger()

router = APIRouter()

_FAILURE_STATUS: dict[FailureKind, int] = {
    FailureKind.VALIDATION: 400,
    FailureKind.BUSY: 409,
    FailureKind.REMOTE: 502,
    FailureKind.CONFIGURATION: 503,
    FailureKind.PERSISTENCE: 500,
}


class CompletionRequest(BaseModel):
    """完成请求"""

    task: dict[str, Any] = Field(description="待完成的任务记录")
    note: str | None = Field(default=None, description="完成备注")


class CancelCompletionRequest(BaseModel):
    """取消请求"""

    source: str
    original_id: str


def _error_response(status_code: int, code: str, message: str, **extra: Any) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"error": {"code": code, "message": message, **extra}},
    )


def _outcome_response(outcome: CompletionOutcome) -> JSONResponse:
    if outcome.ok:
        return JSONResponse(status_code=200, content=outcome.model_dump(mode="json"))
    failure = outcome.failure
    return _error_response(
        _FAILURE_STATUS.get(failure.kind, 500),
        failure.kind.value.upper(),
        failure.message,
        state=outcome.state.value,
        step=failure.step.value if failure.step else None,
    )


@router.post("/api/completions")
async def complete_task(
    body: CompletionRequest,
    workflow: CompletionWorkflow = Depends(get_workflow),
    aggregator: TaskAggregator = Depends(get_aggregator),
):
    """确认完成任务"""
    try:
        task = TaskRecord.model_validate(body.task)
    except ValidationError as e:
        log.info("completion_request_rejected", errors=e.error_count())
        return _error_response(400, "VALIDATION", f"Invalid task payload: {e.error_count()} error(s)")

    outcome = await workflow.complete(task, body.note)
    if outcome.ok and outcome.rotation is not None:
        aggregator.note_rotation(outcome.rotation)
    return _outcome_response(outcome)


@router.post("/api/completions/cancel")
async def cancel_completion(
    body: CancelCompletionRequest,
    workflow: CompletionWorkflow = Depends(get_workflow),
):
    """取消完成尝试

    - 200: 已取消
    - 404: 没有对应的完成尝试
    - 409: 完成流程正在执行，无法取消
    """
    task_key = build_task_key(TaskSource.coerce(body.source), body.original_id.strip())
    attempt = await workflow.cancel(task_key)
    if attempt is None:
        return _error_response(
            404,
            "ATTEMPT_NOT_FOUND",
            f"No completion attempt exists for {task_key}",
        )
    if attempt.state != WorkflowState.IDLE:
        return _error_response(
            409,
            "ATTEMPT_IN_FLIGHT",
            "The completion is already running and cannot be cancelled.",
            state=attempt.state.value,
        )
    return {"task_key": task_key, "state": attempt.state.value}
