"""CompletionWorkflow -- 完成流程编排

状态机：IDLE -> CONFIRMING -> EXECUTING -> PERSISTING -> DONE，
EXECUTING/PERSISTING 失败进入 FAILED，FAILED 可回到 CONFIRMING 重试。

- 远端副作用从不回滚；重试跳过已完成步骤
- 同一 key 同时只允许一个尝试处于执行中，第二个请求以 busy 结果拒绝
- 所有失败都以 CompletionOutcome 值返回，不向调用方抛出
"""

import asyncio
from collections.abc import Mapping
from datetime import UTC, datetime
from typing import Any

import structlog

from ..identity import build_task_key, native_field, task_key_for
from ..models.enums import (
    IN_FLIGHT_WORKFLOW_STATES,
    FailureKind,
    TaskSource,
    WorkflowState,
    WorkflowStep,
    validate_workflow_transition,
)
from ..models.snapshot import CompletedSnapshot
from ..models.task import ActionItemsData, BoardData, TaskRecord, TodoListData
from ..models.workflow import (
    CompletionAttempt,
    CompletionOutcome,
    IdentityRotation,
    WorkflowFailure,
)
from ..reconcile import COMPLETED_LOCALLY_STATUS
from ..store.exceptions import SnapshotValidationError
from ..store.protocols import CompletionStore, PriorityStore
from .plans import CompletionPlan, PlanError, build_plan
from .protocols import BoardGateway, IssueTrackerGateway, TodoListGateway

log = structlog.get_logger()

BUSY_MESSAGE = "A completion for this task is already in progress."
NOT_CONFIRMING_MESSAGE = "No completion is awaiting confirmation for this task."

# 步骤失败时的默认提示
_STEP_FAILURE_MESSAGES: dict[WorkflowStep, str] = {
    WorkflowStep.POST_COMMENT: "Adding the comment failed.",
    WorkflowStep.CLOSE_ISSUE: "Failed to mark the GitHub issue as done.",
    WorkflowStep.COPY_TO_COMPLETED: "Failed to move the Google Task to Completed tasks.",
    WorkflowStep.DELETE_ORIGINAL: (
        "The Google Task was moved but removing the original entry failed."
    ),
    WorkflowStep.MOVE_CARD: "Failed to move the card to Completed.",
}

# 上下文键
_CTX_TARGET_ID = "target_container_id"
_CTX_TARGET_NAME = "target_container_name"
_CTX_NEW_TASK_ID = "new_task_id"
_CTX_NEW_STATUS = "new_status"


class WorkflowTransitionError(ValueError):
    """非法状态流转（编程错误，不应出现在正常流程中）"""


class _StepError(Exception):
    def __init__(self, failure: WorkflowFailure) -> None:
        super().__init__(failure.message)
        self.failure = failure


class CompletionWorkflow:
    """完成流程编排器

    Args:
        completion_store: 完成快照存储
        issue_tracker: GitHub 写接口
        todo_list: Google Tasks 写接口
        board: Trello 写接口
        action_items: Fellow 看板写接口（默认复用 board）
        priority_store: 优先级存储；身份轮换时随快照一起迁到新 key
    """

    def __init__(
        self,
        completion_store: CompletionStore,
        *,
        issue_tracker: IssueTrackerGateway | None = None,
        todo_list: TodoListGateway | None = None,
        board: BoardGateway | None = None,
        action_items: BoardGateway | None = None,
        priority_store: PriorityStore | None = None,
    ) -> None:
        self._store = completion_store
        self._priority_store = priority_store
        self._issue_tracker = issue_tracker
        self._todo_list = todo_list
        self._boards: dict[TaskSource, BoardGateway | None] = {
            TaskSource.BOARD: board,
            TaskSource.ACTION_ITEMS: action_items or board,
        }
        self._attempts: dict[str, CompletionAttempt] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._locks_guard = asyncio.Lock()

    # ---- 公共接口 ----

    def get_attempt(self, task_key: str) -> CompletionAttempt | None:
        return self._attempts.get(task_key)

    async def begin(self, task: TaskRecord | Mapping[str, Any]) -> CompletionAttempt:
        """开始一次完成尝试（IDLE -> CONFIRMING）

        已失败的尝试回到 CONFIRMING 并保留已完成步骤；
        执行中的尝试原样返回，调用方据 state 判断。
        """
        record = task if isinstance(task, TaskRecord) else TaskRecord.model_validate(dict(task))
        key = task_key_for(record)
        attempt = self._attempts.get(key)

        if attempt is not None and attempt.state in IN_FLIGHT_WORKFLOW_STATES:
            log.info("completion_begin_while_in_flight", task_key=key, state=attempt.state)
            return attempt

        if attempt is not None and attempt.state == WorkflowState.FAILED:
            self._transition(attempt, WorkflowState.CONFIRMING)
            return attempt

        if attempt is not None and attempt.state == WorkflowState.CONFIRMING:
            attempt.task = record
            return attempt

        attempt = CompletionAttempt(task_key=key, task=record)
        self._transition(attempt, WorkflowState.CONFIRMING)
        self._attempts[key] = attempt
        return attempt

    async def cancel(self, task_key: str) -> CompletionAttempt | None:
        """取消等待确认（或已失败）的尝试；执行中的尝试不可取消，原样返回"""
        attempt = self._attempts.get(task_key)
        if attempt is None:
            return None
        if attempt.state in IN_FLIGHT_WORKFLOW_STATES:
            log.warning("completion_cancel_rejected", task_key=task_key, state=attempt.state)
            return attempt
        if attempt.state == WorkflowState.FAILED:
            self._transition(attempt, WorkflowState.CONFIRMING)
        if attempt.state == WorkflowState.CONFIRMING:
            self._transition(attempt, WorkflowState.IDLE)
        self._forget(task_key)
        log.info("completion_cancelled", task_key=task_key)
        return attempt

    async def complete(
        self,
        task: TaskRecord | Mapping[str, Any],
        note: str | None = None,
    ) -> CompletionOutcome:
        """begin + confirm"""
        attempt = await self.begin(task)
        return await self.confirm(attempt.task_key, note)

    async def confirm(self, task_key: str, note: str | None = None) -> CompletionOutcome:
        """执行完成计划

        Args:
            task_key: begin 返回的 attempt.task_key
            note: 完成备注；重试时为 None 表示沿用上次的备注

        Returns:
            CompletionOutcome（失败也以值返回）
        """
        lock = await self._get_lock(task_key)
        if lock.locked():
            return self._busy_outcome(self._attempts.get(task_key))

        async with lock:
            attempt = self._attempts.get(task_key)
            if attempt is None or attempt.state != WorkflowState.CONFIRMING:
                if attempt is not None and attempt.state in IN_FLIGHT_WORKFLOW_STATES:
                    return self._busy_outcome(attempt)
                return CompletionOutcome(
                    ok=False,
                    state=attempt.state if attempt else WorkflowState.IDLE,
                    failure=WorkflowFailure(
                        kind=FailureKind.VALIDATION,
                        message=NOT_CONFIRMING_MESSAGE,
                    ),
                )

            with structlog.contextvars.bound_contextvars(task_key=task_key):
                outcome = await self._run(attempt, note)

            # 成功的尝试不再需要保留；FAILED 保留以便重试续跑
            if outcome.state == WorkflowState.DONE:
                self._forget(task_key)
            return outcome

    # ---- 执行 ----

    async def _run(self, attempt: CompletionAttempt, note: str | None) -> CompletionOutcome:
        if note is not None:
            attempt.note = note.strip()
        if attempt.started_at is None:
            attempt.started_at = datetime.now(UTC)
        attempt.failure = None
        self._transition(attempt, WorkflowState.EXECUTING)

        try:
            plan = build_plan(attempt.task, attempt.note)
        except PlanError as e:
            return self._fail(attempt, WorkflowFailure(kind=e.kind, message=str(e)))

        attempt.plan = plan.steps
        if plan.target is not None:
            attempt.context.setdefault(_CTX_TARGET_ID, plan.target.id)
            attempt.context.setdefault(_CTX_TARGET_NAME, plan.target.name)

        log.info(
            "completion_executing",
            source=attempt.task.source.value,
            steps=[step.value for step in attempt.remaining_steps],
            resumed=bool(attempt.completed_steps),
        )

        for step in attempt.remaining_steps:
            try:
                await self._execute_step(attempt, plan, step)
            except _StepError as e:
                return self._fail(attempt, e.failure)
            attempt.completed_steps.append(step)
            log.info("completion_step_done", step=step.value)

        self._transition(attempt, WorkflowState.PERSISTING)
        completed, rotation = self._build_completed_record(attempt)

        try:
            snapshot = await self._store.upsert(self._snapshot_from(completed))
        except SnapshotValidationError as e:
            return self._fail(
                attempt,
                WorkflowFailure(kind=FailureKind.VALIDATION, message=str(e)),
            )
        except Exception as e:
            log.error(
                "completion_persist_failed",
                error=str(e),
                error_type=type(e).__name__,
            )
            return self._fail(
                attempt,
                WorkflowFailure(
                    kind=FailureKind.PERSISTENCE,
                    message="The task was completed but saving it locally failed. Please try again.",
                ),
            )

        if rotation is not None:
            await self._carry_priority(rotation)

        completed = completed.model_copy(update={"completed_at": snapshot.completed_at})
        self._transition(attempt, WorkflowState.DONE)
        attempt.finished_at = datetime.now(UTC)
        log.info(
            "completion_done",
            rotated=rotation is not None,
            next_key=rotation.next_key if rotation else None,
        )
        return CompletionOutcome(
            ok=True,
            state=attempt.state,
            task=completed,
            rotation=rotation,
        )

    async def _execute_step(
        self,
        attempt: CompletionAttempt,
        plan: CompletionPlan,
        step: WorkflowStep,
    ) -> None:
        task = attempt.task
        if step == WorkflowStep.RELABEL:
            return

        try:
            if task.source == TaskSource.ISSUE_TRACKER:
                gateway = self._require(self._issue_tracker, task.source, step)
                repo = str(native_field(task, "repo"))
                number = int(native_field(task, "issue_number"))
                if step == WorkflowStep.POST_COMMENT:
                    await gateway.add_comment(repo, number, attempt.note)
                else:
                    await gateway.close_issue(repo, number)

            elif task.source == TaskSource.TODO_LIST:
                gateway = self._require(self._todo_list, task.source, step)
                task_id = str(native_field(task, "task_id"))
                current = plan.current_container_id or ""
                if step == WorkflowStep.COPY_TO_COMPLETED:
                    original = await gateway.get_task(current, task_id)
                    inserted = await gateway.insert_task(attempt.context[_CTX_TARGET_ID], original)
                    attempt.context[_CTX_NEW_TASK_ID] = str(inserted.get("id") or task_id)
                    attempt.context[_CTX_NEW_STATUS] = str(inserted.get("status") or "completed")
                else:
                    await gateway.delete_task(current, task_id)

            else:
                gateway = self._require(self._boards.get(task.source), task.source, step)
                card_id = str(native_field(task, "card_id"))
                if step == WorkflowStep.MOVE_CARD:
                    await gateway.move_card(card_id, attempt.context[_CTX_TARGET_ID])
                else:
                    await gateway.add_comment(card_id, attempt.note)

        except _StepError:
            raise
        except Exception as e:
            # provider 未配置/鉴权失败的异常标记为不可恢复
            kind = (
                FailureKind.CONFIGURATION
                if getattr(e, "recoverable", True) is False
                else FailureKind.REMOTE
            )
            log.warning(
                "completion_step_failed",
                step=step.value,
                kind=kind.value,
                error=str(e),
                error_type=type(e).__name__,
                completed_steps=[s.value for s in attempt.completed_steps],
            )
            message = str(e) or _STEP_FAILURE_MESSAGES.get(step, "The completion step failed.")
            if step == WorkflowStep.POST_COMMENT and WorkflowStep.MOVE_CARD in attempt.completed_steps:
                message = f"The card was moved but adding the comment failed: {message}"
            raise _StepError(WorkflowFailure(kind=kind, message=message, step=step)) from e

    def _require(self, gateway: Any, source: TaskSource, step: WorkflowStep) -> Any:
        if gateway is None:
            raise _StepError(
                WorkflowFailure(
                    kind=FailureKind.CONFIGURATION,
                    message=f"{source.value} integration is not configured.",
                    step=step,
                )
            )
        return gateway

    # ---- 结果构造 ----

    def _build_completed_record(
        self,
        attempt: CompletionAttempt,
    ) -> tuple[TaskRecord, IdentityRotation | None]:
        """由远端步骤结果推导完成后的任务记录（含移动后的新字段）"""
        task = attempt.task
        ctx = attempt.context
        updates: dict[str, Any] = {"locally_completed": True}
        rotation: IdentityRotation | None = None

        if attempt.note:
            updates["notes"] = attempt.note

        target_id = ctx.get(_CTX_TARGET_ID)
        target_name = ctx.get(_CTX_TARGET_NAME)

        if task.source == TaskSource.ISSUE_TRACKER:
            updates["status"] = COMPLETED_LOCALLY_STATUS

        elif task.source == TaskSource.TODO_LIST:
            updates["container_name"] = target_name
            new_task_id = ctx.get(_CTX_NEW_TASK_ID)
            if WorkflowStep.COPY_TO_COMPLETED in attempt.completed_steps and new_task_id:
                next_id = f"google-{new_task_id}"
                updates.update(
                    id=next_id,
                    original_id=new_task_id,
                    container_id=target_id,
                    status=ctx.get(_CTX_NEW_STATUS, "completed"),
                    extension=TodoListData(task_id=new_task_id, list_id=target_id),
                )
                next_key = build_task_key(task.source, new_task_id)
                if next_key != attempt.task_key:
                    rotation = IdentityRotation(
                        previous_id=task.id,
                        previous_key=attempt.task_key,
                        next_id=next_id,
                        next_key=next_key,
                    )
            else:
                updates["status"] = "completed"

        elif task.source in (TaskSource.BOARD, TaskSource.ACTION_ITEMS):
            updates["status"] = "completed"
            updates["container_name"] = target_name
            if WorkflowStep.MOVE_CARD in attempt.completed_steps:
                updates["container_id"] = target_id
                extension = task.extension
                if isinstance(extension, BoardData | ActionItemsData):
                    updates["extension"] = extension.model_copy(update={"list_id": target_id})

        else:
            updates["status"] = task.status or COMPLETED_LOCALLY_STATUS

        completed = task.model_copy(update=updates)
        if not completed.original_id:
            completed = completed.model_copy(
                update={"original_id": attempt.task_key.split("::", 1)[-1] or None}
            )
        return completed, rotation

    async def _carry_priority(self, rotation: IdentityRotation) -> None:
        if self._priority_store is None:
            return
        try:
            await self._priority_store.rekey(rotation.previous_key, rotation.next_key)
        except Exception as e:
            # 远端与快照均已落定，优先级迁移失败不改变完成结果
            log.warning(
                "completion_priority_rekey_failed",
                previous_key=rotation.previous_key,
                next_key=rotation.next_key,
                error=str(e),
                error_type=type(e).__name__,
            )

    @staticmethod
    def _snapshot_from(record: TaskRecord) -> CompletedSnapshot:
        data = record.model_dump(
            mode="json",
            exclude_none=True,
            exclude={"container_options", "priority", "completed_at"},
        )
        data["source"] = record.source.value
        return CompletedSnapshot.model_validate(data)

    # ---- 状态机 ----

    def _transition(self, attempt: CompletionAttempt, to_state: WorkflowState) -> None:
        if not validate_workflow_transition(attempt.state, to_state):
            raise WorkflowTransitionError(
                f"Invalid completion transition {attempt.state} -> {to_state}"
            )
        log.debug(
            "completion_state_transition",
            task_key=attempt.task_key,
            from_state=attempt.state.value,
            to_state=to_state.value,
        )
        attempt.state = to_state

    def _fail(self, attempt: CompletionAttempt, failure: WorkflowFailure) -> CompletionOutcome:
        attempt.failure = failure
        self._transition(attempt, WorkflowState.FAILED)
        log.warning(
            "completion_failed",
            kind=failure.kind.value,
            step=failure.step.value if failure.step else None,
            error=failure.message,
        )
        return CompletionOutcome(ok=False, state=attempt.state, failure=failure)

    @staticmethod
    def _busy_outcome(attempt: CompletionAttempt | None) -> CompletionOutcome:
        return CompletionOutcome(
            ok=False,
            state=attempt.state if attempt else WorkflowState.EXECUTING,
            failure=WorkflowFailure(kind=FailureKind.BUSY, message=BUSY_MESSAGE),
        )

    def _forget(self, task_key: str) -> None:
        self._attempts.pop(task_key, None)
        self._locks.pop(task_key, None)

    async def _get_lock(self, task_key: str) -> asyncio.Lock:
        """获取 key 级别锁，序列化同一任务的完成尝试"""
        async with self._locks_guard:
            lock = self._locks.get(task_key)
            if lock is None:
                lock = asyncio.Lock()
                self._locks[task_key] = lock
            return lock
