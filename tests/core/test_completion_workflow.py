"""CompletionWorkflow 测试

测试内容：
1. 各来源的完成计划（已在完成列表时只做本地重标记）
2. 评论失败时不再关闭 issue，失败以值返回
3. Google Tasks 跨列表移动产生身份轮换，快照与优先级迁到新 key 下
4. 失败后重试从第一个未完成步骤继续
5. 同一任务并发确认以 busy 拒绝
6. 本地保存失败归类为 persistence
7. 状态机流转与取消，成功的尝试不常驻内存
"""

import asyncio
from pathlib import Path

import pytest
import pytest_asyncio
from taskhub.core.models import (
    BoardData,
    ContainerOption,
    FailureKind,
    IssueTrackerData,
    TaskRecord,
    TaskSource,
    TodoListData,
    WorkflowState,
    WorkflowStep,
    validate_workflow_transition,
)
from taskhub.core.store import (
    JsonFileCompletionStore,
    SqliteCompletionStore,
    SqlitePriorityStore,
)
from taskhub.core.workflow import CompletionWorkflow, build_plan
from taskhub.provider import ProviderNotConfiguredError, ProviderRequestError

# ---- 测试替身 ----


class FakeIssueTracker:
    def __init__(self, fail_comment: bool = False) -> None:
        self.calls: list[tuple] = []
        self.fail_comment = fail_comment
        self.close_started = asyncio.Event()
        self.release: asyncio.Event | None = None

    async def add_comment(self, repo: str, issue_number: int, body: str) -> None:
        self.calls.append(("comment", repo, issue_number, body))
        if self.fail_comment:
            raise ProviderRequestError("GitHub returned 500", status_code=500)

    async def close_issue(self, repo: str, issue_number: int) -> None:
        self.calls.append(("close", repo, issue_number))
        self.close_started.set()
        if self.release is not None:
            await self.release.wait()


class FakeTodoList:
    def __init__(self, fail_delete_times: int = 0) -> None:
        self.calls: list[tuple] = []
        self.fail_delete_times = fail_delete_times

    async def get_task(self, list_id: str, task_id: str) -> dict:
        self.calls.append(("get", list_id, task_id))
        return {"id": task_id, "title": "Buy milk", "status": "completed"}

    async def insert_task(self, list_id: str, task: dict) -> dict:
        self.calls.append(("insert", list_id, task["id"]))
        return {"id": "new-1", "status": "completed", "title": task["title"]}

    async def delete_task(self, list_id: str, task_id: str) -> None:
        self.calls.append(("delete", list_id, task_id))
        if self.fail_delete_times > 0:
            self.fail_delete_times -= 1
            raise ProviderRequestError("Google returned 503", status_code=503)


class FakeBoard:
    def __init__(self, fail_comment: bool = False, not_configured: bool = False) -> None:
        self.calls: list[tuple] = []
        self.fail_comment = fail_comment
        self.not_configured = not_configured

    async def move_card(self, card_id: str, list_id: str) -> None:
        if self.not_configured:
            raise ProviderNotConfiguredError("Trello")
        self.calls.append(("move", card_id, list_id))

    async def add_comment(self, card_id: str, text: str) -> None:
        self.calls.append(("comment", card_id, text))
        if self.fail_comment:
            raise ProviderRequestError("Trello returned 500", status_code=500)


class FlakyStore:
    """前 N 次 upsert 失败的 store 包装"""

    def __init__(self, inner, failures: int = 1) -> None:
        self._inner = inner
        self.failures = failures

    async def get_all(self):
        return await self._inner.get_all()

    async def get(self, source, original_id):
        return await self._inner.get(source, original_id)

    async def upsert(self, snapshot):
        if self.failures > 0:
            self.failures -= 1
            raise OSError("disk full")
        return await self._inner.upsert(snapshot)

    async def prune(self, policy, now=None):
        return await self._inner.prune(policy, now)


# ---- 任务构造 ----


def github_task(**kwargs) -> TaskRecord:
    data = {
        "source": TaskSource.ISSUE_TRACKER,
        "original_id": "101",
        "id": "github-101",
        "title": "Fix login",
        "extension": IssueTrackerData(issue_id=101, repo="acme/web", issue_number=7),
    }
    data.update(kwargs)
    return TaskRecord(**data)


GOOGLE_OPTIONS = [
    ContainerOption(id="L1", name="Inbox"),
    ContainerOption(id="L-done", name="Completed tasks"),
]


def google_task(list_id: str = "L1") -> TaskRecord:
    return TaskRecord(
        source=TaskSource.TODO_LIST,
        original_id="t1",
        id="google-t1",
        title="Buy milk",
        container_id=list_id,
        container_options=GOOGLE_OPTIONS,
        extension=TodoListData(task_id="t1", list_id=list_id),
    )


def trello_task(list_id: str = "list-todo", source: TaskSource = TaskSource.BOARD) -> TaskRecord:
    return TaskRecord(
        source=source,
        original_id="c1",
        id="trello-c1",
        title="Write docs",
        container_id=list_id,
        container_options=[
            ContainerOption(id="list-todo", name="To Do"),
            ContainerOption(id="list-done", name="Completed"),
        ],
        extension=BoardData(card_id="c1", list_id=list_id, board_id="b1"),
    )


@pytest_asyncio.fixture
async def store(db_conn):
    return SqliteCompletionStore(db_conn)


class TestCompletionPlans:
    """计划生成"""

    def test_github_plan_with_note(self):
        plan = build_plan(github_task(), "shipped")
        assert plan.steps == [WorkflowStep.POST_COMMENT, WorkflowStep.CLOSE_ISSUE]

    def test_github_plan_without_note(self):
        assert build_plan(github_task(), "").steps == [WorkflowStep.CLOSE_ISSUE]

    def test_google_plan_move(self):
        plan = build_plan(google_task("L1"))
        assert plan.steps == [WorkflowStep.COPY_TO_COMPLETED, WorkflowStep.DELETE_ORIGINAL]
        assert plan.target.id == "L-done"
        assert plan.current_container_id == "L1"

    def test_google_plan_already_completed(self):
        assert build_plan(google_task("L-done")).steps == [WorkflowStep.RELABEL]

    def test_trello_plan_move_then_comment(self):
        plan = build_plan(trello_task(), "done")
        assert plan.steps == [WorkflowStep.MOVE_CARD, WorkflowStep.POST_COMMENT]

    def test_other_source_is_local_only(self):
        plan = build_plan(TaskRecord(source=TaskSource.OTHER, original_id="x"))
        assert plan.steps == []


class TestCompletionWorkflowSuccess:
    """成功路径"""

    async def test_google_already_completed_only_relabels(self, store):
        """已在 Completed tasks 列表中：不发起远端调用"""
        todo_list = FakeTodoList()
        workflow = CompletionWorkflow(store, todo_list=todo_list)

        outcome = await workflow.complete(google_task("L-done"))

        assert outcome.ok is True
        assert outcome.state == WorkflowState.DONE
        assert todo_list.calls == []
        assert outcome.rotation is None
        assert outcome.task.status == "completed"
        assert outcome.task.container_name == "Completed tasks"
        assert await store.get("Google Tasks", "t1") is not None

    async def test_github_comment_then_close(self, store):
        tracker = FakeIssueTracker()
        workflow = CompletionWorkflow(store, issue_tracker=tracker)

        outcome = await workflow.complete(github_task(), "  shipped in v2 ")

        assert outcome.ok is True
        assert tracker.calls == [
            ("comment", "acme/web", 7, "shipped in v2"),
            ("close", "acme/web", 7),
        ]
        snapshot = await store.get("GitHub", "101")
        assert snapshot.notes == "shipped in v2"
        assert snapshot.status == "Completed locally"
        assert outcome.task.completed_at == snapshot.completed_at

    async def test_google_move_rotates_identity(self, store):
        todo_list = FakeTodoList()
        workflow = CompletionWorkflow(store, todo_list=todo_list)

        outcome = await workflow.complete(google_task("L1"))

        assert outcome.ok is True
        assert todo_list.calls == [
            ("get", "L1", "t1"),
            ("insert", "L-done", "t1"),
            ("delete", "L1", "t1"),
        ]
        assert outcome.task.id == "google-new-1"
        assert outcome.task.original_id == "new-1"
        assert outcome.task.container_id == "L-done"
        assert outcome.rotation is not None
        assert outcome.rotation.previous_id == "google-t1"
        assert outcome.rotation.previous_key == "Google Tasks::t1"
        assert outcome.rotation.next_key == "Google Tasks::new-1"
        assert await store.get("Google Tasks", "new-1") is not None
        assert await store.get("Google Tasks", "t1") is None

    async def test_google_move_carries_priority(self, store, db_conn):
        """身份轮换后优先级跟随任务迁到新 key"""
        priorities = SqlitePriorityStore(db_conn)
        await priorities.set_priority("Google Tasks", "t1", "high")
        workflow = CompletionWorkflow(
            store, todo_list=FakeTodoList(), priority_store=priorities
        )

        outcome = await workflow.complete(google_task("L1"))

        assert outcome.rotation is not None
        assert await priorities.get_priority_map() == {"Google Tasks::new-1": "high"}

    async def test_trello_move_and_comment(self, store):
        board = FakeBoard()
        workflow = CompletionWorkflow(store, board=board)

        outcome = await workflow.complete(trello_task(), "wrapped up")

        assert outcome.ok is True
        assert board.calls == [("move", "c1", "list-done"), ("comment", "c1", "wrapped up")]
        assert outcome.task.container_id == "list-done"
        assert outcome.task.extension.list_id == "list-done"

    async def test_fellow_uses_board_gateway_by_default(self, store):
        board = FakeBoard()
        workflow = CompletionWorkflow(store, board=board)

        outcome = await workflow.complete(trello_task(source=TaskSource.ACTION_ITEMS))

        assert outcome.ok is True
        assert board.calls == [("move", "c1", "list-done")]
        assert await store.get("Fellow", "c1") is not None

    async def test_other_source_completes_locally(self, tmp_path: Path):
        store = JsonFileCompletionStore(tmp_path / "completed.json")
        workflow = CompletionWorkflow(store)

        outcome = await workflow.complete(
            TaskRecord(source=TaskSource.OTHER, original_id="x", title="Misc")
        )

        assert outcome.ok is True
        assert outcome.task.status == "Completed locally"
        assert (await store.get("Other", "x")).title == "Misc"


class TestCompletionWorkflowFailures:
    """失败路径"""

    async def test_comment_failure_leaves_issue_open(self, store):
        """评论失败时不尝试关闭 issue"""
        tracker = FakeIssueTracker(fail_comment=True)
        workflow = CompletionWorkflow(store, issue_tracker=tracker)

        outcome = await workflow.complete(github_task(), "note")

        assert outcome.ok is False
        assert outcome.state == WorkflowState.FAILED
        assert outcome.failure.kind == FailureKind.REMOTE
        assert outcome.failure.step == WorkflowStep.POST_COMMENT
        assert [call[0] for call in tracker.calls] == ["comment"]
        assert await store.get_all() == []

    async def test_retry_resumes_at_failed_step(self, store):
        todo_list = FakeTodoList(fail_delete_times=1)
        workflow = CompletionWorkflow(store, todo_list=todo_list)
        task = google_task("L1")

        first = await workflow.complete(task)
        assert first.ok is False
        assert first.failure.step == WorkflowStep.DELETE_ORIGINAL
        attempt = workflow.get_attempt("Google Tasks::t1")
        assert attempt.completed_steps == [WorkflowStep.COPY_TO_COMPLETED]

        second = await workflow.complete(task)

        assert second.ok is True
        assert [call[0] for call in todo_list.calls] == ["get", "insert", "delete", "delete"]
        assert second.task.original_id == "new-1"

    async def test_comment_failure_after_move(self, store):
        board = FakeBoard(fail_comment=True)
        workflow = CompletionWorkflow(store, board=board)

        outcome = await workflow.complete(trello_task(), "note")

        assert outcome.ok is False
        assert outcome.failure.step == WorkflowStep.POST_COMMENT
        assert outcome.failure.message.startswith(
            "The card was moved but adding the comment failed"
        )

    async def test_not_configured_is_configuration_failure(self, store):
        workflow = CompletionWorkflow(store, board=FakeBoard(not_configured=True))
        outcome = await workflow.complete(trello_task())
        assert outcome.failure.kind == FailureKind.CONFIGURATION

    async def test_missing_gateway_is_configuration_failure(self, store):
        workflow = CompletionWorkflow(store)
        outcome = await workflow.complete(github_task())
        assert outcome.failure.kind == FailureKind.CONFIGURATION
        assert outcome.failure.message == "GitHub integration is not configured."

    async def test_unresolvable_issue_is_validation_failure(self, store):
        tracker = FakeIssueTracker()
        workflow = CompletionWorkflow(store, issue_tracker=tracker)

        outcome = await workflow.complete(
            github_task(extension=IssueTrackerData(issue_id=101))
        )

        assert outcome.failure.kind == FailureKind.VALIDATION
        assert outcome.state == WorkflowState.FAILED
        assert tracker.calls == []

    async def test_missing_completed_list_is_validation_failure(self, store):
        task = google_task("L1").model_copy(
            update={"container_options": [ContainerOption(id="L1", name="Inbox")]}
        )
        workflow = CompletionWorkflow(store, todo_list=FakeTodoList())
        outcome = await workflow.complete(task)
        assert outcome.failure.kind == FailureKind.VALIDATION
        assert "Completed tasks" in outcome.failure.message

    async def test_persistence_failure_then_retry(self, store):
        flaky = FlakyStore(store)
        tracker = FakeIssueTracker()
        workflow = CompletionWorkflow(flaky, issue_tracker=tracker)

        first = await workflow.complete(github_task())
        assert first.failure.kind == FailureKind.PERSISTENCE
        assert first.state == WorkflowState.FAILED

        second = await workflow.complete(github_task())
        assert second.ok is True
        # 远端步骤已完成，重试只补写本地快照
        assert tracker.calls == [("close", "acme/web", 7)]


class TestCompletionWorkflowConcurrency:
    """并发与状态机"""

    async def test_second_confirm_while_executing_is_busy(self, store):
        tracker = FakeIssueTracker()
        tracker.release = asyncio.Event()
        workflow = CompletionWorkflow(store, issue_tracker=tracker)
        task = github_task()

        first = asyncio.create_task(workflow.complete(task))
        await tracker.close_started.wait()

        attempt = await workflow.begin(task)
        assert attempt.state == WorkflowState.EXECUTING
        busy = await workflow.complete(task)
        assert busy.ok is False
        assert busy.failure.kind == FailureKind.BUSY

        cancelled = await workflow.cancel("GitHub::101")
        assert cancelled.state == WorkflowState.EXECUTING

        tracker.release.set()
        outcome = await first
        assert outcome.ok is True
        assert [call[0] for call in tracker.calls] == ["close"]

    async def test_cancel_confirming_attempt(self, store):
        workflow = CompletionWorkflow(store)
        attempt = await workflow.begin(github_task())
        assert attempt.state == WorkflowState.CONFIRMING

        cancelled = await workflow.cancel(attempt.task_key)

        assert cancelled.state == WorkflowState.IDLE
        assert workflow.get_attempt(attempt.task_key) is None
        assert await workflow.cancel(attempt.task_key) is None

    async def test_finished_attempts_are_released(self, store):
        """成功的尝试及其锁不会常驻内存"""
        workflow = CompletionWorkflow(store, issue_tracker=FakeIssueTracker())

        for n in range(20):
            outcome = await workflow.complete(github_task(original_id=str(n), id=f"github-{n}"))
            assert outcome.ok is True

        assert workflow.get_attempt("GitHub::0") is None
        assert workflow._attempts == {}
        assert workflow._locks == {}

    async def test_failed_attempt_kept_until_cancelled(self, store):
        workflow = CompletionWorkflow(store, issue_tracker=FakeIssueTracker(fail_comment=True))

        outcome = await workflow.complete(github_task(), "note")

        assert outcome.ok is False
        assert workflow.get_attempt("GitHub::101").state == WorkflowState.FAILED
        await workflow.cancel("GitHub::101")
        assert workflow.get_attempt("GitHub::101") is None
        assert "GitHub::101" not in workflow._locks

    async def test_confirm_without_begin(self, store):
        workflow = CompletionWorkflow(store)
        outcome = await workflow.confirm("GitHub::404")
        assert outcome.ok is False
        assert outcome.failure.kind == FailureKind.VALIDATION

    @pytest.mark.parametrize(
        "from_state,to_state,expected",
        [
            (WorkflowState.IDLE, WorkflowState.CONFIRMING, True),
            (WorkflowState.CONFIRMING, WorkflowState.IDLE, True),
            (WorkflowState.FAILED, WorkflowState.CONFIRMING, True),
            (WorkflowState.IDLE, WorkflowState.EXECUTING, False),
            (WorkflowState.DONE, WorkflowState.CONFIRMING, False),
            (WorkflowState.EXECUTING, WorkflowState.DONE, False),
        ],
    )
    def test_transitions(self, from_state, to_state, expected):
        assert validate_workflow_transition(from_state, to_state) is expected
