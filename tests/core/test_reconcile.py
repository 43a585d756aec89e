"""对账引擎测试

测试内容：
1. 快照叠加到 live 记录（保持 live id）
2. 只存在于快照的任务仍出现在结果中
3. 合并幂等、输出顺序稳定
4. 任何一侧的已有字段都不会被抹掉
5. 优先级 join
"""

from datetime import UTC, datetime

from taskhub.core.models import (
    BoardData,
    CompletedSnapshot,
    ContainerOption,
    PriorityLevel,
    TaskRecord,
    TaskSource,
)
from taskhub.core.reconcile import (
    COMPLETED_LOCALLY_STATUS,
    attach_priorities,
    merge,
    normalize_snapshot,
)

NOW = datetime(2024, 5, 1, 12, 0, tzinfo=UTC)


def _github(original_id: str, **kwargs) -> TaskRecord:
    return TaskRecord(source=TaskSource.ISSUE_TRACKER, original_id=original_id, **kwargs)


class TestSnapshotOverlay:
    """快照叠加"""

    def test_overlay_keeps_live_id(self):
        """live id 保持不变，完成字段取自快照"""
        live = [_github("42", id="x-100", title="Fix login")]
        snapshots = [CompletedSnapshot(source="GitHub", original_id="42", notes="done")]

        merged = merge(live, snapshots, now=NOW)

        assert len(merged) == 1
        record = merged[0]
        assert record.id == "x-100"
        assert record.locally_completed is True
        assert record.notes == "done"
        assert record.title == "Fix login"
        assert record.status == COMPLETED_LOCALLY_STATUS

    def test_snapshot_only_task_appears(self):
        """provider 已不返回的任务以快照数据出现"""
        snapshot = CompletedSnapshot(
            source="Trello",
            original_id="card-1",
            title="Ship release",
            container_id="list-done",
            container_name="Completed",
            completed_at=NOW,
        )

        merged = merge([], [snapshot], now=NOW)

        assert len(merged) == 1
        record = merged[0]
        assert record.source == TaskSource.BOARD
        assert record.original_id == "card-1"
        assert record.locally_completed is True
        assert record.title == "Ship release"
        assert record.container_name == "Completed"
        assert record.description == "Completed in Completed"
        assert record.completed_at == NOW
        # 缺少 id 时合成确定性本地 id
        assert record.id == "completed-Trello--card-1"

    def test_snapshot_container_wins(self):
        live = [
            TaskRecord(
                source=TaskSource.BOARD,
                original_id="c1",
                id="trello-c1",
                container_id="list-todo",
                container_name="To Do",
            )
        ]
        snapshots = [
            CompletedSnapshot(
                source="Trello",
                original_id="c1",
                container_id="list-done",
                container_name="Completed",
            )
        ]
        record = merge(live, snapshots, now=NOW)[0]
        assert record.container_id == "list-done"
        assert record.container_name == "Completed"

    def test_live_fields_not_erased_by_sparse_snapshot(self):
        """快照缺少的字段不抹掉 live 已有字段"""
        options = [ContainerOption(id="L1", name="Inbox")]
        live = [
            TaskRecord(
                source=TaskSource.TODO_LIST,
                original_id="t1",
                id="google-t1",
                title="Buy milk",
                url="https://tasks.google.com/x",
                container_options=options,
            )
        ]
        snapshots = [{"source": "Google Tasks", "original_id": "t1"}]
        record = merge(live, snapshots, now=NOW)[0]
        assert record.title == "Buy milk"
        assert record.url == "https://tasks.google.com/x"
        assert record.container_options == options

    def test_snapshot_fills_missing_live_fields(self):
        live = [_github("7", id="github-7")]
        snapshots = [
            CompletedSnapshot(
                source="GitHub",
                original_id="7",
                title="From snapshot",
                url="https://github.com/acme/web/issues/3",
            )
        ]
        record = merge(live, snapshots, now=NOW)[0]
        assert record.title == "From snapshot"
        assert record.url == "https://github.com/acme/web/issues/3"

    def test_completed_at_defaults_to_now(self):
        live = [_github("1", id="github-1")]
        snapshots = [{"source": "GitHub", "original_id": "1"}]
        record = merge(live, snapshots, now=NOW)[0]
        assert record.completed_at == NOW

    def test_live_status_kept_when_snapshot_has_none(self):
        """快照未定义 status 时保留 live 状态"""
        live = [{"source": "Trello", "original_id": "c1", "status": "In Progress"}]
        snapshots = [{"source": "Trello", "original_id": "c1", "notes": "x"}]
        record = merge(live, snapshots, now=NOW)[0]
        assert record.status == "In Progress"
        assert record.notes == "x"
        assert record.locally_completed is True

    def test_snapshot_status_overrides_live(self):
        live = [_github("1", id="github-1", status="open")]
        snapshots = [{"source": "GitHub", "original_id": "1", "status": "closed"}]
        assert merge(live, snapshots, now=NOW)[0].status == "closed"

    def test_undefined_notes_preserved(self):
        """快照没有 notes 字段时保留已有 notes"""
        live = [_github("1", id="github-1", notes="keep me")]
        record = merge(live, [{"source": "GitHub", "original_id": "1"}], now=NOW)[0]
        assert record.notes == "keep me"


class TestMergeProperties:
    """合并性质"""

    def test_idempotent(self):
        live = [
            _github("1", id="github-1", title="A"),
            TaskRecord(source=TaskSource.BOARD, id="trello-c2", title="B"),
            TaskRecord(source=TaskSource.OTHER, title="no identity"),
        ]
        snapshots = [
            CompletedSnapshot(source="GitHub", original_id="1", notes="n"),
            CompletedSnapshot(source="Trello", original_id="gone", title="Old"),
        ]
        once = merge(live, snapshots, now=NOW)
        twice = merge(once, snapshots, now=NOW)
        assert [r.model_dump() for r in twice] == [r.model_dump() for r in once]

    def test_order_of_first_appearance(self):
        live = [_github("2", id="github-2"), _github("1", id="github-1")]
        snapshots = [
            CompletedSnapshot(source="Trello", original_id="z"),
            CompletedSnapshot(source="GitHub", original_id="1"),
        ]
        merged = merge(live, snapshots, now=NOW)
        assert [r.original_id for r in merged] == ["2", "1", "z"]

    def test_duplicate_live_records_merge(self):
        """同 key 的 live 记录：后来者的非空字段覆盖"""
        live = [
            _github("5", id="github-5", title="Old", description="desc"),
            _github("5", id="github-5", title="New", description=""),
        ]
        merged = merge(live, [], now=NOW)
        assert len(merged) == 1
        assert merged[0].title == "New"
        assert merged[0].description == "desc"

    def test_unidentified_records_never_merge(self):
        live = [
            TaskRecord(source=TaskSource.OTHER, title="first"),
            TaskRecord(source=TaskSource.OTHER, title="second"),
        ]
        merged = merge(live, [], now=NOW)
        assert len(merged) == 2
        assert merged[0].id != merged[1].id

    def test_empty_inputs(self):
        assert merge([], [], now=NOW) == []


class TestNormalizeSnapshot:
    """快照规范化"""

    def test_missing_status_left_unset(self):
        """规范化不补 status，兜底只发生在 merge 阶段"""
        record = normalize_snapshot({"source": "GitHub", "original_id": "1"})
        assert record.status is None
        assert record.locally_completed is True

    def test_snapshot_only_status_defaults(self):
        merged = merge([], [{"source": "GitHub", "original_id": "1"}], now=NOW)
        assert merged[0].status == COMPLETED_LOCALLY_STATUS

    def test_legacy_columns(self):
        record = normalize_snapshot(
            {
                "source": "Trello",
                "originalId": "c1",
                "pipelineName": "Done",
                "extension": BoardData(card_id="c1").model_dump(),
            }
        )
        assert record.original_id == "c1"
        assert record.container_name == "Done"
        assert isinstance(record.extension, BoardData)


class TestAttachPriorities:
    """优先级 join"""

    def test_priority_joined_by_key(self):
        records = [_github("1", id="github-1"), _github("2", id="github-2")]
        result = attach_priorities(records, {"GitHub::1": "high", "GitHub::2": "bogus"})
        assert result[0].priority == PriorityLevel.HIGH
        assert result[1].priority is None
