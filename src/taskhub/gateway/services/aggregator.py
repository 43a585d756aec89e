"""TaskAggregator -- 刷新扇出与对账

一次刷新并发拉取所有 provider、完成快照与优先级 map，
各来源独立结算（单个失败不影响其他来源），随后同步执行对账。

新的刷新会取消仍在进行中的旧刷新；被取消或被取代的刷新不写入 latest。
"""

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import UTC, datetime

import structlog
from pydantic import BaseModel, Field
from taskhub.core.config import PARTIAL_FETCH_MESSAGE, TOTAL_FETCH_FAILURE_MESSAGE
from taskhub.core.models import CompletedSnapshot, IdentityRotation, TaskRecord
from taskhub.core.reconcile import attach_priorities, merge
from taskhub.core.store import CompletionStore, PriorityStore
from taskhub.provider import ProviderNotConfiguredError

log = structlog.get_logger()

COMPLETED_STORE_LABEL = "Completed tasks"


@dataclass(frozen=True)
class SourceFetcher:
    """一个 provider 的拉取入口"""

    label: str
    fetch: Callable[[], Awaitable[list[TaskRecord]]]


class RefreshResult(BaseModel):
    """一次刷新的结果"""

    generation: int
    tasks: list[TaskRecord] = Field(default_factory=list)
    failed_sources: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list, description="各失败来源的错误详情")
    message: str | None = Field(default=None, description="面向用户的汇总提示")
    rotations: list[IdentityRotation] = Field(
        default_factory=list,
        description="上次刷新以来发生的身份轮换（只携带一个周期）",
    )
    refreshed_at: datetime


def summarize_failures(failed_sources: list[str]) -> str | None:
    """1 个来源失败给出具体提示，2 个及以上给出笼统提示"""
    if not failed_sources:
        return None
    if len(failed_sources) == 1:
        return PARTIAL_FETCH_MESSAGE.format(source=failed_sources[0])
    return TOTAL_FETCH_FAILURE_MESSAGE


class TaskAggregator:
    """聚合服务"""

    def __init__(
        self,
        fetchers: list[SourceFetcher],
        completion_store: CompletionStore,
        priority_store: PriorityStore,
    ) -> None:
        self._fetchers = list(fetchers)
        self._completion_store = completion_store
        self._priority_store = priority_store
        self._generation = 0
        self._inflight: asyncio.Task | None = None
        self._latest: RefreshResult | None = None
        self._pending_rotations: list[IdentityRotation] = []

    @property
    def latest(self) -> RefreshResult | None:
        """最近一次成功应用的刷新结果"""
        return self._latest

    @property
    def generation(self) -> int:
        return self._generation

    def note_rotation(self, rotation: IdentityRotation) -> None:
        """记录身份轮换，随下一次刷新结果下发后清除"""
        self._pending_rotations.append(rotation)

    async def refresh(self) -> RefreshResult | None:
        """执行一次刷新

        Returns:
            RefreshResult；若本次刷新在完成前被新的刷新取代则返回 None
        """
        self._generation += 1
        generation = self._generation

        previous = self._inflight
        if previous is not None and not previous.done():
            previous.cancel()
            log.info("refresh_superseded", generation=generation - 1)

        task = asyncio.ensure_future(self._collect(generation))
        self._inflight = task
        try:
            result = await task
        except asyncio.CancelledError:
            if generation != self._generation:
                # 被新的刷新取代：不写入任何结果
                return None
            raise

        if generation != self._generation:
            return None

        rotations, self._pending_rotations = self._pending_rotations, []
        result = result.model_copy(update={"rotations": rotations})
        self._latest = result
        return result

    async def _collect(self, generation: int) -> RefreshResult:
        with structlog.contextvars.bound_contextvars(refresh_generation=generation):
            outcomes = await asyncio.gather(
                *(fetcher.fetch() for fetcher in self._fetchers),
                self._completion_store.get_all(),
                self._priority_store.get_priority_map(),
                return_exceptions=True,
            )

            provider_outcomes = outcomes[: len(self._fetchers)]
            snapshots_outcome, priorities_outcome = outcomes[len(self._fetchers) :]

            live: list[TaskRecord] = []
            failed_sources: list[str] = []
            warnings: list[str] = []

            for fetcher, outcome in zip(self._fetchers, provider_outcomes, strict=True):
                if isinstance(outcome, BaseException):
                    label = self._failure_label(fetcher.label, outcome)
                    failed_sources.append(label)
                    warnings.append(f"{label}: {outcome}")
                    log.warning(
                        "provider_fetch_failed",
                        source=fetcher.label,
                        error=str(outcome),
                        error_type=type(outcome).__name__,
                    )
                    continue
                live.extend(outcome)

            snapshots: list[CompletedSnapshot] = []
            if isinstance(snapshots_outcome, BaseException):
                failed_sources.append(COMPLETED_STORE_LABEL)
                warnings.append(f"{COMPLETED_STORE_LABEL}: {snapshots_outcome}")
                log.error(
                    "completed_store_read_failed",
                    error=str(snapshots_outcome),
                    error_type=type(snapshots_outcome).__name__,
                )
            else:
                snapshots = snapshots_outcome

            priorities: dict[str, str] = {}
            if isinstance(priorities_outcome, BaseException):
                warnings.append(f"Priorities: {priorities_outcome}")
                log.warning("priority_store_read_failed", error=str(priorities_outcome))
            else:
                priorities = priorities_outcome

            now = datetime.now(UTC)
            tasks = attach_priorities(merge(live, snapshots, now=now), priorities)
            log.info(
                "refresh_completed",
                live_count=len(live),
                snapshot_count=len(snapshots),
                task_count=len(tasks),
                failed_sources=failed_sources,
            )
            return RefreshResult(
                generation=generation,
                tasks=tasks,
                failed_sources=failed_sources,
                warnings=warnings,
                message=summarize_failures(failed_sources),
                refreshed_at=now,
            )

    @staticmethod
    def _failure_label(label: str, error: BaseException) -> str:
        if isinstance(error, ProviderNotConfiguredError):
            return f"{label} (integration not configured)"
        return label
