"""FastAPI 应用主文件

app 创建 + lifespan 管理：Store 初始化/关闭 + provider 客户端 + 聚合服务 + 完成流程。
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from taskhub.core.config import (
    get_db_path,
    get_json_store_path,
    get_snapshot_retention_days,
    get_store_backend,
)
from taskhub.core.models import TaskSource
from taskhub.core.store import StoreGroup, create_store_group, policy_from_days
from taskhub.core.workflow import CompletionWorkflow
from taskhub.provider import (
    GitHubClient,
    GoogleTasksClient,
    HttpProviderClient,
    ProviderConfig,
    TrelloClient,
    load_provider_config,
)

from .middleware.logging_config import setup_logging
from .middleware.logging_mw import LoggingMiddleware
from .routes import completed_tasks, completions, health, priority, tasks
from .services.aggregator import SourceFetcher, TaskAggregator

log = structlog.get_logger()


def build_clients(config: ProviderConfig) -> dict[TaskSource, HttpProviderClient]:
    """按配置创建 provider 客户端（未配置的客户端在调用时报告 not configured）"""
    trello = TrelloClient(
        api_key=config.trello_api_key.get_secret_value(),
        token=config.trello_token.get_secret_value(),
        member_id=config.trello_member_id,
        board_ids=config.trello_board_ids,
        fellow_board_ids=config.trello_fellow_board_ids,
        card_limit=config.trello_card_limit,
        base_url=config.trello_api_base_url,
        timeout_s=config.timeout_s,
    )
    return {
        TaskSource.ISSUE_TRACKER: GitHubClient(
            token=config.github_token.get_secret_value(),
            timeout_s=config.timeout_s,
        ),
        TaskSource.TODO_LIST: GoogleTasksClient(
            client_id=config.google_client_id,
            client_secret=config.google_client_secret.get_secret_value(),
            refresh_token=config.google_refresh_token.get_secret_value(),
            list_ids=config.google_task_list_ids,
            timeout_s=config.timeout_s,
        ),
        TaskSource.BOARD: trello,
    }


def build_services(
    store_group: StoreGroup,
    clients: dict[TaskSource, HttpProviderClient],
) -> tuple[TaskAggregator, CompletionWorkflow]:
    """组装聚合服务与完成流程"""
    github = clients[TaskSource.ISSUE_TRACKER]
    google = clients[TaskSource.TODO_LIST]
    trello = clients[TaskSource.BOARD]

    fetchers = [
        SourceFetcher(TaskSource.ISSUE_TRACKER.value, github.fetch_records),
        SourceFetcher(TaskSource.TODO_LIST.value, google.fetch_records),
        SourceFetcher(TaskSource.BOARD.value, trello.fetch_board_records),
    ]
    # Fellow 看板未配置时不参与刷新
    if trello.fellow_board_ids:
        fetchers.append(
            SourceFetcher(TaskSource.ACTION_ITEMS.value, trello.fetch_action_item_records)
        )

    aggregator = TaskAggregator(
        fetchers,
        store_group.completion_store,
        store_group.priority_store,
    )
    workflow = CompletionWorkflow(
        store_group.completion_store,
        issue_tracker=github,
        todo_list=google,
        board=trello,
        priority_store=store_group.priority_store,
    )
    return aggregator, workflow


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """应用生命周期管理：启动时初始化 Store 和服务，关闭时清理连接"""
    backend = get_store_backend()
    store_group = await create_store_group(
        get_db_path(),
        backend=backend,
        json_path=get_json_store_path(),
    )
    app.state.store_group = store_group

    # 启动时按保留策略清理一次
    retention = policy_from_days(get_snapshot_retention_days())
    await store_group.completion_store.prune(retention)

    provider_config = load_provider_config()
    app.state.provider_config = provider_config
    clients = build_clients(provider_config)
    app.state.provider_clients = clients
    app.state.aggregator, app.state.workflow = build_services(store_group, clients)

    log.info(
        "taskhub_started",
        store_backend=backend,
        retention=repr(retention),
        github=provider_config.github_configured,
        google_tasks=provider_config.google_configured,
        trello=provider_config.trello_configured,
        fellow=provider_config.fellow_configured,
    )

    yield

    # 关闭：清理 HTTP 客户端与数据库连接
    for client in clients.values():
        await client.aclose()
    if hasattr(app.state, "store_group") and app.state.store_group:
        await app.state.store_group.close()


def create_app() -> FastAPI:
    """创建 FastAPI 应用实例"""
    app = FastAPI(
        title="TaskHub Gateway",
        version="0.1.0",
        description="多来源任务聚合与完成流程 API",
        lifespan=lifespan,
    )

    app.add_middleware(LoggingMiddleware)

    # 初始化日志
    setup_logging()

    # 注册路由
    app.include_router(tasks.router, tags=["tasks"])
    app.include_router(completions.router, tags=["completions"])
    app.include_router(completed_tasks.router, tags=["completed-tasks"])
    app.include_router(priority.router, tags=["priority"])
    app.include_router(health.router, tags=["health"])

    return app


# 默认 app 实例（uvicorn 入口）
app = create_app()
