"""依赖注入模块 -- 通过 FastAPI Depends 注入服务实例

实例通过 app.state 管理，在 lifespan 中初始化/清理。
"""

from fastapi import Request
from taskhub.core.store import StoreGroup
from taskhub.core.workflow import CompletionWorkflow

from .services.aggregator import TaskAggregator


def get_store_group(request: Request) -> StoreGroup:
    """从 app.state 获取 StoreGroup 实例"""
    return request.app.state.store_group


def get_aggregator(request: Request) -> TaskAggregator:
    """从 app.state 获取 TaskAggregator 实例"""
    return request.app.state.aggregator


def get_workflow(request: Request) -> CompletionWorkflow:
    """从 app.state 获取 CompletionWorkflow 实例"""
    return request.app.state.workflow
