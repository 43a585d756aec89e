"""任务聚合路由

GET /api/tasks: 刷新所有来源并返回对账后的任务集合。
- 200: 成功（部分来源失败时 failed_sources/message 非空）
- 409: 本次刷新被更新的刷新取代
"""

from fastapi import APIRouter, Depends
from starlette.responses import JSONResponse

from ..deps import get_aggregator
from ..services.aggregator import TaskAggregator

router = APIRouter()


@router.get("/api/tasks")
async def list_tasks(aggregator: TaskAggregator = Depends(get_aggregator)):
    """刷新并返回合并后的任务集合"""
    result = await aggregator.refresh()
    if result is None:
        return JSONResponse(
            status_code=409,
            content={
                "error": {
                    "code": "REFRESH_SUPERSEDED",
                    "message": "A newer refresh replaced this one.",
                }
            },
        )

    return result.model_dump(mode="json")
