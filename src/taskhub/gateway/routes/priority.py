"""任务优先级路由

GET /api/task-priority: {source::original_id: priority}
POST /api/task-priority: 设置优先级，priority 为空时清除。
- 400: 缺少字段或优先级取值非法
"""

from fastapi import APIRouter, Depends
from pydantic import AliasChoices, BaseModel, Field
from starlette.responses import JSONResponse
from taskhub.core.store import PriorityValidationError, StoreGroup

from ..deps import get_store_group

router = APIRouter()


class PriorityRequest(BaseModel):
    """优先级设置请求（兼容 originalId 写法）"""

    source: str = ""
    original_id: str = Field(
        default="",
        validation_alias=AliasChoices("original_id", "originalId"),
    )
    priority: str | None = None


@router.get("/api/task-priority")
async def get_priorities(store_group: StoreGroup = Depends(get_store_group)):
    """返回优先级 map"""
    return await store_group.priority_store.get_priority_map()


@router.post("/api/task-priority")
async def set_priority(
    body: PriorityRequest,
    store_group: StoreGroup = Depends(get_store_group),
):
    """设置或清除优先级"""
    try:
        priorities = await store_group.priority_store.set_priority(
            body.source,
            body.original_id,
            body.priority,
        )
    except PriorityValidationError as e:
        return JSONResponse(
            status_code=400,
            content={"error": {"code": "INVALID_PRIORITY", "message": str(e)}},
        )

    return {
        "success": True,
        "priority": (body.priority or "").strip().lower() or None,
        "priorities": priorities,
    }
