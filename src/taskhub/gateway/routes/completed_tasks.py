"""完成快照路由

GET /api/completed-tasks: 读取全部完成快照。
POST /api/completed-tasks: 写入或合并一条快照。
- 400: 缺少 source/original_id 或 payload 不合法（不会写入任何数据）
"""

from typing import Any

import structlog
from fastapi import APIRouter, Body, Depends
from starlette.responses import JSONResponse
from taskhub.core.store import SnapshotValidationError, StoreGroup

from ..deps import get_store_group

log = structlog.get_logger()

router = APIRouter()


@router.get("/api/completed-tasks")
async def list_completed_tasks(store_group: StoreGroup = Depends(get_store_group)):
    """返回全部完成快照"""
    snapshots = await store_group.completion_store.get_all()
    return [snapshot.model_dump(mode="json") for snapshot in snapshots]


@router.post("/api/completed-tasks")
async def upsert_completed_task(
    payload: Any = Body(default=None),
    store_group: StoreGroup = Depends(get_store_group),
):
    """写入或合并快照"""
    if not isinstance(payload, dict):
        return JSONResponse(
            status_code=400,
            content={
                "error": {
                    "code": "INVALID_SNAPSHOT",
                    "message": "A completed task payload is required.",
                }
            },
        )

    try:
        snapshot = await store_group.completion_store.upsert(payload)
    except SnapshotValidationError as e:
        log.info("completed_snapshot_rejected", error=str(e))
        return JSONResponse(
            status_code=400,
            content={"error": {"code": "INVALID_SNAPSHOT", "message": str(e)}},
        )

    return snapshot.model_dump(mode="json")
