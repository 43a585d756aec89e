"""健康检查路由

GET /health: Liveness 检查，永远返回 200。
GET /ready: Readiness 检查，包含 SQLite 连通性、快照存储可读性、集成配置情况。
"""

import structlog
from fastapi import APIRouter, Request
from starlette.responses import JSONResponse

log = structlog.get_logger()

router = APIRouter()


@router.get("/health")
async def health():
    """Liveness 检查 -- 永远返回 200"""
    return {"status": "ok"}


@router.get("/ready")
async def ready(request: Request):
    """Readiness 检查 -- 验证核心依赖可用性

    检查项：
    1. sqlite: 数据库连通性
    2. completion_store: 快照存储可读
    3. integrations: 各集成是否已配置（仅展示，不影响就绪状态）
    """
    checks: dict = {}
    all_ok = True

    # 1. SQLite 连通性检查
    try:
        store_group = request.app.state.store_group
        cursor = await store_group.conn.execute("SELECT 1")
        await cursor.fetchone()
        checks["sqlite"] = "ok"
    except Exception as e:
        checks["sqlite"] = f"error: {str(e)}"
        all_ok = False

    # 2. 快照存储检查
    try:
        store_group = request.app.state.store_group
        await store_group.completion_store.get_all()
        checks["completion_store"] = f"ok ({store_group.backend})"
    except Exception as e:
        log.warning("ready_check_store_failed", error=str(e))
        checks["completion_store"] = f"error: {str(e)}"
        all_ok = False

    # 3. 集成配置
    provider_config = getattr(request.app.state, "provider_config", None)
    if provider_config is not None:
        checks["integrations"] = {
            "github": provider_config.github_configured,
            "google_tasks": provider_config.google_configured,
            "trello": provider_config.trello_configured,
            "fellow": provider_config.fellow_configured,
        }
    else:
        checks["integrations"] = "skipped"

    status_code = 200 if all_ok else 503
    status_text = "ready" if all_ok else "not_ready"

    return JSONResponse(
        status_code=status_code,
        content={
            "status": status_text,
            "checks": checks,
        },
    )
