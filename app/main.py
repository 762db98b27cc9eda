"""
app.main
~~~~~~~~

FastAPI 应用入口 —— 注册路由、挂载中间件、定义生命周期。

启动顺序：连接 MongoDB → 组装服务 → 清空遗留槽位占用（仅一次）→ 开始接受请求。
"""
from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from app.api import maintenance, ws
from app.core.config import settings
from app.core.exceptions import ChatRoomError
from app.core.logging import get_logger, setup_logging
from app.core.rate_limit import limiter
from app.db import close_mongo, connect_mongo, get_database, ping_mongo
from app.db.message_repository import MessageRepository
from app.db.room_repository import RoomRepository
from app.schemas.api_response import ApiResponse
from app.services.connection_hub import ConnectionHub
from app.services.coordinator import SessionCoordinator
from app.services.message_ledger import MessageLedger
from app.services.room_registry import RoomRegistry
from app.services.slot_manager import SlotManager

# 初始化日志系统（必须在其他模块之前）
setup_logging()
logger = get_logger(__name__)


def build_coordinator() -> SessionCoordinator:
    """基于当前数据库连接组装全部服务。"""
    db = get_database()
    room_repo = RoomRepository(db)
    message_repo = MessageRepository(db)
    hub = ConnectionHub()
    return SessionCoordinator(
        registry=RoomRegistry(
            room_repo, message_repo, passcode_min_length=settings.PASSCODE_MIN_LENGTH,
        ),
        slots=SlotManager(room_repo, oracle=hub),
        ledger=MessageLedger(message_repo),
        hub=hub,
    )


# ── 生命周期 ──────────────────────────────────────────────────────────

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """应用生命周期钩子，仅在 worker 启动/关闭时各执行一次。"""
    # ── 启动 ──
    await connect_mongo()
    coordinator = build_coordinator()
    # 新进程的连接表为空，旧的槽位占用全部失效
    await coordinator.slots.clear_all()
    app.state.coordinator = coordinator
    logger.info(
        "🚀 应用已启动 | env=%s | debug=%s | log_level=%s",
        settings.ENVIRONMENT,
        settings.debug,
        settings.effective_log_level,
    )
    yield
    # ── 关闭 ──
    await close_mongo()
    logger.info("👋 应用已关闭")


# ── 创建 FastAPI 实例 ─────────────────────────────────────────────────

app: FastAPI = FastAPI(
    title=settings.PROJECT_NAME,
    description="双人实时聊天室后端 API",
    version=settings.VERSION,
    debug=settings.debug,
    lifespan=lifespan,
)
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# ── CORS 中间件 ───────────────────────────────────────────────────────
if settings.allow_cors_all_origins:
    # dev / test 环境：允许所有来源，方便本地调试
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
else:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )

# ── 路由挂载 ──────────────────────────────────────────────────────────
app.include_router(maintenance.router, prefix="/api", tags=["Maintenance"])
app.include_router(ws.router, tags=["WebSocket Chat"])


# ── 全局异常处理器 ────────────────────────────────────────────────────

@app.exception_handler(ChatRoomError)
async def chat_room_error_handler(request: Request, exc: ChatRoomError) -> JSONResponse:
    """业务异常 → ``ApiResponse.from_error()``。"""
    response = ApiResponse.from_error(exc)
    return JSONResponse(status_code=response.code, content=response.model_dump())


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """捕获所有未处理异常，返回统一的 ApiResponse.fail() 格式。"""
    logger.error("未捕获异常: %s %s -> %s", request.method, request.url, exc, exc_info=True)
    # 非 prod 环境返回详细错误信息，prod 环境隐藏内部细节
    detail = str(exc) if not settings.is_prod else "服务器内部错误"
    response = ApiResponse.fail(msg=detail, code=500, data=None)
    return JSONResponse(
        status_code=500,
        content=response.model_dump(),
    )


@app.get("/health", tags=["System"])
async def health_check(request: Request) -> JSONResponse:
    """服务与数据库状态，数据库不可达时返回 503。"""
    database_ok = await ping_mongo()
    coordinator: SessionCoordinator | None = getattr(request.app.state, "coordinator", None)
    return JSONResponse(
        status_code=200 if database_ok else 503,
        content={
            "status": "ok" if database_ok else "degraded",
            "environment": settings.ENVIRONMENT,
            "database": database_ok,
            "online": coordinator.hub.online_count if coordinator else 0,
        },
    )


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "app.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.reload,  # 仅 dev 环境开启热重载
        log_level=settings.effective_log_level.lower(),
    )
