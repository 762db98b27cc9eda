"""
app.db
~~~~~~

MongoDB 异步连接管理（``motor``）。

整个进程共用一个 ``AsyncIOMotorClient``：lifespan 启动时 ``connect_mongo()``，
关闭时 ``close_mongo()``。客户端以 ``tz_aware=True`` 创建，
读出的 ``last_active`` / ``created_at`` 都带 UTC 时区，可直接与 ``datetime.now(timezone.utc)`` 比较。
"""
from __future__ import annotations

from urllib.parse import urlparse

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from pymongo.errors import PyMongoError

from app.core.config import settings
from app.core.logging import get_logger

logger = get_logger(__name__)

_client: AsyncIOMotorClient | None = None


def _safe_target(uri: str) -> str:
    """日志里只展示 ``host:port/db``，不输出用户名和密码。"""
    parsed = urlparse(uri)
    return f"{parsed.hostname or '?'}:{parsed.port or 27017}/{settings.MONGO_DB_NAME}"


async def connect_mongo() -> None:
    """创建连接池并 ping 目标库，连接失败时直接抛出，阻止应用启动。"""
    global _client
    _client = AsyncIOMotorClient(
        settings.MONGO_URI,
        tz_aware=True,
        serverSelectionTimeoutMS=settings.MONGO_TIMEOUT_MS,
    )
    try:
        await _client[settings.MONGO_DB_NAME].command("ping")
    except PyMongoError as e:
        logger.error("MongoDB 连接失败 | target=%s | %s", _safe_target(settings.MONGO_URI), e)
        _client.close()
        _client = None
        raise
    logger.info("MongoDB 已连接 | target=%s", _safe_target(settings.MONGO_URI))


async def close_mongo() -> None:
    global _client
    if _client is not None:
        _client.close()
        _client = None
        logger.info("MongoDB 连接已关闭")


async def ping_mongo() -> bool:
    """健康检查用：连接池存在且 ping 成功时返回 ``True``。"""
    if _client is None:
        return False
    try:
        await _client[settings.MONGO_DB_NAME].command("ping")
    except PyMongoError as e:
        logger.warning("MongoDB ping 失败: %s", e)
        return False
    return True


def get_database() -> AsyncIOMotorDatabase:
    """获取业务数据库。

    Raises:
        RuntimeError: 在 ``connect_mongo()`` 之前调用。
    """
    if _client is None:
        raise RuntimeError("MongoDB 尚未初始化，请先调用 connect_mongo()")
    return _client[settings.MONGO_DB_NAME]
