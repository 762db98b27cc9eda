"""
app.api.ws
~~~~~~~~~~

WebSocket 实时聊天接口 —— ``/ws``。

每个连接分配一个唯一 ID，对应一个 ``ChatSession``。帧协议（JSON）:

  - 客户端请求：``{"event": "join-room", "data": {...}, "ack": 1}``
  - 服务端应答：``{"event": "ack", "ack": 1, "data": {"ok": true, ...}}``
  - 服务端推送：``{"event": "message", "data": {...}}``

``ack`` 省略时服务端不返回应答。无论正常关闭还是网络异常断开，
都会执行 ``close_session`` 释放槽位并通知对方。
"""
from __future__ import annotations

import json
import uuid
from typing import Any

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from app.core.logging import conn_id_ctx_var, get_logger
from app.services.coordinator import SessionCoordinator

logger = get_logger(__name__)

router: APIRouter = APIRouter()

_MALFORMED_FRAME: dict[str, Any] = {
    "event": "error",
    "data": {"ok": False, "error": "Malformed frame"},
}


def _parse_frame(raw: str) -> tuple[str, Any, Any] | None:
    """解析客户端帧，返回 ``(event, data, ack)``；格式不合法时返回 ``None``。"""
    try:
        frame = json.loads(raw)
    except json.JSONDecodeError:
        return None
    if not isinstance(frame, dict) or not isinstance(frame.get("event"), str):
        return None
    return frame["event"], frame.get("data"), frame.get("ack")


@router.websocket("/ws")
async def websocket_chat_endpoint(websocket: WebSocket) -> None:
    """WebSocket 聊天端点。

    Args:
        websocket: FastAPI WebSocket 连接对象。
    """
    connection_id = uuid.uuid4().hex
    token = conn_id_ctx_var.set(connection_id[:8])
    coordinator: SessionCoordinator = websocket.app.state.coordinator

    await websocket.accept()
    session = coordinator.open_session(connection_id, websocket)
    logger.info("连接已建立 | 在线连接: %d", coordinator.hub.online_count)

    try:
        while True:
            raw: str = await websocket.receive_text()
            frame = _parse_frame(raw)
            if frame is None:
                logger.warning("收到无法解析的帧，已忽略")
                await websocket.send_json(_MALFORMED_FRAME)
                continue

            event, data, ack = frame
            response = await coordinator.dispatch(session, event, data)
            if ack is not None and response is not None:
                await websocket.send_json({"event": "ack", "ack": ack, "data": response})
    except WebSocketDisconnect:
        logger.info("连接断开")
    except Exception as e:
        logger.error("WebSocket 异常: %s", e, exc_info=True)
    finally:
        try:
            await coordinator.close_session(session)
            logger.info("会话已清理 | 在线连接: %d", coordinator.hub.online_count)
        finally:
            conn_id_ctx_var.reset(token)
