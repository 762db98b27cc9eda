"""
app.services.connection_hub
~~~~~~~~~~~~~~~~~~~~~~~~~~~

WebSocket 连接中心 —— 本进程内的在线连接表 + 房间分组广播能力。

同时充当「在线连接判定」：``is_live(connection_id)`` 为真当且仅当
该连接仍注册在本进程中。进程重启后连接表为空，因此启动时必须清空
所有持久化的槽位占用记录（见 ``SlotManager.clear_all``）。

所有推送帧结构统一为 ``{"event": 名称, "data": 负载}``。
"""
from __future__ import annotations

import asyncio
from typing import Any

from fastapi import WebSocket

from app.core.logging import get_logger

logger = get_logger(__name__)


class ConnectionHub:
    """在线连接与房间分组管理器。

    Attributes:
        connections: 连接 ID → WebSocket。
        groups: 房间 ID → 已加入该房间广播组的连接 ID 集合。
    """

    def __init__(self) -> None:
        self.connections: dict[str, WebSocket] = {}
        self.groups: dict[str, set[str]] = {}

    # ── 连接表 ────────────────────────────────────────────────────────

    def register(self, connection_id: str, websocket: WebSocket) -> None:
        """登记一个已 accept 的连接。"""
        self.connections[connection_id] = websocket

    def unregister(self, connection_id: str) -> None:
        """移除连接，并把它从所有分组中摘除。可重复调用。"""
        self.connections.pop(connection_id, None)
        for group in list(self.groups):
            self.leave_group(group, connection_id)

    def is_live(self, connection_id: str) -> bool:
        return connection_id in self.connections

    @property
    def online_count(self) -> int:
        """本进程当前在线连接数。"""
        return len(self.connections)

    # ── 分组 ──────────────────────────────────────────────────────────

    def join_group(self, group: str, connection_id: str) -> None:
        self.groups.setdefault(group, set()).add(connection_id)

    def leave_group(self, group: str, connection_id: str) -> None:
        members = self.groups.get(group)
        if members is None:
            return
        members.discard(connection_id)
        if not members:
            del self.groups[group]

    def group_size(self, group: str) -> int:
        return len(self.groups.get(group, ()))

    # ── 推送 ──────────────────────────────────────────────────────────

    async def send_to(self, connection_id: str, event: str, data: dict[str, Any]) -> bool:
        """向单个连接推送事件。连接不在线时返回 ``False``。"""
        websocket = self.connections.get(connection_id)
        if websocket is None:
            logger.debug("推送目标不在线，跳过 | event=%s | target=%s", event, connection_id)
            return False
        try:
            await websocket.send_json({"event": event, "data": data})
        except Exception as e:
            logger.warning("推送失败，移除断开的连接 | event=%s | error=%s", event, e)
            self.unregister(connection_id)
            return False
        return True

    async def broadcast(
        self,
        group: str,
        event: str,
        data: dict[str, Any],
        exclude: str | None = None,
    ) -> int:
        """向分组内所有连接（可排除发送者）广播事件，返回成功推送数。"""
        targets = [
            cid for cid in self.groups.get(group, ())
            if cid != exclude and cid in self.connections
        ]
        frame = {"event": event, "data": data}
        tasks = [self.connections[cid].send_json(frame) for cid in targets]
        results = await asyncio.gather(*tasks, return_exceptions=True)

        delivered = 0
        for cid, result in zip(targets, results):
            if isinstance(result, Exception):
                logger.warning("广播失败，移除断开的连接 | event=%s | room=%s", event, group)
                self.unregister(cid)
            else:
                delivered += 1
        return delivered
