"""
app.services.session
~~~~~~~~~~~~~~~~~~~~

单个 WebSocket 连接的会话状态机::

    UNBOUND ──join-room──▶ BOUND(room_id, slot, username) ──disconnect──▶ CLOSED

``ChatSession`` 只保存连接级的瞬时状态，不访问存储。
"""
from __future__ import annotations

from enum import Enum

from app.core.exceptions import NotBoundError
from app.schemas.chat import SlotName


class SessionState(str, Enum):
    UNBOUND = "unbound"
    BOUND = "bound"
    CLOSED = "closed"


class ChatSession:
    """一个连接的会话。

    Attributes:
        connection_id: 连接唯一标识（对客户端即 ``socketId``）。
        room_id: 已加入的房间，未绑定时为 ``None``。
        slot: 占用的槽位。
        username: 当前会话显示名（``update-username`` 只修改这里）。
        state: 当前状态。
    """

    def __init__(self, connection_id: str) -> None:
        self.connection_id = connection_id
        self.room_id: str | None = None
        self.slot: SlotName | None = None
        self.username: str | None = None
        self.state: SessionState = SessionState.UNBOUND

    @property
    def is_bound(self) -> bool:
        return self.state is SessionState.BOUND

    def bind(self, room_id: str, slot: SlotName, username: str) -> None:
        self.room_id = room_id
        self.slot = slot
        self.username = username
        self.state = SessionState.BOUND

    def require_bound(self) -> str:
        """确认会话已绑定房间并返回房间 ID。

        Raises:
            NotBoundError: 会话尚未加入房间。
        """
        if not self.is_bound or self.room_id is None:
            raise NotBoundError()
        return self.room_id

    def close(self) -> None:
        self.state = SessionState.CLOSED

    def __repr__(self) -> str:
        return (
            f"ChatSession(connection_id={self.connection_id!r}, state={self.state.value}, "
            f"room_id={self.room_id!r}, slot={self.slot!r})"
        )
