"""
app.schemas.chat
~~~~~~~~~~~~~~~~

聊天室领域记录 —— 房间、槽位、消息。

仓库层从 MongoDB 文档构造这些模型，服务层只与模型打交道。
``Message.to_payload()`` 负责生成推送给客户端的 camelCase 结构。
"""
from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field

SlotName = Literal["A", "B"]
MessageStatus = Literal["sent", "delivered", "read"]

# 自动分配时的槽位顺序
SLOT_ORDER: tuple[SlotName, ...] = ("A", "B")

# 消息状态只能沿此顺序前进
STATUS_RANK: dict[str, int] = {"sent": 0, "delivered": 1, "read": 2}


def can_advance(current: MessageStatus, target: MessageStatus) -> bool:
    """``target`` 是否严格晚于 ``current``。"""
    return STATUS_RANK[target] > STATUS_RANK[current]


class Room(BaseModel):
    """一个双人聊天房间。口令创建后不可修改。"""

    room_id: str = Field(..., description="房间唯一标识")
    name_a: str = Field(..., description="槽位 A 的显示名")
    name_b: str = Field(..., description="槽位 B 的显示名")
    passcode: str = Field(..., description="房间口令")
    created_at: datetime = Field(..., description="创建时间（UTC）")


class SlotRecord(BaseModel):
    """房间内的一个身份槽位。``connection_id`` 为空表示可用。"""

    room_id: str
    slot: SlotName
    connection_id: str | None = None
    username: str | None = None
    last_active: datetime

    @property
    def is_available(self) -> bool:
        return self.connection_id is None


class Message(BaseModel):
    """房间消息。``ts`` 为毫秒级 Unix 时间戳。"""

    id: str
    room_id: str
    sender_slot: SlotName
    sender_id: str = Field(..., description="发送时的连接 ID")
    sender_name: str
    text: str
    ts: int
    status: MessageStatus = "sent"

    def to_payload(self) -> dict[str, Any]:
        """转换为 ``message`` 事件 / 历史记录的推送结构。"""
        return {
            "text": self.text,
            "from": self.sender_name,
            "id": self.id,
            "senderId": self.sender_id,
            "senderSlot": self.sender_slot,
            "ts": self.ts,
            "status": self.status,
        }
