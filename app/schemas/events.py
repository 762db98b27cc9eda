"""
app.schemas.events
~~~~~~~~~~~~~~~~~~

WebSocket 入站请求体的 Pydantic 模型。

客户端使用 camelCase 字段名（``roomId``、``messageIds`` ...），
模型内部使用 snake_case，通过 alias 对应。字符串字段统一去除首尾空白。
"""
from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

from app.schemas.chat import SlotName


class _Request(BaseModel):
    model_config = ConfigDict(
        populate_by_name=True,
        str_strip_whitespace=True,
        extra="ignore",
    )


class CreateRoomRequest(_Request):
    """``create-room`` 请求体。口令长度由 RoomRegistry 按配置校验。"""

    room_id: str = Field(..., alias="roomId", min_length=1, max_length=64)
    name_a: str = Field(..., alias="nameA", min_length=1, max_length=50)
    name_b: str = Field(..., alias="nameB", min_length=1, max_length=50)
    passcode: str = Field(..., max_length=128)


class GetRoomInfoRequest(_Request):
    room_id: str = Field(..., alias="roomId", min_length=1, max_length=64)
    passcode: str = Field(..., max_length=128)


class JoinRoomRequest(_Request):
    """``join-room`` 请求体。``slot`` 省略时自动分配。"""

    room_id: str = Field(..., alias="roomId", min_length=1, max_length=64)
    username: str = Field(..., min_length=1, max_length=50)
    slot: SlotName | None = None
    passcode: str = Field(..., max_length=128)


class SendMessageRequest(_Request):
    text: str = Field(..., min_length=1, max_length=5000)


class DeleteMessageRequest(_Request):
    message_id: str = Field(..., alias="messageId", min_length=1)


class ClearChatRequest(_Request):
    pass


class UpdateUsernameRequest(_Request):
    username: str = Field(..., min_length=1, max_length=50)


class MarkMessagesReadRequest(_Request):
    message_ids: list[str] = Field(..., alias="messageIds", max_length=500)


class TypingRequest(_Request):
    is_typing: bool = Field(default=False, alias="isTyping")
