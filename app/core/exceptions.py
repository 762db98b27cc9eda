"""
app.core.exceptions
~~~~~~~~~~~~~~~~~~~

聊天室业务异常体系。

所有业务异常都继承 ``ChatRoomError``，``message`` 即返回给客户端的
``error`` 文本。协调器统一捕获并转换为 ``{"ok": false, "error": ...}``，
任何业务异常都不会断开连接，也不会影响其他房间。

分类:
  - ``ValidationError``   —— 字段缺失 / 格式错误，发生在任何写操作之前
  - ``NotFoundError``     —— 房间或消息不存在，无副作用
  - ``UnauthorizedError`` —— 口令不匹配，无副作用
  - ``ConflictError``     —— 房间已存在 / 槽位被占 / 房间已满
  - ``NotBoundError``     —— 尚未加入房间就执行聊天操作
"""
from __future__ import annotations


class ChatRoomError(Exception):
    """业务异常基类。"""

    default_message: str = "Request failed"

    def __init__(self, message: str | None = None) -> None:
        self.message: str = message or self.default_message
        super().__init__(self.message)


# ── 校验 ──────────────────────────────────────────────────────────────

class ValidationError(ChatRoomError):
    default_message = "Invalid request"


class InvalidPayloadError(ValidationError):
    """请求体未通过 pydantic 校验。"""


class PasscodeTooShortError(ValidationError):
    default_message = "Passcode too short"


# ── 不存在 ────────────────────────────────────────────────────────────

class NotFoundError(ChatRoomError):
    default_message = "Not found"


class RoomNotFoundError(NotFoundError):
    default_message = "Room not found"


class MessageNotFoundError(NotFoundError):
    default_message = "Message not found"


# ── 鉴权 ──────────────────────────────────────────────────────────────

class UnauthorizedError(ChatRoomError):
    default_message = "Unauthorized"


class InvalidPasscodeError(UnauthorizedError):
    default_message = "Invalid passcode"


# ── 冲突 ──────────────────────────────────────────────────────────────

class ConflictError(ChatRoomError):
    default_message = "Conflict"


class RoomAlreadyExistsError(ConflictError):
    default_message = "Room already exists"


class SlotTakenError(ConflictError):
    default_message = "Slot is already taken"


class RoomFullError(ConflictError):
    default_message = "Room is full (2 participants max)"


class AlreadyJoinedError(ConflictError):
    default_message = "Already joined a room"


# ── 会话状态 ──────────────────────────────────────────────────────────

class NotBoundError(ChatRoomError):
    default_message = "Not in a room"
