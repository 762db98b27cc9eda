"""
app.services.coordinator
~~~~~~~~~~~~~~~~~~~~~~~~

会话协调器 —— 驱动每个连接的会话状态机，组合房间注册表、槽位管理、
消息账本和连接中心，处理全部入站请求。

所有请求在同一个事件循环中交错执行；业务异常统一转换为
``{"ok": false, "error": ...}``，不会断开连接，也不会影响其他房间。

入站事件 → 处理方法:
  - ``create-room``        → ``create_room``
  - ``get-room-info``      → ``get_room_info``
  - ``join-room``          → ``join_room``
  - ``send-message``       → ``send_message``
  - ``mark-messages-read`` → ``mark_messages_read``
  - ``delete-message``     → ``delete_message``
  - ``clear-chat``         → ``clear_chat``
  - ``update-username``    → ``update_username``
  - ``typing``             → ``typing``（无应答）
"""
from __future__ import annotations

import time
import uuid
from collections.abc import Awaitable, Callable
from typing import Any

from fastapi import WebSocket
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from app.core.exceptions import (
    AlreadyJoinedError,
    ChatRoomError,
    InvalidPasscodeError,
    InvalidPayloadError,
    MessageNotFoundError,
    RoomFullError,
    RoomNotFoundError,
    SlotTakenError,
)
from app.core.logging import get_logger
from app.schemas.chat import SLOT_ORDER, Message, SlotName
from app.schemas.events import (
    ClearChatRequest,
    CreateRoomRequest,
    DeleteMessageRequest,
    GetRoomInfoRequest,
    JoinRoomRequest,
    MarkMessagesReadRequest,
    SendMessageRequest,
    TypingRequest,
    UpdateUsernameRequest,
)
from app.services.connection_hub import ConnectionHub
from app.services.message_ledger import MessageLedger
from app.services.room_registry import RoomRegistry
from app.services.session import ChatSession
from app.services.slot_manager import SlotManager

logger = get_logger(__name__)

# 每个房间最多两名在线参与者
MAX_PARTICIPANTS: int = 2

Response = dict[str, Any]
Handler = Callable[[ChatSession, Any], Awaitable[Response | None]]


def _parse(model: type[BaseModel], data: Any) -> Any:
    """用 pydantic 校验请求体，失败时转换为 ``InvalidPayloadError``。"""
    try:
        return model.model_validate(data if data is not None else {})
    except PydanticValidationError as e:
        first = e.errors()[0]
        field = ".".join(str(part) for part in first["loc"]) or "request"
        raise InvalidPayloadError(f"Invalid {field}: {first['msg']}") from e


class SessionCoordinator:
    """会话协调器（每个进程一个实例）。

    Attributes:
        registry: 房间注册表。
        slots: 槽位管理器。
        ledger: 消息账本。
        hub: 连接中心（广播 + 在线判定）。
        sessions: 连接 ID → 会话。
    """

    def __init__(
        self,
        registry: RoomRegistry,
        slots: SlotManager,
        ledger: MessageLedger,
        hub: ConnectionHub,
    ) -> None:
        self.registry = registry
        self.slots = slots
        self.ledger = ledger
        self.hub = hub
        self.sessions: dict[str, ChatSession] = {}
        self._handlers: dict[str, tuple[type[BaseModel], Handler]] = {
            "create-room": (CreateRoomRequest, self.create_room),
            "get-room-info": (GetRoomInfoRequest, self.get_room_info),
            "join-room": (JoinRoomRequest, self.join_room),
            "send-message": (SendMessageRequest, self.send_message),
            "mark-messages-read": (MarkMessagesReadRequest, self.mark_messages_read),
            "delete-message": (DeleteMessageRequest, self.delete_message),
            "clear-chat": (ClearChatRequest, self.clear_chat),
            "update-username": (UpdateUsernameRequest, self.update_username),
            "typing": (TypingRequest, self.typing),
        }

    # ── 连接生命周期 ──────────────────────────────────────────────────

    def open_session(self, connection_id: str, websocket: WebSocket) -> ChatSession:
        """登记新连接并创建未绑定的会话。"""
        self.hub.register(connection_id, websocket)
        session = ChatSession(connection_id)
        self.sessions[connection_id] = session
        return session

    async def close_session(self, session: ChatSession) -> None:
        """连接断开（主动或异常）时调用：释放槽位并通知对方。

        槽位释放失败只记录日志，离开广播组和 ``peer-left`` 通知照常执行；
        残留的占用记录会在下次加入时按失效槽位回收。
        """
        connection_id = session.connection_id
        try:
            if session.is_bound and session.room_id and session.slot:
                room_id = session.room_id
                try:
                    await self.slots.release(room_id, session.slot, connection_id=connection_id)
                except Exception as e:
                    logger.error(
                        "释放槽位失败 | room=%s | slot=%s | error=%s",
                        room_id, session.slot, e, exc_info=True,
                    )
                self.hub.leave_group(room_id, connection_id)
                await self.hub.broadcast(
                    room_id,
                    "peer-left",
                    {"username": session.username, "id": connection_id},
                    exclude=connection_id,
                )
                logger.info(
                    "参与者离开 | room=%s | slot=%s | 剩余在线 %d",
                    room_id, session.slot, self.hub.group_size(room_id),
                )
        finally:
            session.close()
            self.hub.unregister(connection_id)
            self.sessions.pop(connection_id, None)

    async def dispatch(self, session: ChatSession, event: str, data: Any) -> Response | None:
        """处理一个入站请求，返回应答（``typing`` 返回 ``None``）。"""
        entry = self._handlers.get(event)
        if entry is None:
            logger.warning("未知事件 | event=%s", event)
            return {"ok": False, "error": f"Unknown event: {event}"}

        model, handler = entry
        try:
            request = _parse(model, data)
            return await handler(session, request)
        except ChatRoomError as e:
            logger.warning("请求被拒绝 | event=%s | error=%s", event, e.message)
            return {"ok": False, "error": e.message}
        except Exception as e:
            logger.error("请求处理异常 | event=%s | error=%s", event, e, exc_info=True)
            return {"ok": False, "error": "Internal server error"}

    # ── 房间 ──────────────────────────────────────────────────────────

    async def create_room(self, session: ChatSession, req: CreateRoomRequest) -> Response:
        room = await self.registry.create(req.room_id, req.name_a, req.name_b, req.passcode)
        return {"ok": True, "roomId": room.room_id}

    async def get_room_info(self, session: ChatSession, req: GetRoomInfoRequest) -> Response:
        room = await self.registry.get(req.room_id)
        if room is None:
            return {"ok": True, "exists": False}
        if not await self.registry.verify_passcode(req.room_id, req.passcode):
            raise InvalidPasscodeError()
        return {
            "ok": True,
            "exists": True,
            "nameA": room.name_a,
            "nameB": room.name_b,
            "availableSlots": await self.slots.available_slots(room.room_id),
        }

    async def join_room(self, session: ChatSession, req: JoinRoomRequest) -> Response:
        """加入房间。

        1. 房间存在 → 口令匹配（按此顺序检查）；
        2. 未指定槽位时按 A、B 顺序自动分配；
        3. 指定槽位被占用时询问在线判定，占用者已离线则回收失效槽位；
        4. 独立复核广播组人数，已有两人在线则拒绝；
        5. 占用槽位、加入广播组、绑定会话；
        6. 加入后满两人时，房间内仍为 ``sent`` 的消息都推进到 ``delivered``，返回人数和历史消息。
        """
        if session.is_bound:
            raise AlreadyJoinedError()

        room = await self.registry.get(req.room_id)
        if room is None:
            raise RoomNotFoundError()
        if not await self.registry.verify_passcode(req.room_id, req.passcode):
            raise InvalidPasscodeError()

        room_id = room.room_id
        connection_id = session.connection_id
        slot = await self._pick_slot(room_id, req.slot)

        if self.hub.group_size(room_id) >= MAX_PARTICIPANTS:
            raise RoomFullError()
        if not await self.slots.claim(room_id, slot, connection_id, req.username):
            raise SlotTakenError()

        # 占用写入期间可能有其他连接加入广播组，此处与 join_group 之间没有 await
        if self.hub.group_size(room_id) >= MAX_PARTICIPANTS:
            await self.slots.release(room_id, slot, connection_id=connection_id)
            raise RoomFullError()
        self.hub.join_group(room_id, connection_id)
        session.bind(room_id, slot, req.username)

        participants = self.hub.group_size(room_id)
        if participants >= MAX_PARTICIPANTS:
            await self._deliver_pending(await self.ledger.by_room(room_id))
        history = await self.ledger.by_room(room_id)
        logger.info(
            "参与者加入 | room=%s | slot=%s | user=%s | 在线 %d",
            room_id, slot, req.username, participants,
        )

        await self.hub.broadcast(
            room_id,
            "peer-joined",
            {"username": req.username, "id": connection_id},
            exclude=connection_id,
        )
        await self.hub.broadcast(
            room_id, "room-info", {"roomId": room_id, "participants": participants},
        )
        return {
            "ok": True,
            "participants": participants,
            "history": [message.to_payload() for message in history],
            "slot": slot,
        }

    async def _deliver_pending(self, messages: list[Message]) -> None:
        """接收方已在场：把仍为 ``sent`` 的消息推进到 ``delivered`` 并通知原发送连接。"""
        for message in messages:
            if message.status != "sent":
                continue
            if await self.ledger.advance_status(message.id, "delivered"):
                await self.hub.send_to(
                    message.sender_id,
                    "message-status-updated",
                    {"messageId": message.id, "status": "delivered"},
                )

    @staticmethod
    def _is_own(session: ChatSession, message: Message) -> bool:
        return message.sender_id == session.connection_id or message.sender_slot == session.slot

    async def _pick_slot(self, room_id: str, requested: SlotName | None) -> SlotName:
        """确定本次加入使用的槽位，必要时回收失效槽位。"""
        if requested is None:
            available = await self.slots.available_slots(room_id)
            for slot in SLOT_ORDER:
                if available[slot]:
                    return slot
            raise RoomFullError()

        record = await self.slots.get(room_id, requested)
        if record is None:
            raise RoomNotFoundError()
        if record.connection_id is not None:
            if self.slots.is_live(record.connection_id):
                raise SlotTakenError()
            logger.info(
                "回收失效槽位 | room=%s | slot=%s | stale=%s",
                room_id, requested, record.connection_id,
            )
            await self.slots.release(room_id, requested, connection_id=record.connection_id)
        return requested

    # ── 消息 ──────────────────────────────────────────────────────────

    async def send_message(self, session: ChatSession, req: SendMessageRequest) -> Response:
        """发送消息：入账 → 全房间广播 → 对方在场则标记 delivered 并仅通知发送者。"""
        room_id = session.require_bound()
        peer_present = self.hub.group_size(room_id) > 1

        message = await self.ledger.append(Message(
            id=uuid.uuid4().hex,
            room_id=room_id,
            sender_slot=session.slot,
            sender_id=session.connection_id,
            sender_name=session.username,
            text=req.text,
            ts=int(time.time() * 1000),
        ))
        await self.hub.broadcast(room_id, "message", message.to_payload())

        if peer_present and await self.ledger.advance_status(message.id, "delivered"):
            await self.hub.send_to(
                session.connection_id,
                "message-status-updated",
                {"messageId": message.id, "status": "delivered"},
            )
        return {"ok": True, "messageId": message.id}

    async def mark_messages_read(
        self, session: ChatSession, req: MarkMessagesReadRequest,
    ) -> Response:
        """把对方发来的消息标记为已读，并直接通知原发送连接。

        自己发的、不属于本房间的、不存在的、已读的消息都静默跳过。
        仍为 ``sent`` 的消息先经过 ``delivered``，状态序列始终是 sent → delivered → read 的前缀。
        """
        room_id = session.require_bound()

        targets: list[Message] = []
        for message_id in dict.fromkeys(req.message_ids):
            message = await self.ledger.get(message_id)
            if message is None or message.room_id != room_id:
                continue
            if self._is_own(session, message) or message.status == "read":
                continue
            targets.append(message)

        await self._deliver_pending(targets)
        await self.ledger.mark_read([message.id for message in targets])
        for message in targets:
            await self.hub.send_to(
                message.sender_id,
                "message-status-updated",
                {"messageId": message.id, "status": "read"},
            )
        return {"ok": True}

    async def delete_message(self, session: ChatSession, req: DeleteMessageRequest) -> Response:
        room_id = session.require_bound()
        message = await self.ledger.get(req.message_id)
        if message is None or message.room_id != room_id:
            raise MessageNotFoundError()

        await self.ledger.delete(message.id)
        await self.hub.broadcast(room_id, "message-deleted", {"messageId": message.id})
        return {"ok": True}

    async def clear_chat(self, session: ChatSession, req: ClearChatRequest) -> Response:
        room_id = session.require_bound()
        await self.ledger.clear_by_room(room_id)
        await self.hub.broadcast(room_id, "chat-cleared", {})
        return {"ok": True}

    # ── 会话 ──────────────────────────────────────────────────────────

    async def update_username(self, session: ChatSession, req: UpdateUsernameRequest) -> Response:
        """只修改本会话的显示名，不修改房间登记的参与者名称。"""
        room_id = session.require_bound()
        old_username = session.username
        session.username = req.username
        await self.hub.broadcast(
            room_id,
            "username-changed",
            {
                "socketId": session.connection_id,
                "oldUsername": old_username,
                "newUsername": req.username,
            },
        )
        return {"ok": True}

    async def typing(self, session: ChatSession, req: TypingRequest) -> None:
        if not session.is_bound or session.room_id is None:
            return None
        await self.hub.broadcast(
            session.room_id,
            "peer-typing",
            {"username": session.username, "isTyping": req.is_typing},
            exclude=session.connection_id,
        )
        return None
