"""
tests.conftest
~~~~~~~~~~~~~~

共享 pytest fixtures —— 用内存版仓库替代 MongoDB、用假 WebSocket 记录推送，
使服务层测试无需数据库即可运行。
"""
from __future__ import annotations

import os
from datetime import datetime, timezone
from typing import Any

import pytest

# ── 在所有测试导入前设置环境变量 ─────────────────────────────────────
os.environ.setdefault("ENVIRONMENT", "test")

from app.core.exceptions import RoomAlreadyExistsError  # noqa: E402
from app.schemas.chat import SLOT_ORDER, Message, Room, SlotRecord  # noqa: E402
from app.services.connection_hub import ConnectionHub  # noqa: E402
from app.services.coordinator import SessionCoordinator  # noqa: E402
from app.services.message_ledger import MessageLedger  # noqa: E402
from app.services.room_registry import RoomRegistry  # noqa: E402
from app.services.session import ChatSession  # noqa: E402
from app.services.slot_manager import SlotManager  # noqa: E402


# ── 内存仓库 ──────────────────────────────────────────────────────────

class InMemoryRoomRepository:
    """与 ``RoomRepository`` 接口一致的内存实现。"""

    def __init__(self) -> None:
        self.rooms: dict[str, Room] = {}
        self.slots: dict[tuple[str, str], SlotRecord] = {}

    async def insert_room(self, room: Room) -> None:
        if room.room_id in self.rooms:
            raise RoomAlreadyExistsError()
        self.rooms[room.room_id] = room
        now = datetime.now(timezone.utc)
        for slot in SLOT_ORDER:
            self.slots[(room.room_id, slot)] = SlotRecord(
                room_id=room.room_id, slot=slot, last_active=now,
            )

    async def find_room(self, room_id: str) -> Room | None:
        return self.rooms.get(room_id)

    async def delete_room(self, room_id: str) -> bool:
        for slot in SLOT_ORDER:
            self.slots.pop((room_id, slot), None)
        return self.rooms.pop(room_id, None) is not None

    async def find_inactive_room_ids(self, cutoff: datetime) -> list[str]:
        latest: dict[str, datetime] = {}
        for (room_id, _), record in self.slots.items():
            if room_id not in latest or record.last_active > latest[room_id]:
                latest[room_id] = record.last_active
        return [room_id for room_id, last in latest.items() if last < cutoff]

    async def find_slots(self, room_id: str) -> list[SlotRecord]:
        return [
            self.slots[(room_id, slot)] for slot in SLOT_ORDER
            if (room_id, slot) in self.slots
        ]

    async def find_slot(self, room_id: str, slot: str) -> SlotRecord | None:
        return self.slots.get((room_id, slot))

    async def set_occupant(
        self,
        room_id: str,
        slot: str,
        connection_id: str,
        username: str,
        expected: str | None = None,
    ) -> bool:
        record = self.slots.get((room_id, slot))
        if record is None or record.connection_id != expected:
            return False
        self.slots[(room_id, slot)] = record.model_copy(update={
            "connection_id": connection_id,
            "username": username,
            "last_active": datetime.now(timezone.utc),
        })
        return True

    async def clear_occupant(
        self, room_id: str, slot: str, connection_id: str | None = None,
    ) -> bool:
        record = self.slots.get((room_id, slot))
        if record is None:
            return False
        if connection_id is not None and record.connection_id != connection_id:
            return False
        self.slots[(room_id, slot)] = record.model_copy(update={
            "connection_id": None,
            "last_active": datetime.now(timezone.utc),
        })
        return True

    async def clear_all_occupants(self) -> int:
        cleared = 0
        for key, record in self.slots.items():
            if record.connection_id is not None:
                self.slots[key] = record.model_copy(update={"connection_id": None})
                cleared += 1
        return cleared


class InMemoryMessageRepository:
    """与 ``MessageRepository`` 接口一致的内存实现（``(ts, seq)`` 排序）。"""

    def __init__(self) -> None:
        self.messages: dict[str, Message] = {}
        self.seqs: dict[str, int] = {}
        self._next_seq = 0

    async def insert(self, message: Message) -> None:
        self._next_seq += 1
        self.messages[message.id] = message
        self.seqs[message.id] = self._next_seq

    async def find(self, message_id: str) -> Message | None:
        return self.messages.get(message_id)

    async def find_by_room(self, room_id: str) -> list[Message]:
        found = [m for m in self.messages.values() if m.room_id == room_id]
        return sorted(found, key=lambda m: (m.ts, self.seqs[m.id]))

    async def update_status(
        self, message_id: str, status: str, from_statuses: list[str] | None = None,
    ) -> bool:
        message = self.messages.get(message_id)
        if message is None:
            return False
        if from_statuses is not None and message.status not in from_statuses:
            return False
        self.messages[message_id] = message.model_copy(update={"status": status})
        return True

    async def update_status_many(self, message_ids: list[str], status: str) -> int:
        changed = 0
        for message_id in message_ids:
            message = self.messages.get(message_id)
            if message is not None and message.status != status:
                self.messages[message_id] = message.model_copy(update={"status": status})
                changed += 1
        return changed

    async def delete(self, message_id: str) -> bool:
        return self.messages.pop(message_id, None) is not None

    async def delete_by_room(self, room_id: str) -> int:
        doomed = [mid for mid, m in self.messages.items() if m.room_id == room_id]
        for message_id in doomed:
            del self.messages[message_id]
        return len(doomed)


# ── 假 WebSocket ──────────────────────────────────────────────────────

class FakeWebSocket:
    """记录所有 ``send_json`` 推送；``broken=True`` 时模拟已断开的连接。"""

    def __init__(self, broken: bool = False) -> None:
        self.sent: list[dict[str, Any]] = []
        self.broken = broken

    async def send_json(self, data: Any) -> None:
        if self.broken:
            raise RuntimeError("socket closed")
        self.sent.append(data)

    def events(self, name: str) -> list[dict[str, Any]]:
        """返回指定事件名的所有推送负载。"""
        return [frame["data"] for frame in self.sent if frame["event"] == name]

    def clear(self) -> None:
        self.sent.clear()


# ── Fixtures ──────────────────────────────────────────────────────────

@pytest.fixture()
def room_repo() -> InMemoryRoomRepository:
    return InMemoryRoomRepository()


@pytest.fixture()
def message_repo() -> InMemoryMessageRepository:
    return InMemoryMessageRepository()


@pytest.fixture()
def hub() -> ConnectionHub:
    return ConnectionHub()


@pytest.fixture()
def registry(
    room_repo: InMemoryRoomRepository, message_repo: InMemoryMessageRepository,
) -> RoomRegistry:
    return RoomRegistry(room_repo, message_repo, passcode_min_length=4)


@pytest.fixture()
def slot_manager(room_repo: InMemoryRoomRepository, hub: ConnectionHub) -> SlotManager:
    return SlotManager(room_repo, oracle=hub)


@pytest.fixture()
def ledger(message_repo: InMemoryMessageRepository) -> MessageLedger:
    return MessageLedger(message_repo)


@pytest.fixture()
def coordinator(
    registry: RoomRegistry,
    slot_manager: SlotManager,
    ledger: MessageLedger,
    hub: ConnectionHub,
) -> SessionCoordinator:
    return SessionCoordinator(registry=registry, slots=slot_manager, ledger=ledger, hub=hub)


@pytest.fixture()
def make_websocket():
    """工厂：创建 FakeWebSocket。"""
    return FakeWebSocket


@pytest.fixture()
def connect(coordinator: SessionCoordinator):
    """工厂：打开一个新连接，返回 ``(session, websocket)``。"""
    counter = iter(range(1, 1000))

    def _connect(connection_id: str | None = None) -> tuple[ChatSession, FakeWebSocket]:
        websocket = FakeWebSocket()
        session = coordinator.open_session(connection_id or f"conn-{next(counter)}", websocket)
        return session, websocket

    return _connect
