"""
app.services.slot_manager
~~~~~~~~~~~~~~~~~~~~~~~~~

槽位管理 —— 每个房间固定两个身份槽位（A / B）的占用、释放与对账。

槽位占用记录是持久化的，可能比连接活得更久（崩溃、重启）；
真实在线状态由 ``LiveConnectionOracle`` 判定。两者的对账发生在:

- 进程启动：``clear_all()`` 清空所有占用记录（新进程的连接表为空）；
- 加入房间：请求的槽位被占用但占用者已不在线时，视为失效槽位并回收。
"""
from __future__ import annotations

from typing import Protocol

from app.core.logging import get_logger
from app.db.room_repository import RoomRepository
from app.schemas.chat import SLOT_ORDER, SlotName, SlotRecord

logger = get_logger(__name__)


class LiveConnectionOracle(Protocol):
    def is_live(self, connection_id: str) -> bool: ...


class SlotManager:
    """槽位管理器。

    Attributes:
        rooms: 房间 + 槽位仓库。
        oracle: 在线连接判定（通常是 ``ConnectionHub``）。
    """

    def __init__(self, rooms: RoomRepository, oracle: LiveConnectionOracle) -> None:
        self.rooms = rooms
        self.oracle = oracle

    async def available_slots(self, room_id: str) -> dict[SlotName, bool]:
        """返回两个槽位各自是否可用。缺失的槽位记录视为不可用。"""
        records = {record.slot: record for record in await self.rooms.find_slots(room_id)}
        return {
            slot: slot in records and records[slot].is_available
            for slot in SLOT_ORDER
        }

    async def is_available(self, room_id: str, slot: SlotName) -> bool:
        record = await self.rooms.find_slot(room_id, slot)
        return record is not None and record.is_available

    async def get(self, room_id: str, slot: SlotName) -> SlotRecord | None:
        return await self.rooms.find_slot(room_id, slot)

    async def claim(
        self,
        room_id: str,
        slot: SlotName,
        connection_id: str,
        username: str,
        expected: str | None = None,
    ) -> bool:
        """占用槽位。调用方须已确认资格。

        写入以 ``expected``（期望的当前占用者，默认空）为条件，
        槽位在此期间被他人抢占时返回 ``False``。
        """
        claimed = await self.rooms.set_occupant(
            room_id, slot, connection_id, username, expected=expected,
        )
        if claimed:
            logger.info("槽位已占用 | room=%s | slot=%s | user=%s", room_id, slot, username)
        else:
            logger.info("槽位抢占失败 | room=%s | slot=%s", room_id, slot)
        return claimed

    async def release(
        self,
        room_id: str,
        slot: SlotName,
        connection_id: str | None = None,
    ) -> bool:
        """释放槽位。给定 ``connection_id`` 时仅在其仍是占用者时释放。"""
        released = await self.rooms.clear_occupant(room_id, slot, connection_id)
        if released:
            logger.info("槽位已释放 | room=%s | slot=%s", room_id, slot)
        return released

    async def clear_all(self) -> int:
        """清空所有槽位占用记录（进程启动时调用一次），返回清空数量。"""
        cleared = await self.rooms.clear_all_occupants()
        logger.info("启动对账：清空 %d 个遗留槽位占用", cleared)
        return cleared

    def is_live(self, connection_id: str) -> bool:
        return self.oracle.is_live(connection_id)
