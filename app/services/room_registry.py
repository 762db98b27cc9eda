"""
app.services.room_registry
~~~~~~~~~~~~~~~~~~~~~~~~~~

房间注册表 —— 创建 / 查询 / 口令校验 / 删除房间。
"""
from __future__ import annotations

import hmac
from datetime import datetime, timedelta, timezone

from app.core.exceptions import PasscodeTooShortError
from app.core.logging import get_logger
from app.db.message_repository import MessageRepository
from app.db.room_repository import RoomRepository
from app.schemas.chat import Room

logger = get_logger(__name__)


class RoomRegistry:
    """房间注册表。

    删除房间时级联删除其槽位（RoomRepository）和消息（MessageRepository）。

    Attributes:
        rooms: 房间 + 槽位仓库。
        messages: 消息仓库。
        passcode_min_length: 口令去除首尾空白后的最小长度。
    """

    def __init__(
        self,
        rooms: RoomRepository,
        messages: MessageRepository,
        passcode_min_length: int = 4,
    ) -> None:
        self.rooms = rooms
        self.messages = messages
        self.passcode_min_length = passcode_min_length

    async def create(self, room_id: str, name_a: str, name_b: str, passcode: str) -> Room:
        """创建房间并初始化两个空槽位。

        Raises:
            PasscodeTooShortError: 口令长度不足。
            RoomAlreadyExistsError: 房间 ID 已存在。
        """
        passcode = passcode.strip()
        if len(passcode) < self.passcode_min_length:
            raise PasscodeTooShortError(
                f"Passcode must be at least {self.passcode_min_length} characters",
            )
        room = Room(
            room_id=room_id,
            name_a=name_a,
            name_b=name_b,
            passcode=passcode,
            created_at=datetime.now(timezone.utc),
        )
        await self.rooms.insert_room(room)
        logger.info("房间已创建 | room_id=%s | A=%s | B=%s", room_id, name_a, name_b)
        return room

    async def get(self, room_id: str) -> Room | None:
        return await self.rooms.find_room(room_id)

    async def verify_passcode(self, room_id: str, candidate: str) -> bool:
        """校验口令。房间不存在或口令不匹配都返回 ``False``。"""
        room = await self.rooms.find_room(room_id)
        if room is None:
            return False
        return hmac.compare_digest(
            room.passcode.encode("utf-8"),
            candidate.strip().encode("utf-8"),
        )

    async def delete(self, room_id: str) -> bool:
        deleted = await self.rooms.delete_room(room_id)
        removed_messages = await self.messages.delete_by_room(room_id)
        logger.info("房间已删除 | room_id=%s | 消息 %d 条", room_id, removed_messages)
        return deleted

    async def remove_inactive(self, days: int) -> int:
        """删除最近一次槽位活动早于 ``days`` 天前的房间，返回删除数量。"""
        cutoff = datetime.now(timezone.utc) - timedelta(days=days)
        room_ids = await self.rooms.find_inactive_room_ids(cutoff)
        for room_id in room_ids:
            await self.delete(room_id)
        logger.info("清理不活跃房间 | days=%d | 删除 %d 个", days, len(room_ids))
        return len(room_ids)
