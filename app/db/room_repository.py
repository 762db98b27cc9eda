"""
app.db.room_repository
~~~~~~~~~~~~~~~~~~~~~~

房间与槽位持久化仓库 —— 封装 MongoDB ``rooms`` / ``slots`` 两个集合。

- ``rooms``：``_id`` 即房间 ID，天然保证唯一。
- ``slots``：每个房间固定两条记录（A / B），``(room_id, slot)`` 唯一索引。

占用槽位使用「期望当前占用者」作为过滤条件的单文档更新，
并发抢占同一槽位时只有一个请求能命中。
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo.errors import DuplicateKeyError, PyMongoError

from app.core.exceptions import RoomAlreadyExistsError
from app.core.logging import get_logger
from app.schemas.chat import SLOT_ORDER, Room, SlotName, SlotRecord

logger = get_logger(__name__)

_ROOMS_COLLECTION = "rooms"
_SLOTS_COLLECTION = "slots"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _room_from_doc(doc: dict[str, Any]) -> Room:
    data = dict(doc)
    data["room_id"] = data.pop("_id")
    return Room.model_validate(data)


def _slot_from_doc(doc: dict[str, Any]) -> SlotRecord:
    data = dict(doc)
    data.pop("_id", None)
    return SlotRecord.model_validate(data)


class RoomRepository:
    """房间 + 槽位持久化仓库。

    Attributes:
        db: MongoDB 数据库实例。
    """

    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self.db = db
        self._rooms = db[_ROOMS_COLLECTION]
        self._slots = db[_SLOTS_COLLECTION]
        self._indexes_created = False

    async def _ensure_indexes(self) -> None:
        """确保索引已创建（惰性，首次操作时执行一次）。"""
        if self._indexes_created:
            return
        await self._slots.create_index(
            [("room_id", 1), ("slot", 1)],
            name="uniq_room_slot",
            unique=True,
        )
        await self._slots.create_index("connection_id", name="idx_connection")
        self._indexes_created = True
        logger.debug("rooms / slots 索引已就绪")

    # ── 房间 ──────────────────────────────────────────────────────────

    async def insert_room(self, room: Room) -> None:
        """写入房间并初始化两个空槽位。

        Raises:
            RoomAlreadyExistsError: 房间 ID 已被占用。
        """
        await self._ensure_indexes()
        doc = room.model_dump(exclude={"room_id"})
        doc["_id"] = room.room_id
        try:
            await self._rooms.insert_one(doc)
        except DuplicateKeyError as e:
            raise RoomAlreadyExistsError() from e

        now = _utcnow()
        try:
            await self._slots.insert_many([
                {
                    "room_id": room.room_id,
                    "slot": slot,
                    "connection_id": None,
                    "username": None,
                    "last_active": now,
                }
                for slot in SLOT_ORDER
            ])
        except PyMongoError:
            # 没有槽位的房间无法加入也无法被清理，回滚房间文档
            logger.error("初始化槽位失败，回滚房间 | room_id=%s", room.room_id, exc_info=True)
            await self._rooms.delete_one({"_id": room.room_id})
            await self._slots.delete_many({"room_id": room.room_id})
            raise

    async def find_room(self, room_id: str) -> Room | None:
        doc = await self._rooms.find_one({"_id": room_id})
        return _room_from_doc(doc) if doc else None

    async def delete_room(self, room_id: str) -> bool:
        """删除房间及其槽位。消息由 MessageRepository 负责。"""
        result = await self._rooms.delete_one({"_id": room_id})
        await self._slots.delete_many({"room_id": room_id})
        return result.deleted_count == 1

    async def find_inactive_room_ids(self, cutoff: datetime) -> list[str]:
        """返回「最近一次槽位活动」早于 ``cutoff`` 的房间 ID 列表。"""
        pipeline = [
            {"$group": {"_id": "$room_id", "last_active": {"$max": "$last_active"}}},
            {"$match": {"last_active": {"$lt": cutoff}}},
        ]
        docs = await self._slots.aggregate(pipeline).to_list(length=None)
        return [doc["_id"] for doc in docs]

    # ── 槽位 ──────────────────────────────────────────────────────────

    async def find_slots(self, room_id: str) -> list[SlotRecord]:
        cursor = self._slots.find({"room_id": room_id}).sort("slot", 1)
        return [_slot_from_doc(doc) for doc in await cursor.to_list(length=None)]

    async def find_slot(self, room_id: str, slot: SlotName) -> SlotRecord | None:
        doc = await self._slots.find_one({"room_id": room_id, "slot": slot})
        return _slot_from_doc(doc) if doc else None

    async def set_occupant(
        self,
        room_id: str,
        slot: SlotName,
        connection_id: str,
        username: str,
        expected: str | None = None,
    ) -> bool:
        """仅当当前占用者等于 ``expected`` 时写入新占用者。

        Returns:
            是否写入成功。
        """
        result = await self._slots.update_one(
            {"room_id": room_id, "slot": slot, "connection_id": expected},
            {"$set": {
                "connection_id": connection_id,
                "username": username,
                "last_active": _utcnow(),
            }},
        )
        return result.matched_count == 1

    async def clear_occupant(
        self,
        room_id: str,
        slot: SlotName,
        connection_id: str | None = None,
    ) -> bool:
        """清空槽位占用者。给定 ``connection_id`` 时只在其仍是占用者时生效。"""
        query: dict[str, Any] = {"room_id": room_id, "slot": slot}
        if connection_id is not None:
            query["connection_id"] = connection_id
        result = await self._slots.update_one(
            query,
            {"$set": {"connection_id": None, "last_active": _utcnow()}},
        )
        return result.matched_count == 1

    async def clear_all_occupants(self) -> int:
        """清空所有房间所有槽位的占用者，返回被清空的槽位数。"""
        result = await self._slots.update_many(
            {"connection_id": {"$ne": None}},
            {"$set": {"connection_id": None}},
        )
        return result.modified_count
