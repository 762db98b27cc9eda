"""
app.db.message_repository
~~~~~~~~~~~~~~~~~~~~~~~~~

消息持久化仓库 —— 封装 MongoDB ``messages`` 集合的增删改查。

每条消息一个文档（扁平设计），``_id`` 即消息 ID。
集合在首次写入时自动创建并建立 ``(room_id, ts, seq)`` 复合索引。

``ts`` 精度只到毫秒，同一毫秒内的两条消息以 ``seq`` 排序；
``seq`` 来自 ``counters`` 集合的原子自增，跨进程单调递增。
"""
from __future__ import annotations

from typing import Any

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ReturnDocument

from app.core.logging import get_logger
from app.schemas.chat import Message, MessageStatus

logger = get_logger(__name__)

_COLLECTION_NAME = "messages"
_COUNTERS_COLLECTION = "counters"
_SEQ_KEY = "messages"


def _message_from_doc(doc: dict[str, Any]) -> Message:
    data = dict(doc)
    data["id"] = data.pop("_id")
    data.pop("seq", None)
    return Message.model_validate(data)


class MessageRepository:
    """房间消息持久化仓库。

    Attributes:
        db: MongoDB 数据库实例。
    """

    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self.db = db
        self._collection = db[_COLLECTION_NAME]
        self._counters = db[_COUNTERS_COLLECTION]
        self._indexes_created = False

    async def _ensure_indexes(self) -> None:
        """确保索引已创建（惰性，首次操作时执行一次）。"""
        if self._indexes_created:
            return
        # 复合索引：按房间分区 + 按时间排序，同毫秒按写入序号
        await self._collection.create_index(
            [("room_id", 1), ("ts", 1), ("seq", 1)],
            name="idx_room_ts_seq",
        )
        self._indexes_created = True
        logger.debug("messages 索引已就绪")

    async def _next_seq(self) -> int:
        counter = await self._counters.find_one_and_update(
            {"_id": _SEQ_KEY},
            {"$inc": {"value": 1}},
            upsert=True,
            return_document=ReturnDocument.AFTER,
        )
        return counter["value"]

    async def insert(self, message: Message) -> None:
        await self._ensure_indexes()
        doc = message.model_dump(exclude={"id"})
        doc["_id"] = message.id
        doc["seq"] = await self._next_seq()
        await self._collection.insert_one(doc)

    async def find(self, message_id: str) -> Message | None:
        doc = await self._collection.find_one({"_id": message_id})
        return _message_from_doc(doc) if doc else None

    async def find_by_room(self, room_id: str) -> list[Message]:
        """获取房间全部消息（按发送时间正序）。"""
        await self._ensure_indexes()
        cursor = self._collection.find({"room_id": room_id}).sort([("ts", 1), ("seq", 1)])
        return [_message_from_doc(doc) for doc in await cursor.to_list(length=None)]

    async def update_status(
        self,
        message_id: str,
        status: MessageStatus,
        from_statuses: list[str] | None = None,
    ) -> bool:
        """更新消息状态。给定 ``from_statuses`` 时仅在当前状态属于其中时更新。"""
        query: dict[str, Any] = {"_id": message_id}
        if from_statuses is not None:
            query["status"] = {"$in": from_statuses}
        result = await self._collection.update_one(query, {"$set": {"status": status}})
        return result.matched_count == 1

    async def update_status_many(
        self, message_ids: list[str], status: MessageStatus,
    ) -> int:
        result = await self._collection.update_many(
            {"_id": {"$in": message_ids}}, {"$set": {"status": status}},
        )
        return result.modified_count

    async def delete(self, message_id: str) -> bool:
        result = await self._collection.delete_one({"_id": message_id})
        return result.deleted_count == 1

    async def delete_by_room(self, room_id: str) -> int:
        result = await self._collection.delete_many({"room_id": room_id})
        return result.deleted_count
