"""
app.services.message_ledger
~~~~~~~~~~~~~~~~~~~~~~~~~~~

消息账本 —— 按房间追加的消息日志，每条消息带 ``sent → delivered → read`` 状态。

``set_status`` 是无条件覆盖；状态单调性由协调器负责，
协调器在可能与其他连接竞争的场景下使用 ``advance_status``。
"""
from __future__ import annotations

from app.core.logging import get_logger
from app.db.message_repository import MessageRepository
from app.schemas.chat import STATUS_RANK, Message, MessageStatus

logger = get_logger(__name__)


class MessageLedger:
    """消息账本。

    Attributes:
        repo: 消息仓库。
    """

    def __init__(self, repo: MessageRepository) -> None:
        self.repo = repo

    async def append(self, message: Message) -> Message:
        """追加一条消息，状态强制为 ``sent``。"""
        message = message.model_copy(update={"status": "sent"})
        await self.repo.insert(message)
        return message

    async def by_room(self, room_id: str) -> list[Message]:
        """房间全部消息（按发送时间正序），每次都是完整的最新快照。"""
        return await self.repo.find_by_room(room_id)

    async def get(self, message_id: str) -> Message | None:
        return await self.repo.find(message_id)

    async def set_status(self, message_id: str, status: MessageStatus) -> None:
        await self.repo.update_status(message_id, status)

    async def advance_status(self, message_id: str, status: MessageStatus) -> bool:
        """仅当当前状态早于 ``status`` 时更新，返回是否发生了变化。"""
        earlier = [s for s, rank in STATUS_RANK.items() if rank < STATUS_RANK[status]]
        return await self.repo.update_status(message_id, status, from_statuses=earlier)

    async def delete(self, message_id: str) -> bool:
        return await self.repo.delete(message_id)

    async def clear_by_room(self, room_id: str) -> int:
        removed = await self.repo.delete_by_room(room_id)
        logger.info("房间消息已清空 | room=%s | 删除 %d 条", room_id, removed)
        return removed

    async def mark_read(self, message_ids: list[str]) -> int:
        """批量标记为已读。空列表直接返回。"""
        if not message_ids:
            return 0
        return await self.repo.update_status_many(message_ids, "read")
