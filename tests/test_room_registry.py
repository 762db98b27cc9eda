"""
tests.test_room_registry
~~~~~~~~~~~~~~~~~~~~~~~~

RoomRegistry 单元测试：口令策略、口令校验、级联删除、不活跃房间清理。
"""
from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from app.core.exceptions import PasscodeTooShortError, RoomAlreadyExistsError
from app.schemas.chat import Message


class TestCreate:

    @pytest.mark.asyncio
    async def test_create_initializes_empty_slots(self, registry, room_repo) -> None:
        room = await registry.create("r1", "Alice", "Bob", "1234")

        assert room.room_id == "r1"
        assert room.created_at.tzinfo is not None
        slots = await room_repo.find_slots("r1")
        assert [s.slot for s in slots] == ["A", "B"]
        assert all(s.is_available for s in slots)

    @pytest.mark.asyncio
    async def test_passcode_trimmed_before_length_check(self, registry) -> None:
        with pytest.raises(PasscodeTooShortError):
            await registry.create("r1", "Alice", "Bob", " 123   ")

    @pytest.mark.asyncio
    async def test_min_length_is_configurable(self, room_repo, message_repo) -> None:
        from app.services.room_registry import RoomRegistry

        strict = RoomRegistry(room_repo, message_repo, passcode_min_length=8)

        with pytest.raises(PasscodeTooShortError, match="at least 8"):
            await strict.create("r1", "Alice", "Bob", "1234567")

    @pytest.mark.asyncio
    async def test_duplicate_id(self, registry) -> None:
        await registry.create("r1", "Alice", "Bob", "1234")

        with pytest.raises(RoomAlreadyExistsError):
            await registry.create("r1", "Carol", "Dave", "5678")

        # 原房间口令保持不变
        assert await registry.verify_passcode("r1", "1234") is True


class TestVerifyPasscode:

    @pytest.mark.asyncio
    async def test_match_and_mismatch(self, registry) -> None:
        await registry.create("r1", "Alice", "Bob", "1234")

        assert await registry.verify_passcode("r1", "1234") is True
        assert await registry.verify_passcode("r1", "12345") is False

    @pytest.mark.asyncio
    async def test_surrounding_whitespace_is_stripped(self, registry, room_repo) -> None:
        await registry.create("r1", "Alice", "Bob", "  1234 ")

        assert room_repo.rooms["r1"].passcode == "1234"
        assert await registry.verify_passcode("r1", " 1234  ") is True

    @pytest.mark.asyncio
    async def test_unknown_room_is_false(self, registry) -> None:
        assert await registry.verify_passcode("ghost", "1234") is False

    @pytest.mark.asyncio
    async def test_non_ascii_passcode(self, registry) -> None:
        await registry.create("r1", "Alice", "Bob", "密码口令")

        assert await registry.verify_passcode("r1", "密码口令") is True
        assert await registry.verify_passcode("r1", "密码") is False


class TestDelete:

    @pytest.mark.asyncio
    async def test_delete_cascades(self, registry, room_repo, message_repo) -> None:
        await registry.create("r1", "Alice", "Bob", "1234")
        await registry.create("r2", "Carol", "Dave", "1234")
        for room_id in ("r1", "r2"):
            await message_repo.insert(Message(
                id=f"m-{room_id}", room_id=room_id, sender_slot="A",
                sender_id="c1", sender_name="x", text="hi", ts=1,
            ))

        assert await registry.delete("r1") is True

        assert await registry.get("r1") is None
        assert await room_repo.find_slots("r1") == []
        assert list(message_repo.messages) == ["m-r2"]
        assert await registry.get("r2") is not None

    @pytest.mark.asyncio
    async def test_remove_inactive(self, registry, room_repo) -> None:
        await registry.create("old", "Alice", "Bob", "1234")
        await registry.create("fresh", "Carol", "Dave", "1234")
        long_ago = datetime.now(timezone.utc) - timedelta(days=45)
        for slot in ("A", "B"):
            record = room_repo.slots[("old", slot)]
            room_repo.slots[("old", slot)] = record.model_copy(update={"last_active": long_ago})

        removed = await registry.remove_inactive(30)

        assert removed == 1
        assert await registry.get("old") is None
        assert await registry.get("fresh") is not None

    @pytest.mark.asyncio
    async def test_one_recent_slot_keeps_room(self, registry, room_repo) -> None:
        await registry.create("r1", "Alice", "Bob", "1234")
        long_ago = datetime.now(timezone.utc) - timedelta(days=45)
        record = room_repo.slots[("r1", "A")]
        room_repo.slots[("r1", "A")] = record.model_copy(update={"last_active": long_ago})

        assert await registry.remove_inactive(30) == 0
