"""
tests.test_connection_hub
~~~~~~~~~~~~~~~~~~~~~~~~~

ConnectionHub 单元测试：在线判定、分组、定向推送与广播。
"""
from __future__ import annotations

import pytest


class TestRegistry:
    """连接表与分组。"""

    def test_register_and_unregister(self, hub, make_websocket) -> None:
        hub.register("c1", make_websocket())
        hub.join_group("r1", "c1")

        assert hub.is_live("c1")
        assert hub.online_count == 1
        assert hub.group_size("r1") == 1

        hub.unregister("c1")

        assert not hub.is_live("c1")
        assert hub.group_size("r1") == 0
        assert "r1" not in hub.groups

    def test_unregister_twice_is_safe(self, hub, make_websocket) -> None:
        hub.register("c1", make_websocket())
        hub.unregister("c1")
        hub.unregister("c1")

        assert hub.online_count == 0

    def test_leave_unknown_group(self, hub) -> None:
        hub.leave_group("nope", "c1")

        assert hub.group_size("nope") == 0


class TestSending:
    """定向推送与广播。"""

    @pytest.mark.asyncio
    async def test_send_to(self, hub, make_websocket) -> None:
        ws = make_websocket()
        hub.register("c1", ws)

        assert await hub.send_to("c1", "chat-cleared", {}) is True
        assert ws.sent == [{"event": "chat-cleared", "data": {}}]

    @pytest.mark.asyncio
    async def test_send_to_offline(self, hub) -> None:
        assert await hub.send_to("ghost", "chat-cleared", {}) is False

    @pytest.mark.asyncio
    async def test_broadcast_with_exclude(self, hub, make_websocket) -> None:
        ws_a, ws_b = make_websocket(), make_websocket()
        hub.register("a", ws_a)
        hub.register("b", ws_b)
        hub.join_group("r1", "a")
        hub.join_group("r1", "b")

        delivered = await hub.broadcast("r1", "peer-typing", {"isTyping": True}, exclude="a")

        assert delivered == 1
        assert ws_a.sent == []
        assert ws_b.events("peer-typing") == [{"isTyping": True}]

    @pytest.mark.asyncio
    async def test_broadcast_drops_broken_socket(self, hub, make_websocket) -> None:
        healthy, broken = make_websocket(), make_websocket(broken=True)
        hub.register("ok", healthy)
        hub.register("dead", broken)
        hub.join_group("r1", "ok")
        hub.join_group("r1", "dead")

        delivered = await hub.broadcast("r1", "chat-cleared", {})

        assert delivered == 1
        assert hub.is_live("ok")
        assert not hub.is_live("dead")
        assert hub.group_size("r1") == 1

    @pytest.mark.asyncio
    async def test_send_to_broken_socket(self, hub, make_websocket) -> None:
        hub.register("dead", make_websocket(broken=True))

        assert await hub.send_to("dead", "chat-cleared", {}) is False
        assert not hub.is_live("dead")

    @pytest.mark.asyncio
    async def test_broadcast_empty_group(self, hub) -> None:
        assert await hub.broadcast("nobody", "chat-cleared", {}) == 0
