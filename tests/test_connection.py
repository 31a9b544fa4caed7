"""Tests for ConnectionManager (fake WebSocket patched into websockets)."""

import asyncio
from unittest.mock import MagicMock

import pytest
import websockets.asyncio.client
from websockets.exceptions import ConnectionClosedError

from replcraft.connection import ConnectionManager
from replcraft.errors import CraftConnectionError
from replcraft.types import ConnectionState, ConnectionStats

from .helpers import FakeWebSocket, settle


@pytest.fixture
def callbacks():
    return MagicMock()


@pytest.fixture
def manager(callbacks):
    return ConnectionManager(
        connect_timeout=0.2,
        stats=ConnectionStats(),
        on_message=callbacks.message,
        on_close=callbacks.close,
        on_error=callbacks.error,
        on_state_change=callbacks.state,
    )


@pytest.fixture
def fake_ws(monkeypatch):
    ws = FakeWebSocket()
    urls = []

    async def fake_connect(url, **kwargs):
        urls.append(url)
        return ws

    monkeypatch.setattr(websockets.asyncio.client, "connect", fake_connect)
    ws.urls = urls
    return ws


class TestConnect:
    @pytest.mark.asyncio
    async def test_state_flow(self, manager, callbacks, fake_ws):
        assert manager.state == ConnectionState.CLOSED
        await manager.connect("ws://localhost:8080/gateway")

        assert fake_ws.urls == ["ws://localhost:8080/gateway"]
        assert manager.is_open
        assert manager.state == ConnectionState.AWAITING_AUTH
        assert [c.args[0] for c in callbacks.state.call_args_list] == [
            ConnectionState.CONNECTING,
            ConnectionState.AWAITING_AUTH,
        ]

        manager.mark_authenticated()
        assert manager.is_authenticated
        await manager.disconnect()

    @pytest.mark.asyncio
    async def test_connect_twice_refused(self, manager, fake_ws):
        await manager.connect("ws://h/gateway")
        with pytest.raises(CraftConnectionError):
            await manager.connect("ws://h/gateway")
        await manager.disconnect()

    @pytest.mark.asyncio
    async def test_connect_failure(self, manager, callbacks, monkeypatch):
        async def refuse(url, **kwargs):
            raise OSError("connection refused")

        monkeypatch.setattr(websockets.asyncio.client, "connect", refuse)
        with pytest.raises(CraftConnectionError) as exc_info:
            await manager.connect("ws://h/gateway")

        assert exc_info.value.kind == "connection closed"
        assert manager.state == ConnectionState.CLOSED
        assert not manager.is_open
        callbacks.error.assert_called_once()
        callbacks.close.assert_not_called()

    @pytest.mark.asyncio
    async def test_connect_timeout(self, manager, callbacks, monkeypatch):
        async def hang(url, **kwargs):
            await asyncio.sleep(10)

        monkeypatch.setattr(websockets.asyncio.client, "connect", hang)
        with pytest.raises(CraftConnectionError, match="timed out"):
            await manager.connect("ws://h/gateway")
        assert manager.state == ConnectionState.CLOSED
        callbacks.error.assert_called_once()


class TestReceive:
    @pytest.mark.asyncio
    async def test_frames_forwarded_in_order(self, manager, callbacks, fake_ws):
        await manager.connect("ws://h/gateway")
        fake_ws.feed('{"nonce":"0","ok":true}')
        fake_ws.feed('{"type":"block update"}')
        await settle()

        assert [c.args[0] for c in callbacks.message.call_args_list] == [
            '{"nonce":"0","ok":true}',
            '{"type":"block update"}',
        ]
        await manager.disconnect()

    @pytest.mark.asyncio
    async def test_server_close_runs_close_path(self, manager, callbacks, fake_ws):
        await manager.connect("ws://h/gateway")
        fake_ws.feed(None)
        await settle()

        callbacks.close.assert_called_once()
        callbacks.error.assert_not_called()
        assert manager.state == ConnectionState.CLOSED
        assert await manager.send("late") is False

    @pytest.mark.asyncio
    async def test_abnormal_close_reports_error_then_closes(
        self, manager, callbacks, fake_ws
    ):
        order = []
        callbacks.error.side_effect = lambda err: order.append(("error", err))
        callbacks.close.side_effect = lambda: order.append(("close", None))

        await manager.connect("ws://h/gateway")
        fake_ws.feed(ConnectionClosedError(None, None))
        await settle()

        assert [name for name, _ in order] == ["error", "close"]
        assert isinstance(order[0][1], CraftConnectionError)
        assert manager.state == ConnectionState.CLOSED


class TestDisconnect:
    @pytest.mark.asyncio
    async def test_close_path_runs_once(self, manager, callbacks, fake_ws):
        await manager.connect("ws://h/gateway")
        await manager.disconnect()
        await manager.disconnect()

        assert fake_ws.closed
        callbacks.close.assert_called_once()
        assert manager.state == ConnectionState.CLOSED

    @pytest.mark.asyncio
    async def test_disconnect_when_closed_is_noop(self, manager, callbacks):
        await manager.disconnect()
        callbacks.close.assert_not_called()

    @pytest.mark.asyncio
    async def test_disconnect_abandons_pending_open(
        self, manager, callbacks, monkeypatch
    ):
        opened = []

        async def slow_connect(url, **kwargs):
            await asyncio.sleep(0.05)
            ws = FakeWebSocket()
            opened.append(ws)
            return ws

        monkeypatch.setattr(websockets.asyncio.client, "connect", slow_connect)
        opening = asyncio.create_task(manager.connect("ws://h/gateway"))
        await settle()
        assert manager.is_connecting

        await manager.disconnect()
        assert manager.state == ConnectionState.CLOSED
        assert not manager.is_connecting
        with pytest.raises(CraftConnectionError, match="disconnected while connecting"):
            await opening

        await asyncio.sleep(0.1)
        assert opened == []
        assert not manager.is_open
        callbacks.error.assert_not_called()
        callbacks.close.assert_not_called()

    @pytest.mark.asyncio
    async def test_connect_while_opening_refused(self, manager, monkeypatch):
        async def slow_connect(url, **kwargs):
            await asyncio.sleep(0.05)
            return FakeWebSocket()

        monkeypatch.setattr(websockets.asyncio.client, "connect", slow_connect)
        opening = asyncio.create_task(manager.connect("ws://h/gateway"))
        await settle()

        with pytest.raises(CraftConnectionError, match="already connected"):
            await manager.connect("ws://h/gateway")
        await opening
        assert manager.state == ConnectionState.AWAITING_AUTH
        await manager.disconnect()

    @pytest.mark.asyncio
    async def test_reconnect_after_close(self, manager, callbacks, fake_ws):
        await manager.connect("ws://h/gateway")
        await manager.disconnect()
        fake_ws.closed = False
        await manager.connect("ws://h/gateway")
        assert manager.state == ConnectionState.AWAITING_AUTH
        await manager.disconnect()
        assert callbacks.close.call_count == 2


class TestSend:
    @pytest.mark.asyncio
    async def test_send_counts_stats(self, fake_ws):
        stats = ConnectionStats()
        manager = ConnectionManager(stats=stats)
        await manager.connect("ws://h/gateway")

        assert await manager.send('{"action":"watch_all","nonce":"0"}') is True
        assert fake_ws.sent == ['{"action":"watch_all","nonce":"0"}']
        assert stats.messages_sent == 1
        assert stats.bytes_sent > 0
        await manager.disconnect()

    @pytest.mark.asyncio
    async def test_send_without_connection(self, manager):
        assert await manager.send("x") is False
