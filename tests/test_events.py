"""Tests for EventRouter."""

import asyncio
from unittest.mock import AsyncMock

import pytest

from replcraft.events import EventRouter
from replcraft.protocol import MessageCodec
from replcraft.types import Transaction

from .helpers import settle


@pytest.fixture
def respond():
    return AsyncMock(return_value={"ok": True})


@pytest.fixture
def router(respond):
    return EventRouter(respond)


def push(**frame):
    return MessageCodec.classify(frame)


class TestRegistration:
    def test_on_and_emit(self, router):
        received = []
        router.on("open", lambda: received.append("open"))
        assert router.emit("open") == 1
        assert received == ["open"]

    def test_decorator(self, router):
        received = []

        @router.on("error")
        def handler(err):
            received.append(err)

        router.emit("error", "boom")
        assert received == ["boom"]
        assert handler is not None

    def test_off(self, router):
        received = []
        handler = router.on("close", lambda: received.append(1))
        router.off("close", handler)
        router.emit("close")
        assert received == []
        assert router.listener_count("close") == 0

    def test_off_unknown_is_ignored(self, router):
        router.off("close", lambda: None)

    def test_once(self, router):
        received = []
        router.once("open", lambda: received.append(1))
        router.emit("open")
        router.emit("open")
        assert received == [1]

    def test_once_and_on_with_same_listener(self, router):
        received = []

        def handler():
            received.append(1)

        router.on("open", handler)
        router.once("open", handler)
        router.emit("open")
        router.emit("open")

        assert received == [1, 1, 1]
        assert router.listener_count("open") == 1

    def test_off_removes_once_registration(self, router):
        received = []

        def handler():
            received.append(1)

        router.once("open", handler)
        router.off("open", handler)
        router.emit("open")
        assert received == []
        assert router.listener_count("open") == 0

    def test_no_replay_for_late_listeners(self, router):
        router.emit("block update", "place", "minecraft:dirt", 0, 0, 0)
        received = []
        router.on("block update", lambda *args: received.append(args))
        assert received == []

    def test_listener_added_during_emit_waits(self, router):
        received = []

        def first():
            received.append("first")
            router.on("open", lambda: received.append("late"))

        router.on("open", first)
        router.emit("open")
        assert received == ["first"]

    def test_failing_listener_does_not_block_others(self, router):
        received = []

        def bad():
            raise RuntimeError("listener bug")

        router.on("open", bad)
        router.on("open", lambda: received.append("ok"))
        assert router.emit("open") == 2
        assert received == ["ok"]

    @pytest.mark.asyncio
    async def test_coroutine_listener_scheduled(self, router):
        received = asyncio.Event()

        async def handler():
            received.set()

        router.on("open", handler)
        router.emit("open")
        await asyncio.wait_for(received.wait(), timeout=1.0)


class TestRoute:
    def test_block_update_positional(self, router):
        received = []
        router.on("block update", lambda *args: received.append(args))
        routed = router.route(
            push(
                type="block update",
                cause="piston_extend",
                block="minecraft:piston[facing=up]",
                x=4,
                y=5,
                z=6,
            )
        )
        assert routed is True
        assert received == [
            ("piston_extend", "minecraft:piston[facing=up]", 4, 5, 6)
        ]

    def test_named_event(self, router):
        received = []
        router.on("fuel", lambda *args: received.append(args))
        assert router.route(push(event="fuel", cause="refill")) is True
        assert received == [("refill", None, None, None, None)]

    def test_typed_then_named(self, router):
        order = []
        router.on("block update", lambda *a: order.append("typed"))
        router.on("custom", lambda *a: order.append("named"))
        router.route(push(type="block update", event="custom", cause="poll"))
        assert order == ["typed", "named"]

    def test_unrecognized_not_routed(self, router):
        assert router.route(push(type="weather")) is False

    @pytest.mark.asyncio
    async def test_transact_controls(self, router, respond):
        received = []
        router.on("transact", received.append)
        router.route(
            push(
                type="transact",
                query="buy diamonds",
                amount=12.5,
                player="Steve",
                player_uuid="069a79f4-44e9-4726-a5be-fca90e38aaf5",
                queryNonce="q-17",
            )
        )

        (transaction,) = received
        assert isinstance(transaction, Transaction)
        assert transaction.query == "buy diamonds"
        assert transaction.amount == 12.5
        assert transaction.player == "Steve"
        assert transaction.query_nonce == "q-17"

        assert await transaction.accept() == {"ok": True}
        respond.assert_awaited_with("q-17", True)
        await transaction.deny()
        respond.assert_awaited_with("q-17", False)

    @pytest.mark.asyncio
    async def test_cancel_tasks(self, router):
        started = asyncio.Event()

        async def slow():
            started.set()
            await asyncio.sleep(10)

        router.on("open", slow)
        router.emit("open")
        await started.wait()
        await router.cancel_tasks()
        await settle()
