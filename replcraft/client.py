# =============================================================================
# ReplCraft Python Client -- Async Client
# =============================================================================
#
# Primary public API.  Login handshake, request/response channel, broadcast
# channel, and the per-action helpers for a claimed structure.
# =============================================================================

from __future__ import annotations

import time
from typing import Any, Callable, Iterable, Mapping

from ._logging import logger
from .connection import ConnectionManager
from .constants import (
    ACTION_AUTHENTICATE,
    ACTION_RESPOND,
    CONNECTION_TIMEOUT,
    EVENT_CLOSE,
    EVENT_ERROR,
    EVENT_OPEN,
    EVENT_OUT_OF_FUEL,
)
from .credential import parse_credential
from .dispatcher import RequestDispatcher
from .errors import (
    CraftConnectionError,
    CraftCredentialError,
    CraftError,
    CraftProtocolError,
)
from .events import EventRouter, Listener
from .protocol import MessageCodec
from .retry_queue import RetryEntry, RetryQueue
from .types import (
    ConnectionState,
    ConnectionStats,
    Entity,
    InboundMessage,
    Item,
    ItemReference,
    MessageKind,
    RetryConfig,
)

XYZ = tuple[int, int, int]


class AsyncCraftClient:
    """Async client for a ReplCraft structure.

    Args:
        credential: API token for the structure. Used by :meth:`login` and
            by ``async with`` when no token is passed explicitly.
        retry: Out-of-fuel retry settings. Disabled by default.
        connect_timeout: Seconds allowed for the WebSocket to open.
        extra_headers: Additional HTTP headers for the handshake.

    Notifications (see :meth:`on`):
        ``open``, ``close``, ``error(err)``, ``out_of_fuel(err)``,
        ``block update(cause, block, x, y, z)``, ``transact(transaction)``
        and any server-named ``event(cause, block, x, y, z)``.

    Example::

        async with AsyncCraftClient(token) as client:
            @client.on("block update")
            def changed(cause, block, x, y, z):
                print(cause, block, x, y, z)

            await client.watch_all()
            print(await client.get_block(0, 0, 0))
    """

    def __init__(
        self,
        credential: str | None = None,
        *,
        retry: RetryConfig | None = None,
        connect_timeout: float = CONNECTION_TIMEOUT,
        extra_headers: dict[str, str] | None = None,
    ) -> None:
        self._credential = credential
        retry_cfg = retry or RetryConfig()

        self._stats = ConnectionStats()
        self._codec = MessageCodec()
        self._router = EventRouter(self.respond_to_transaction)
        self._retry_queue = RetryQueue(
            self._resubmit, delay=retry_cfg.delay, enabled=retry_cfg.enabled
        )
        self._connection = ConnectionManager(
            connect_timeout=connect_timeout,
            extra_headers=extra_headers,
            stats=self._stats,
            on_message=self._on_raw_message,
            on_close=self._on_connection_closed,
            on_error=self._on_transport_error,
        )
        # Replaced on every login; None while no connection is open
        self._dispatcher: RequestDispatcher | None = None

    # -- Context manager ------------------------------------------------------

    async def __aenter__(self) -> AsyncCraftClient:
        if self._credential is not None:
            await self.login()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.close()

    # -- Properties -----------------------------------------------------------

    @property
    def state(self) -> ConnectionState:
        return self._connection.state

    @property
    def is_connected(self) -> bool:
        return self._connection.is_open

    @property
    def is_authenticated(self) -> bool:
        return self._connection.is_authenticated

    @property
    def pending_count(self) -> int:
        """Requests sent on the current connection and not yet answered."""
        return self._dispatcher.pending_count if self._dispatcher else 0

    @property
    def retry_fuel_errors(self) -> bool:
        return self._retry_queue.enabled

    # -- Login / Disconnect ---------------------------------------------------

    async def login(self, credential: str | None = None) -> dict[str, Any]:
        """Connect to the structure's server and authenticate.

        Any existing connection is closed first.

        Args:
            credential: API token. Defaults to the one given at construction.

        Returns:
            The server's ``authenticate`` response.

        Raises:
            CraftCredentialError: If the token cannot be decoded.
            CraftConnectionError: If the socket cannot be opened or drops
                during the handshake.
            CraftError: If the server rejects the token.
        """
        await self.disconnect()

        token = credential if credential is not None else self._credential
        if token is None:
            raise CraftCredentialError("no credential supplied")
        parsed = parse_credential(token)
        self._credential = token

        dispatcher = RequestDispatcher(
            self._connection,
            self._codec,
            retry_queue=self._retry_queue,
            on_out_of_fuel=self._on_out_of_fuel,
        )
        self._dispatcher = dispatcher
        try:
            await self._connection.connect(parsed.endpoint)
        except CraftConnectionError:
            # A newer login may already own the client
            if self._dispatcher is dispatcher:
                self._dispatcher = None
            raise
        self._stats.login_count += 1
        self._router.emit(EVENT_OPEN)

        try:
            response = await dispatcher.request(
                {"action": ACTION_AUTHENTICATE, "token": parsed.token}
            )
        except CraftError as exc:
            if not isinstance(exc, CraftConnectionError):
                logger.warning("Authentication rejected: %s", exc)
                if self._dispatcher is dispatcher:
                    await self._connection.disconnect()
            raise

        self._connection.mark_authenticated()
        logger.info("Authenticated with %s", parsed.host)
        return response

    async def disconnect(self) -> None:
        """Close the connection; outstanding requests fail with ``connection closed``."""
        if self._connection.is_open:
            logger.info("Disconnecting from %s", self._connection.url)
        await self._connection.disconnect()

    async def close(self) -> None:
        """Disconnect and stop the retry worker, failing any queued retries."""
        await self.disconnect()
        await self._retry_queue.stop()
        await self._router.cancel_tasks()

    def retry_on_fuel_error(self, retry: bool = True) -> None:
        """Enable or disable automatic retries of out-of-fuel failures.

        While enabled, such requests wait (possibly forever) until the
        structure has fuel again. Watch ``out_of_fuel`` to monitor it.
        """
        self._retry_queue.enabled = retry

    # -- Request channel ------------------------------------------------------

    async def request(self, payload: Mapping[str, Any]) -> dict[str, Any]:
        """Send a raw action and return the full response.

        Prefer the per-action helpers below.

        Raises:
            CraftConnectionError: If not connected, or the connection drops.
            CraftError: The server's typed failure.
        """
        dispatcher = self._dispatcher
        if dispatcher is None:
            raise CraftConnectionError("connection closed")
        return await dispatcher.request(payload)

    async def respond_to_transaction(
        self, query_nonce: Any, accept: bool
    ) -> dict[str, Any]:
        """Accept or deny the transaction identified by *query_nonce*."""
        return await self.request(
            {"action": ACTION_RESPOND, "queryNonce": query_nonce, "accept": accept}
        )

    async def _resubmit(self, entry: RetryEntry) -> None:
        dispatcher = self._dispatcher
        if dispatcher is None:
            if not entry.future.done():
                entry.future.set_exception(CraftConnectionError("connection closed"))
            return
        await dispatcher.resubmit(entry)

    # -- Broadcast channel ----------------------------------------------------

    def on(
        self, name: str, listener: Listener | None = None
    ) -> Listener | Callable[[Listener], Listener]:
        """Register a listener, or use as ``@client.on(name)``."""
        return self._router.on(name, listener)

    def once(self, name: str, listener: Listener) -> Listener:
        return self._router.once(name, listener)

    def off(self, name: str, listener: Listener) -> None:
        self._router.off(name, listener)

    # -- Stats ----------------------------------------------------------------

    def get_stats(self) -> dict[str, Any]:
        """Return client statistics."""
        connected_since = self._stats.connected_since
        return {
            "state": self._connection.state.value,
            "url": self._connection.url,
            "uptime_seconds": (
                time.monotonic() - connected_since if connected_since else None
            ),
            "pending_requests": self.pending_count,
            "messages_sent": self._stats.messages_sent,
            "messages_received": self._stats.messages_received,
            "bytes_sent": self._stats.bytes_sent,
            "bytes_received": self._stats.bytes_received,
            "responses_matched": self._stats.responses_matched,
            "events_routed": self._stats.events_routed,
            "messages_dropped": self._stats.messages_dropped,
            "fuel_errors": self._stats.fuel_errors,
            "login_count": self._stats.login_count,
            "retry_queue": self._retry_queue.get_stats(),
        }

    # -- Internal: message handling -------------------------------------------

    def _on_raw_message(self, data: str | bytes) -> None:
        """Decode a frame, settle its request, then route any push it carries."""
        try:
            msg = self._codec.decode(data)
        except CraftProtocolError as exc:
            self._stats.messages_dropped += 1
            logger.warning("Dropping malformed frame: %s", exc)
            return

        matched = False
        if msg.nonce is not None and self._dispatcher is not None:
            matched = self._dispatcher.handle_response(msg)
            if matched:
                self._stats.responses_matched += 1

        if msg.is_push and self._router.route(msg):
            self._stats.events_routed += 1
        elif not matched:
            self._drop(msg)

    def _drop(self, msg: InboundMessage) -> None:
        self._stats.messages_dropped += 1
        if msg.kind == MessageKind.RESPONSE:
            logger.debug("Dropping response for unknown nonce %s", msg.nonce)
        else:
            logger.debug(
                "Dropping unrecognized frame (type=%r, event=%r)", msg.type, msg.event
            )

    def _on_connection_closed(self) -> None:
        dispatcher = self._dispatcher
        self._dispatcher = None
        if dispatcher is not None:
            dispatcher.fail_all()
        self._router.emit(EVENT_CLOSE)

    def _on_transport_error(self, error: CraftError) -> None:
        logger.debug("Transport error: %s", error)
        self._router.emit(EVENT_ERROR, error)

    def _on_out_of_fuel(self, error: CraftError) -> None:
        self._stats.fuel_errors += 1
        self._router.emit(EVENT_OUT_OF_FUEL, error)

    # -- Structure actions ----------------------------------------------------

    async def get_size(self) -> XYZ:
        """Inner size of the structure."""
        r = await self.request({"action": "get_size"})
        return r["x"], r["y"], r["z"]

    async def location(self) -> XYZ:
        """World coordinates of the structure's inner (0, 0, 0)."""
        r = await self.request({"action": "get_location"})
        return r["x"], r["y"], r["z"]

    async def get_block(self, x: int, y: int, z: int) -> str:
        """Block string at structure-local coordinates, e.g.
        ``minecraft:chest[facing=north,type=single,waterlogged=false]``."""
        r = await self.request({"action": "get_block", "x": x, "y": y, "z": z})
        return r["block"]

    async def set_block(
        self,
        x: int,
        y: int,
        z: int,
        block_data: str,
        source: XYZ | None = None,
        target: XYZ | None = None,
    ) -> None:
        """Place a block taken from *source* (or the structure inventory).

        Whatever it replaces goes into *target* (or the structure
        inventory), or is dropped in the world when there is no room.
        """
        source_x, source_y, source_z = source or (None, None, None)
        target_x, target_y, target_z = target or (None, None, None)
        await self.request(
            {
                "action": "set_block",
                "x": x,
                "y": y,
                "z": z,
                "blockData": block_data,
                "source_x": source_x,
                "source_y": source_y,
                "source_z": source_z,
                "target_x": target_x,
                "target_y": target_y,
                "target_z": target_z,
            }
        )

    async def get_sign_text(self, x: int, y: int, z: int) -> list[str]:
        r = await self.request({"action": "get_sign_text", "x": x, "y": y, "z": z})
        return r["lines"]

    async def set_sign_text(self, x: int, y: int, z: int, lines: list[str]) -> None:
        await self.request(
            {"action": "set_sign_text", "x": x, "y": y, "z": z, "lines": lines}
        )

    async def watch(self, x: int, y: int, z: int) -> None:
        """Start ``block update`` notifications for one block (best effort)."""
        await self.request({"action": "watch", "x": x, "y": y, "z": z})

    async def unwatch(self, x: int, y: int, z: int) -> None:
        await self.request({"action": "unwatch", "x": x, "y": y, "z": z})

    async def watch_all(self) -> None:
        await self.request({"action": "watch_all"})

    async def unwatch_all(self) -> None:
        await self.request({"action": "unwatch_all"})

    async def poll(self, x: int, y: int, z: int) -> None:
        """Poll one block for changes.

        Catches every kind of update, but only one block is polled per tick
        and intermediate states between polls are not reported.
        """
        await self.request({"action": "poll", "x": x, "y": y, "z": z})

    async def unpoll(self, x: int, y: int, z: int) -> None:
        await self.request({"action": "unpoll", "x": x, "y": y, "z": z})

    async def poll_all(self) -> None:
        await self.request({"action": "poll_all"})

    async def unpoll_all(self) -> None:
        await self.request({"action": "unpoll_all"})

    async def get_entities(self) -> list[Entity]:
        r = await self.request({"action": "get_entities"})
        return [Entity.from_dict(e) for e in r.get("entities", [])]

    async def get_inventory(self, x: int, y: int, z: int) -> list[Item]:
        r = await self.request({"action": "get_inventory", "x": x, "y": y, "z": z})
        return [Item.from_dict(i) for i in r.get("items", [])]

    async def move_item(
        self,
        index: int,
        source: XYZ,
        target: XYZ,
        target_index: int | None = None,
        amount: int | None = None,
    ) -> None:
        """Move items from slot *index* of one container to another.

        ``target_index=None`` lets the server pick a slot; ``amount=None``
        moves the whole stack.
        """
        await self.request(
            {
                "action": "move_item",
                "amount": amount,
                "index": index,
                "source_x": source[0],
                "source_y": source[1],
                "source_z": source[2],
                "target_index": target_index,
                "target_x": target[0],
                "target_y": target[1],
                "target_z": target[2],
            }
        )

    async def get_power_level(self, x: int, y: int, z: int) -> int:
        r = await self.request({"action": "get_power_level", "x": x, "y": y, "z": z})
        return r["power"]

    async def tell(self, target: str, message: str) -> None:
        """Message a player (name or UUID) who is online inside the structure."""
        await self.request({"action": "tell", "target": target, "message": message})

    async def pay(self, target: str, amount: float) -> None:
        """Send money from your own account to a player."""
        await self.request({"action": "pay", "target": target, "amount": amount})

    async def craft(
        self,
        x: int,
        y: int,
        z: int,
        ingredients: Iterable[ItemReference | Mapping[str, int] | None],
    ) -> None:
        """Craft an item into the container at ``(x, y, z)``.

        *ingredients* lists the recipe grid slots; ``None`` leaves a slot
        empty.
        """
        await self.request(
            {
                "action": "craft",
                "x": x,
                "y": y,
                "z": z,
                "ingredients": [_ingredient(i) for i in ingredients],
            }
        )


def _ingredient(
    ref: ItemReference | Mapping[str, int] | None,
) -> dict[str, int] | None:
    if ref is None:
        return None
    if isinstance(ref, ItemReference):
        return ref.to_dict()
    return dict(ref)
