# =============================================================================
# ReplCraft Python Client -- Connection Manager
# =============================================================================
#
# WebSocket lifecycle management: open, receive loop, close detection.
# Authentication is driven by the client layer once the socket is open.
# =============================================================================

from __future__ import annotations

import asyncio
import time
from typing import Any, Callable

import websockets.asyncio.client
from websockets.exceptions import ConnectionClosed, ConnectionClosedError

from ._logging import logger
from .constants import CONNECTION_TIMEOUT, MAX_MESSAGE_SIZE, WS_CLOSE_NORMAL
from .errors import CraftConnectionError, CraftError
from .types import ConnectionState, ConnectionStats


class ConnectionManager:
    """Owns one WebSocket at a time and reports its lifecycle.

    This is the low-level transport layer.  ``AsyncCraftClient`` uses it
    for all network I/O and runs the ``authenticate`` handshake on top.

    Callbacks:
        on_message: Every inbound text frame, in arrival order.
        on_close: Once per opened connection, after the socket is gone.
        on_error: Transport failures (failed open, abnormal close).
        on_state_change: Every :class:`ConnectionState` transition.
    """

    def __init__(
        self,
        *,
        connect_timeout: float = CONNECTION_TIMEOUT,
        extra_headers: dict[str, str] | None = None,
        stats: ConnectionStats | None = None,
        on_message: Callable[[str | bytes], Any] | None = None,
        on_close: Callable[[], Any] | None = None,
        on_error: Callable[[CraftError], Any] | None = None,
        on_state_change: Callable[[ConnectionState], Any] | None = None,
    ) -> None:
        self._connect_timeout = connect_timeout
        self._extra_headers = extra_headers or {}
        self._stats = stats or ConnectionStats()

        # Callbacks
        self._on_message = on_message
        self._on_close = on_close
        self._on_error = on_error
        self._on_state_change = on_state_change

        # State
        self._ws: websockets.asyncio.client.ClientConnection | None = None
        self._url: str | None = None
        self._state = ConnectionState.CLOSED
        self._recv_task: asyncio.Task[None] | None = None
        # Pending open, and the last one disconnect() gave up on
        self._opening: asyncio.Future[Any] | None = None
        self._abandoned: asyncio.Future[Any] | None = None

    # -- Properties -----------------------------------------------------------

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_open(self) -> bool:
        return self._ws is not None

    @property
    def is_connecting(self) -> bool:
        return self._opening is not None

    @property
    def is_authenticated(self) -> bool:
        return self.is_open and self._state == ConnectionState.AUTHENTICATED

    @property
    def url(self) -> str | None:
        return self._url

    # -- Connect / Disconnect -------------------------------------------------

    async def connect(self, url: str) -> None:
        """Open the WebSocket and start the receive loop.

        Raises:
            CraftConnectionError: If a connection is already open or opening,
                the socket cannot be opened within the connect timeout, or
                :meth:`disconnect` is called while it is still opening.
        """
        if self._ws is not None or self._opening is not None:
            raise CraftConnectionError("already connected; disconnect first")

        self._url = url
        self._set_state(ConnectionState.CONNECTING)
        logger.debug("Connecting to %s", url)

        opening = asyncio.ensure_future(
            asyncio.wait_for(
                websockets.asyncio.client.connect(
                    url,
                    additional_headers=self._extra_headers or None,
                    max_size=MAX_MESSAGE_SIZE,
                    open_timeout=None,  # asyncio.wait_for handles timeout
                ),
                timeout=self._connect_timeout,
            )
        )
        self._opening = opening
        try:
            ws = await opening
        except asyncio.CancelledError:
            task = asyncio.current_task()
            if self._abandoned is opening and not (task and task.cancelling()):
                raise self._abandoned_error(url) from None
            if self._abandoned is not opening:
                self._set_state(ConnectionState.CLOSED)
            raise
        except Exception as exc:
            if self._abandoned is opening:
                raise self._abandoned_error(url) from exc
            if isinstance(exc, asyncio.TimeoutError):
                self._fail_open(
                    CraftConnectionError(
                        f"connection to {url} timed out after {self._connect_timeout}s"
                    )
                )
            self._fail_open(
                CraftConnectionError(f"failed to connect to {url}: {exc}"), exc
            )
        finally:
            if self._opening is opening:
                self._opening = None

        if self._abandoned is opening:
            # disconnect() ran after the handshake finished but before we resumed
            await self._close_quietly(ws)
            raise self._abandoned_error(url)

        self._ws = ws
        self._stats.connected_since = time.monotonic()
        self._set_state(ConnectionState.AWAITING_AUTH)
        self._recv_task = asyncio.create_task(self._recv_loop(ws))

    @staticmethod
    def _abandoned_error(url: str) -> CraftConnectionError:
        return CraftConnectionError(f"disconnected while connecting to {url}")

    def _fail_open(
        self, error: CraftConnectionError, cause: BaseException | None = None
    ) -> None:
        self._set_state(ConnectionState.CLOSED)
        self._report_error(error)
        raise error from cause

    async def disconnect(self) -> None:
        """Close the socket and wait for the close path to finish.

        An open still in progress is abandoned; its :meth:`connect` raises.
        Safe to call when already closed.
        """
        opening = self._opening
        if opening is not None:
            await self._abandon_open(opening)

        ws = self._ws
        if ws is None:
            return

        await self._close_quietly(ws)

        task = self._recv_task
        if task is not None and task is not asyncio.current_task():
            await asyncio.gather(task, return_exceptions=True)

        # Receive loop normally ran the close path already
        self._handle_closed(ws)

    async def _abandon_open(self, opening: asyncio.Future[Any]) -> None:
        self._opening = None
        self._abandoned = opening
        opening.cancel()
        await asyncio.gather(opening, return_exceptions=True)
        if not opening.cancelled() and opening.exception() is None:
            await self._close_quietly(opening.result())
        self._set_state(ConnectionState.CLOSED)
        logger.debug("Abandoned connect to %s", self._url)

    @staticmethod
    async def _close_quietly(ws: websockets.asyncio.client.ClientConnection) -> None:
        try:
            await ws.close(WS_CLOSE_NORMAL, "client disconnect")
        except Exception as exc:
            logger.debug("Close handshake failed: %s", exc)

    def mark_authenticated(self) -> None:
        """Called by the client layer once ``authenticate`` succeeds."""
        if self._ws is not None:
            self._set_state(ConnectionState.AUTHENTICATED)

    # -- Send -----------------------------------------------------------------

    async def send(self, data: str) -> bool:
        """Send a text frame.  Returns True on success."""
        ws = self._ws
        if ws is None:
            return False

        try:
            await ws.send(data)
        except ConnectionClosed:
            logger.debug("Send failed: connection closed")
            return False
        except Exception as exc:
            logger.debug("Send failed: %s", exc)
            return False

        self._stats.messages_sent += 1
        self._stats.bytes_sent += len(data.encode("utf-8"))
        return True

    # -- Internal: receive loop -----------------------------------------------

    async def _recv_loop(self, ws: websockets.asyncio.client.ClientConnection) -> None:
        """Read frames until the socket closes, then run the close path."""
        try:
            async for message in ws:
                if self._ws is not ws:
                    await self._close_quietly(ws)
                    break
                self._handle_raw_message(message)
        except ConnectionClosedError as exc:
            logger.debug("WebSocket closed abnormally: %s", exc)
            self._report_error(CraftConnectionError(f"connection lost: {exc}"))
        except asyncio.CancelledError:
            self._handle_closed(ws)
            raise
        except Exception as exc:
            logger.warning("Receive loop error: %s", exc)
            self._report_error(CraftConnectionError(f"receive loop failed: {exc}"))
            await self._close_quietly(ws)
        else:
            logger.debug("WebSocket closed normally")

        self._handle_closed(ws)

    def _handle_raw_message(self, data: str | bytes) -> None:
        self._stats.messages_received += 1
        if isinstance(data, bytes):
            self._stats.bytes_received += len(data)
        else:
            self._stats.bytes_received += len(data.encode("utf-8"))

        if self._on_message:
            self._on_message(data)

    def _handle_closed(self, ws: websockets.asyncio.client.ClientConnection) -> None:
        """Tear down *ws* exactly once; stale sockets are ignored."""
        if self._ws is not ws:
            return

        self._ws = None
        self._recv_task = None
        self._stats.connected_since = None
        self._set_state(ConnectionState.CLOSED)
        if self._on_close:
            self._on_close()

    def _report_error(self, error: CraftError) -> None:
        if self._on_error:
            self._on_error(error)

    # -- State management -----------------------------------------------------

    def _set_state(self, new_state: ConnectionState) -> None:
        if new_state == self._state:
            return
        old = self._state
        self._state = new_state
        logger.debug("State: %s -> %s", old.value, new_state.value)
        if self._on_state_change:
            self._on_state_change(new_state)
