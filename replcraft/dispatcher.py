# =============================================================================
# ReplCraft Python Client -- Request Dispatcher
# =============================================================================
#
# Request/response multiplexing over one connection.  Every request carries
# a per-connection "nonce"; the server echoes it on the response, which may
# arrive in any order relative to other responses.
# =============================================================================

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable, Mapping

from ._logging import logger
from .constants import ERROR_OUT_OF_FUEL
from .errors import CraftConnectionError, CraftError, error_from_response
from .retry_queue import RetryEntry

if TYPE_CHECKING:
    from .connection import ConnectionManager
    from .protocol import MessageCodec
    from .retry_queue import RetryQueue
    from .types import InboundMessage


@dataclass
class PendingRequest:
    """An outstanding request, keyed by its nonce in the correlation table."""

    token: str
    payload: dict[str, Any]
    future: asyncio.Future[dict[str, Any]]
    attempts: int = 0


class RequestDispatcher:
    """Correlation table and nonce counter for a single connection.

    A new dispatcher is created for every login, so nonces restart at
    ``"0"`` and no entry outlives the connection it was sent on.

    Args:
        connection: Transport used to send frames.
        codec: Frame encoder.
        retry_queue: Receives out-of-fuel failures while it is enabled.
        on_out_of_fuel: Notified of every out-of-fuel failure.
    """

    def __init__(
        self,
        connection: ConnectionManager,
        codec: MessageCodec,
        *,
        retry_queue: RetryQueue | None = None,
        on_out_of_fuel: Callable[[CraftError], Any] | None = None,
    ) -> None:
        self._connection = connection
        self._codec = codec
        self._retry_queue = retry_queue
        self._on_out_of_fuel = on_out_of_fuel
        self._pending: dict[str, PendingRequest] = {}
        self._next_nonce = 0
        self._closed = False

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    @property
    def closed(self) -> bool:
        return self._closed

    def is_pending(self, token: str) -> bool:
        return token in self._pending

    # -- Requests -------------------------------------------------------------

    async def request(self, payload: Mapping[str, Any]) -> dict[str, Any]:
        """Send *payload* and wait for its response.

        Returns:
            The full parsed response.

        Raises:
            CraftConnectionError: If no connection is open, or it closes
                before the response arrives.
            CraftError: The server-classified failure otherwise.
        """
        if self._closed or not self._connection.is_open:
            raise CraftConnectionError("connection closed")

        future: asyncio.Future[dict[str, Any]] = (
            asyncio.get_running_loop().create_future()
        )
        await self._dispatch(dict(payload), future)
        return await future

    async def resubmit(self, entry: RetryEntry) -> None:
        """Send a retry entry again, attached to its original future."""
        if self._closed or not self._connection.is_open:
            if not entry.future.done():
                entry.future.set_exception(CraftConnectionError("connection closed"))
            return
        await self._dispatch(entry.payload, entry.future, attempts=entry.attempts)

    async def _dispatch(
        self,
        payload: dict[str, Any],
        future: asyncio.Future[dict[str, Any]],
        *,
        attempts: int = 0,
    ) -> None:
        token = self._allocate_token()
        # Registered before sending: the response can arrive while send() yields
        self._pending[token] = PendingRequest(token, payload, future, attempts)

        ok = await self._connection.send(self._codec.encode(payload, token))
        if not ok:
            self._pending.pop(token, None)
            if not future.done():
                future.set_exception(CraftConnectionError("connection closed"))

    def _allocate_token(self) -> str:
        token = str(self._next_nonce)
        self._next_nonce += 1
        return token

    # -- Responses ------------------------------------------------------------

    def handle_response(self, msg: InboundMessage) -> bool:
        """Settle the request *msg* answers.

        Returns:
            True if the nonce matched an outstanding request.  Unknown or
            already-settled nonces return False and are left for the event
            router.
        """
        if msg.nonce is None:
            return False
        entry = self._pending.pop(msg.nonce, None)
        if entry is None:
            return False

        if entry.future.done():
            # Caller cancelled while waiting; nothing left to settle
            return True

        if msg.ok:
            entry.future.set_result(msg.data)
            return True

        error = error_from_response(msg.error, msg.message)
        if error.kind == ERROR_OUT_OF_FUEL:
            if self._on_out_of_fuel:
                self._on_out_of_fuel(error)
            if self._retry_queue is not None and self._retry_queue.enabled:
                self._retry_queue.defer(
                    RetryEntry(
                        payload=entry.payload,
                        future=entry.future,
                        attempts=entry.attempts,
                    )
                )
                return True

        entry.future.set_exception(error)
        return True

    # -- Teardown -------------------------------------------------------------

    def fail_all(self, reason: str = "connection closed") -> int:
        """Reject every outstanding request and discard the table.

        Returns:
            The number of requests rejected.
        """
        pending = self._pending
        self._pending = {}
        self._closed = True

        rejected = 0
        for entry in pending.values():
            if not entry.future.done():
                entry.future.set_exception(CraftConnectionError(reason))
                rejected += 1
        if rejected:
            logger.debug("Rejected %d pending requests on close", rejected)
        return rejected
