# =============================================================================
# ReplCraft Python Client -- Event Router
# =============================================================================
#
# Broadcast channel: named notifications delivered to whoever is subscribed
# at the moment they are emitted.  Nothing is buffered or replayed.
# =============================================================================

from __future__ import annotations

import asyncio
from collections import defaultdict
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

from ._logging import logger
from .constants import PUSH_BLOCK_UPDATE, PUSH_TRANSACT
from .types import InboundMessage, MessageKind, Transaction

Listener = Callable[..., Any]
TransactionResponder = Callable[[Any, bool], Awaitable[dict[str, Any]]]


@dataclass(eq=False)
class _Subscription:
    listener: Listener
    once: bool = False


class EventRouter:
    """Subscription registry plus demultiplexer for server pushes.

    Listeners may be plain functions or coroutine functions; coroutines are
    scheduled as tasks.  A listener that raises is logged and does not stop
    delivery to the others.

    Args:
        respond: Coroutine function ``(query_nonce, accept)`` used by the
            ``accept()``/``deny()`` controls of delivered transactions.
    """

    def __init__(self, respond: TransactionResponder) -> None:
        self._respond = respond
        self._listeners: dict[str, list[_Subscription]] = defaultdict(list)
        self._background_tasks: set[asyncio.Task[Any]] = set()

    # -- Registration ---------------------------------------------------------

    def on(
        self, name: str, listener: Listener | None = None
    ) -> Listener | Callable[[Listener], Listener]:
        """Register *listener* for *name*.

        Without *listener*, returns a decorator::

            @client.on("block update")
            def changed(cause, block, x, y, z):
                ...
        """
        if listener is None:

            def decorator(fn: Listener) -> Listener:
                self._listeners[name].append(_Subscription(fn))
                return fn

            return decorator

        self._listeners[name].append(_Subscription(listener))
        return listener

    def once(self, name: str, listener: Listener) -> Listener:
        """Register *listener* for the next *name* notification only."""
        self._listeners[name].append(_Subscription(listener, once=True))
        return listener

    def off(self, name: str, listener: Listener) -> None:
        """Remove one registration of *listener*; unknown listeners are ignored."""
        subs = self._listeners.get(name, [])
        for sub in subs:
            if sub.listener == listener:
                subs.remove(sub)
                return

    def listener_count(self, name: str) -> int:
        return len(self._listeners.get(name, []))

    # -- Delivery -------------------------------------------------------------

    def emit(self, name: str, *args: Any) -> int:
        """Deliver a notification to the current listeners of *name*.

        Returns:
            The number of listeners invoked.
        """
        # Snapshot: listeners added during delivery wait for the next emit
        subs = list(self._listeners.get(name, []))
        for sub in subs:
            if sub.once:
                self._discard(name, sub)
            try:
                result = sub.listener(*args)
                if asyncio.iscoroutine(result):
                    self._fire_task(result, name)
            except Exception as exc:
                logger.error("Listener error for '%s': %s", name, exc)
        return len(subs)

    def _discard(self, name: str, sub: _Subscription) -> None:
        subs = self._listeners.get(name, [])
        if sub in subs:
            subs.remove(sub)

    def route(self, msg: InboundMessage) -> bool:
        """Broadcast a push frame.

        Typed pushes (``block update``, ``transact``) are delivered first;
        a frame that also names an ``event`` is then broadcast under that
        name as well.

        Returns:
            True if the frame carried a recognized push marker.
        """
        routed = False

        if msg.kind == MessageKind.BLOCK_UPDATE:
            self.emit(
                PUSH_BLOCK_UPDATE,
                msg.get("cause"),
                msg.get("block"),
                msg.get("x"),
                msg.get("y"),
                msg.get("z"),
            )
            routed = True
        elif msg.kind == MessageKind.TRANSACT:
            self.emit(PUSH_TRANSACT, self._make_transaction(msg))
            routed = True

        if msg.event:
            self.emit(
                msg.event,
                msg.get("cause"),
                msg.get("block"),
                msg.get("x"),
                msg.get("y"),
                msg.get("z"),
            )
            routed = True

        return routed

    def _make_transaction(self, msg: InboundMessage) -> Transaction:
        return Transaction(
            query=msg.get("query"),
            amount=msg.get("amount"),
            player=msg.get("player"),
            player_uuid=msg.get("player_uuid"),
            query_nonce=msg.get("queryNonce"),
            _respond=self._respond,
        )

    def _fire_task(self, coro: Any, name: str) -> None:
        """Schedule a coroutine listener with a strong reference to prevent GC."""
        task = asyncio.ensure_future(coro)
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)
        task.add_done_callback(lambda t: self._log_task_error(t, name))

    @staticmethod
    def _log_task_error(task: asyncio.Task[Any], name: str) -> None:
        if not task.cancelled() and task.exception() is not None:
            logger.error("Listener error for '%s': %s", name, task.exception())

    async def cancel_tasks(self) -> None:
        """Cancel coroutine listeners still running."""
        tasks = list(self._background_tasks)
        for task in tasks:
            task.cancel()
        self._background_tasks.clear()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
