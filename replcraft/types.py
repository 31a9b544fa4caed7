# =============================================================================
# ReplCraft Python Client -- Type Definitions
# =============================================================================

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Mapping

from .constants import RETRY_DELAY


class ConnectionState(str, Enum):
    """Connection lifecycle state.

    Typical flow: CLOSED -> CONNECTING -> AWAITING_AUTH -> AUTHENTICATED.
    Any state falls back to CLOSED when the socket goes away; a rejected
    authentication also ends in CLOSED.
    """

    CLOSED = "closed"
    CONNECTING = "connecting"
    AWAITING_AUTH = "awaiting_auth"
    AUTHENTICATED = "authenticated"


class MessageKind(str, Enum):
    """Tagged variant of an inbound frame."""

    RESPONSE = "response"
    NAMED_EVENT = "named_event"
    BLOCK_UPDATE = "block_update"
    TRANSACT = "transact"
    UNRECOGNIZED = "unrecognized"


@dataclass(frozen=True, slots=True)
class InboundMessage:
    """A decoded server frame.

    A frame may carry a ``nonce`` (response to one of our requests) and a
    push marker (``type`` or ``event``) at the same time; ``kind`` names the
    push variant when there is one, so responses are still matched by nonce
    independently of ``kind``.

    Attributes:
        kind: Variant used for routing.
        data: The full parsed frame.
        nonce: Correlation token, normalized to ``str``.
        ok: Success flag of a response.
        error: Server error classification when ``ok`` is false.
        message: Server error detail.
        event: Explicit event name for generic pushes.
        type: Typed push marker (``"block update"``, ``"transact"``).
    """

    kind: MessageKind
    data: dict[str, Any]
    nonce: str | None = None
    ok: bool = False
    error: str | None = None
    message: str | None = None
    event: str | None = None
    type: str | None = None

    @property
    def is_push(self) -> bool:
        return self.kind not in (MessageKind.RESPONSE, MessageKind.UNRECOGNIZED)

    def get(self, key: str, default: Any = None) -> Any:
        return self.data.get(key, default)


@dataclass
class ConnectionStats:
    """Counters for one client, accumulated across logins."""

    messages_sent: int = 0
    messages_received: int = 0
    bytes_sent: int = 0
    bytes_received: int = 0
    responses_matched: int = 0
    events_routed: int = 0
    messages_dropped: int = 0
    fuel_errors: int = 0
    login_count: int = 0
    connected_since: float | None = None


@dataclass
class RetryConfig:
    """Out-of-fuel retry behaviour.

    Attributes:
        enabled: Defer and resubmit requests that fail with ``out of fuel``
            instead of raising. Such requests may wait indefinitely.
        delay: Seconds between the failure and re-queueing the request.
    """

    enabled: bool = False
    delay: float = RETRY_DELAY


@dataclass(frozen=True, slots=True)
class Transaction:
    """A player-initiated ``/transact`` inside the structure.

    ``accept()`` deposits the offered money, ``deny()`` refunds it. Both
    resolve with the server's response to the follow-up request.
    """

    query: str | None
    amount: float | None
    player: str | None
    player_uuid: str | None
    query_nonce: Any
    _respond: Callable[[Any, bool], Awaitable[dict[str, Any]]] = field(
        repr=False, compare=False
    )

    async def accept(self) -> dict[str, Any]:
        return await self._respond(self.query_nonce, True)

    async def deny(self) -> dict[str, Any]:
        return await self._respond(self.query_nonce, False)


@dataclass(frozen=True, slots=True)
class Entity:
    type: str
    name: str
    x: float
    y: float
    z: float
    health: float | None = None
    max_health: float | None = None
    player_uuid: str | None = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Entity:
        return cls(
            type=data.get("type", ""),
            name=data.get("name", ""),
            x=data.get("x", 0),
            y=data.get("y", 0),
            z=data.get("z", 0),
            health=data.get("health"),
            max_health=data.get("max_health"),
            player_uuid=data.get("player_uuid"),
        )


@dataclass(frozen=True, slots=True)
class Item:
    """An item stack in a container slot."""

    index: int
    type: str
    amount: int

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Item:
        return cls(
            index=data.get("index", 0),
            type=data.get("type", ""),
            amount=data.get("amount", 0),
        )


@dataclass(frozen=True, slots=True)
class ItemReference:
    """Points at an item: container slot ``index`` at ``(x, y, z)``."""

    index: int
    x: int
    y: int
    z: int

    def to_dict(self) -> dict[str, int]:
        return {"index": self.index, "x": self.x, "y": self.y, "z": self.z}
