# =============================================================================
# ReplCraft Python Client -- Wire Protocol Codec
# =============================================================================
#
# Every frame is a JSON text object.
#
# Outgoing (client -> server):
#   {"action": ..., <action fields>, "nonce": "<n>"}
#
# Incoming (server -> client):
#   Response: {"nonce": "<n>", "ok": bool, "error"?, "message"?, <results>}
#   Push:     {"type": "block update" | "transact", ...} or {"event": ..., ...}
# =============================================================================

from __future__ import annotations

import json
from typing import Any, Mapping

from .constants import PUSH_BLOCK_UPDATE, PUSH_TRANSACT
from .errors import CraftProtocolError
from .types import InboundMessage, MessageKind

_TYPED_PUSHES = {
    PUSH_BLOCK_UPDATE: MessageKind.BLOCK_UPDATE,
    PUSH_TRANSACT: MessageKind.TRANSACT,
}

try:
    import orjson

    def _json_loads(data: str | bytes) -> Any:
        return orjson.loads(data)

    def _json_dumps(obj: Any) -> str:
        return orjson.dumps(obj).decode()

except ImportError:

    def _json_loads(data: str | bytes) -> Any:
        return json.loads(data)

    def _json_dumps(obj: Any) -> str:
        return json.dumps(obj, separators=(",", ":"))


class MessageCodec:
    """Encode request envelopes and decode inbound frames."""

    def encode(self, payload: Mapping[str, Any], nonce: str) -> str:
        """Serialize *payload* with its correlation token attached."""
        envelope = dict(payload)
        envelope["nonce"] = nonce
        return _json_dumps(envelope)

    def decode(self, data: str | bytes) -> InboundMessage:
        """Parse a frame and classify it.

        Raises:
            CraftProtocolError: If the frame is not a JSON object.
        """
        try:
            parsed = _json_loads(data)
        except ValueError as exc:
            raise CraftProtocolError(f"invalid JSON frame: {exc}") from exc
        if not isinstance(parsed, dict):
            raise CraftProtocolError(
                f"expected a JSON object, got {type(parsed).__name__}"
            )
        return self.classify(parsed)

    @staticmethod
    def classify(parsed: dict[str, Any]) -> InboundMessage:
        msg_type = parsed.get("type")
        if not isinstance(msg_type, str):
            msg_type = None
        event = parsed.get("event")
        if not isinstance(event, str) or not event:
            event = None
        nonce = parsed.get("nonce")

        if msg_type in _TYPED_PUSHES:
            kind = _TYPED_PUSHES[msg_type]
        elif event:
            kind = MessageKind.NAMED_EVENT
        elif nonce is not None:
            kind = MessageKind.RESPONSE
        else:
            kind = MessageKind.UNRECOGNIZED

        return InboundMessage(
            kind=kind,
            data=parsed,
            nonce=str(nonce) if nonce is not None else None,
            ok=bool(parsed.get("ok", False)),
            error=parsed.get("error"),
            message=parsed.get("message"),
            event=event,
            type=msg_type,
        )
