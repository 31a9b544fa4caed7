# =============================================================================
# ReplCraft Python Client -- Credential Decoding
# =============================================================================
#
# A credential is a JWT-shaped token: three dot-separated segments whose
# middle segment is base64 JSON naming the server ``host``.  The client only
# reads it to find the gateway; the server verifies it on ``authenticate``.
# =============================================================================

from __future__ import annotations

import base64
import binascii
import json
import re
from dataclasses import dataclass, field
from typing import Any

from .constants import GATEWAY_PATH, GATEWAY_SCHEME
from .errors import CraftCredentialError

# Copy-pasted tokens often arrive with whitespace or an http:// prefix
_PREFIX_RE = re.compile(r"^\s*(?:http://)?\s*")


@dataclass(frozen=True)
class Credential:
    """A decoded API credential.

    Attributes:
        token: The credential with its leading prefix stripped; this is the
            exact string sent with ``authenticate``.
        host: Server ``host[:port]`` taken from the claims.
        claims: The full decoded middle segment.
    """

    token: str
    host: str
    claims: dict[str, Any] = field(default_factory=dict, compare=False)

    @property
    def endpoint(self) -> str:
        return f"{GATEWAY_SCHEME}://{self.host}{GATEWAY_PATH}"


def strip_credential(raw: str) -> str:
    """Remove a leading whitespace / ``http://`` run."""
    return _PREFIX_RE.sub("", raw, count=1)


def _b64decode(segment: str) -> bytes:
    # JWT segments are unpadded base64url; the standard alphabet also passes
    padded = segment + "=" * (-len(segment) % 4)
    return base64.b64decode(padded, altchars=b"-_", validate=True)


def parse_credential(raw: str) -> Credential:
    """Decode *raw* into a :class:`Credential`.

    Raises:
        CraftCredentialError: If the token is not three segments, the middle
            segment is not base64 JSON, or it has no ``host``.
    """
    if not isinstance(raw, str):
        raise CraftCredentialError("credential must be a string")

    token = strip_credential(raw).strip()
    parts = token.split(".")
    if len(parts) != 3 or not parts[1]:
        raise CraftCredentialError("expected three dot-separated segments")

    try:
        claims = json.loads(_b64decode(parts[1]))
    except (binascii.Error, ValueError) as exc:
        raise CraftCredentialError(f"undecodable claims segment: {exc}") from exc

    if not isinstance(claims, dict):
        raise CraftCredentialError("claims segment is not an object")
    host = claims.get("host")
    if not isinstance(host, str) or not host:
        raise CraftCredentialError("claims segment has no host")

    return Credential(token=token, host=host, claims=claims)
