# =============================================================================
# ReplCraft Python Client -- Error Types
# =============================================================================

from __future__ import annotations

from .constants import (
    ERROR_BAD_REQUEST,
    ERROR_CONNECTION_CLOSED,
    ERROR_INVALID_CREDENTIAL,
    ERROR_INVALID_OPERATION,
    ERROR_OFFLINE,
    ERROR_OUT_OF_FUEL,
    ERROR_PROTOCOL,
    ERROR_UNAUTHENTICATED,
)


class CraftError(Exception):
    """Base exception for all ReplCraft client errors.

    Attributes:
        kind: Classification string, e.g. ``"out of fuel"``. Server-side
            failures carry the server's own string here.
        message: Human-readable detail.
    """

    kind: str = "error"

    def __init__(self, message: str | None = None, *, kind: str | None = None) -> None:
        if kind is not None:
            self.kind = kind
        self.message = message if message is not None else self.kind
        super().__init__(f"{self.kind}: {self.message}")


class CraftConnectionError(CraftError):
    """No open connection, or the connection dropped with the request pending."""

    kind = ERROR_CONNECTION_CLOSED


class CraftAuthError(CraftError):
    """Authentication missing or rejected."""

    kind = ERROR_UNAUTHENTICATED


class CraftInvalidOperationError(CraftError):
    kind = ERROR_INVALID_OPERATION


class CraftBadRequestError(CraftError):
    kind = ERROR_BAD_REQUEST


class CraftOutOfFuelError(CraftError):
    """The structure ran out of fuel. Retryable, see ``retry_on_fuel_error``."""

    kind = ERROR_OUT_OF_FUEL


class CraftOfflineError(CraftError):
    """The structure's owner is offline."""

    kind = ERROR_OFFLINE


class CraftCredentialError(CraftError):
    """The credential could not be decoded into an endpoint."""

    kind = ERROR_INVALID_CREDENTIAL


class CraftProtocolError(CraftError):
    """Malformed inbound frame."""

    kind = ERROR_PROTOCOL


_ERRORS_BY_KIND: dict[str, type[CraftError]] = {
    cls.kind: cls
    for cls in (
        CraftConnectionError,
        CraftAuthError,
        CraftInvalidOperationError,
        CraftBadRequestError,
        CraftOutOfFuelError,
        CraftOfflineError,
    )
}


def error_from_response(kind: str | None, message: str | None = None) -> CraftError:
    """Build the typed error for a failed response.

    Unknown kinds produce a plain :class:`CraftError` that still carries
    the server's classification string.
    """
    kind = kind or "error"
    cls = _ERRORS_BY_KIND.get(kind)
    if cls is None:
        return CraftError(message, kind=kind)
    return cls(message)
