"""ReplCraft Python client: remote control of a claimed Minecraft structure.

Usage::

    from replcraft import connect

    async with connect(token) as client:
        @client.on("block update")
        def changed(cause, block, x, y, z):
            print(cause, block, (x, y, z))

        await client.watch_all()
        print(await client.get_block(0, 0, 0))

Out-of-fuel retries::

    client.retry_on_fuel_error(True)   # requests wait until fuel is back

Optional extras::

    pip install replcraft-client[fast]   # orjson frame codec
"""

from ._version import __version__
from .client import AsyncCraftClient
from .credential import Credential, parse_credential
from .errors import (
    CraftAuthError,
    CraftBadRequestError,
    CraftConnectionError,
    CraftCredentialError,
    CraftError,
    CraftInvalidOperationError,
    CraftOfflineError,
    CraftOutOfFuelError,
    CraftProtocolError,
)
from .types import (
    ConnectionState,
    Entity,
    Item,
    ItemReference,
    RetryConfig,
    Transaction,
)


def connect(
    credential: str,
    **kwargs,
) -> AsyncCraftClient:
    """Create a client for the structure *credential* belongs to.

    Use as an async context manager; entering it logs in. Keyword arguments
    are forwarded to :class:`AsyncCraftClient` -- common ones: ``retry``,
    ``connect_timeout``, ``extra_headers``.

    Raises:
        CraftCredentialError: On entry, if the token cannot be decoded.
        CraftConnectionError: On entry, if the server cannot be reached.
        CraftError: On entry, if authentication is rejected.
    """
    return AsyncCraftClient(credential, **kwargs)


__all__ = [
    "__version__",
    "connect",
    "AsyncCraftClient",
    "Credential",
    "parse_credential",
    "ConnectionState",
    "Entity",
    "Item",
    "ItemReference",
    "RetryConfig",
    "Transaction",
    "CraftError",
    "CraftConnectionError",
    "CraftAuthError",
    "CraftInvalidOperationError",
    "CraftBadRequestError",
    "CraftOutOfFuelError",
    "CraftOfflineError",
    "CraftCredentialError",
    "CraftProtocolError",
]
