"""Shared builders for client tests."""

import asyncio
import base64
import json

from websockets.exceptions import ConnectionClosedOK


def make_token(host: str = "localhost:8080", **claims) -> str:
    body = {"host": host, "scope": "structure", **claims}
    middle = base64.urlsafe_b64encode(json.dumps(body).encode()).rstrip(b"=").decode()
    return f"eyJhbGciOiJIUzI1NiJ9.{middle}.c2lnbmF0dXJl"


async def settle(rounds: int = 5) -> None:
    """Let scheduled callbacks and tasks run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


class FakeWebSocket:
    """Stands in for a websockets ClientConnection."""

    def __init__(self, frames=()):
        self._frames: asyncio.Queue = asyncio.Queue()
        for frame in frames:
            self._frames.put_nowait(frame)
        self.sent: list[str] = []
        self.closed = False

    def feed(self, item) -> None:
        """Queue a frame, an exception to raise, or None for a clean close."""
        self._frames.put_nowait(item)

    def __aiter__(self):
        return self

    async def __anext__(self):
        item = await self._frames.get()
        if item is None:
            raise StopAsyncIteration
        if isinstance(item, BaseException):
            raise item
        return item

    async def send(self, data: str) -> None:
        if self.closed:
            raise ConnectionClosedOK(None, None)
        self.sent.append(data)

    async def close(self, code: int = 1000, reason: str = "") -> None:
        if not self.closed:
            self.closed = True
            self._frames.put_nowait(None)
