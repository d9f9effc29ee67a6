"""Transport interfaces."""

from __future__ import annotations

from collections.abc import Callable
from typing import Protocol

DisconnectCallback = Callable[[], None]


class TransportChannel(Protocol):
    @property
    def is_open(self) -> bool:
        """Whether the underlying link is still usable."""

    async def write(self, payload: bytes) -> None:
        """Write payload, raising WriteFailureError when the link rejects it."""

    async def read(self, timeout_s: float) -> bytes:
        """Return zero or more bytes, never blocking past ``timeout_s``."""

    async def close(self) -> None:
        """Release the link. Idempotent and never raises."""

    def add_disconnect_callback(self, callback: DisconnectCallback) -> None:
        """Register a function invoked once when the link drops."""
