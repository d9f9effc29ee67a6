"""USB-serial transport implementation using pyserial."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

from nirctl.core.errors import (
    OpenFailedError,
    TransportUnavailableError,
    UnexpectedDisconnectError,
    WriteFailureError,
)
from nirctl.core.model import SerialPortInfo
from nirctl.transports.base import DisconnectCallback

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class SerialConfig:
    port: str
    baud: int


def _import_serial():
    try:
        import serial  # type: ignore
    except Exception as exc:  # pragma: no cover - import failure path
        raise TransportUnavailableError(
            "Serial transport requires 'pyserial'. Install dependency and retry."
        ) from exc
    return serial


def list_serial_ports() -> list[SerialPortInfo]:
    _import_serial()
    from serial.tools import list_ports  # type: ignore

    return [
        SerialPortInfo(
            device=info.device,
            description=info.description or "",
            vid=info.vid,
            pid=info.pid,
        )
        for info in list_ports.comports()
    ]


class SerialChannel:
    """Open serial handle exposed as an async byte stream.

    Blocking pyserial calls run in worker threads. A cancelled read calls
    ``cancel_read()`` on the handle so the thread returns and the port can be
    reopened by the next negotiation attempt.
    """

    def __init__(self, handle, config: SerialConfig) -> None:
        self._handle = handle
        self.config = config
        self._dropped = False
        self._callbacks: list[DisconnectCallback] = []

    @property
    def is_open(self) -> bool:
        return self._handle is not None and not self._dropped and bool(self._handle.is_open)

    def add_disconnect_callback(self, callback: DisconnectCallback) -> None:
        self._callbacks.append(callback)

    async def write(self, payload: bytes) -> None:
        if not self.is_open:
            raise WriteFailureError(f"Serial port {self.config.port} is not open")
        try:
            await asyncio.to_thread(self._write_blocking, payload)
        except OSError as exc:
            self._mark_dropped(f"write failed: {exc}")
            raise WriteFailureError(f"Serial write to {self.config.port} failed: {exc}") from exc

    def _write_blocking(self, payload: bytes) -> None:
        self._handle.write(payload)
        self._handle.flush()

    async def read(self, timeout_s: float) -> bytes:
        if not self.is_open:
            raise UnexpectedDisconnectError(f"Serial port {self.config.port} is closed")
        try:
            return await asyncio.to_thread(self._read_blocking, timeout_s)
        except asyncio.CancelledError:
            self._cancel_pending_read()
            raise
        except OSError as exc:
            self._mark_dropped(f"read failed: {exc}")
            raise UnexpectedDisconnectError(
                f"Serial port {self.config.port} dropped: {exc}"
            ) from exc

    def _read_blocking(self, timeout_s: float) -> bytes:
        self._handle.timeout = max(timeout_s, 0.0)
        first = self._handle.read(1)
        if not first:
            return b""
        waiting = self._handle.in_waiting
        return bytes(first) + (bytes(self._handle.read(waiting)) if waiting else b"")

    def _cancel_pending_read(self) -> None:
        handle = self._handle
        if handle is None or not hasattr(handle, "cancel_read"):
            return
        try:
            handle.cancel_read()
        except OSError as exc:
            LOGGER.debug("cancel_read on %s failed: %s", self.config.port, exc)

    def _mark_dropped(self, reason: str) -> None:
        if self._dropped:
            return
        self._dropped = True
        LOGGER.warning("Serial port %s dropped (%s)", self.config.port, reason)
        for callback in self._callbacks:
            callback()

    async def close(self) -> None:
        handle, self._handle = self._handle, None
        if handle is None:
            return
        self._callbacks.clear()
        if hasattr(handle, "cancel_read"):
            try:
                handle.cancel_read()
            except OSError:
                pass
        try:
            await asyncio.to_thread(handle.close)
        except OSError as exc:
            LOGGER.debug("Closing %s failed: %s", self.config.port, exc)


class SerialTransport:
    async def open(self, config: SerialConfig) -> SerialChannel:
        serial = _import_serial()

        handle = serial.Serial()
        handle.port = config.port
        handle.baudrate = config.baud
        handle.bytesize = serial.EIGHTBITS
        handle.parity = serial.PARITY_NONE
        handle.stopbits = serial.STOPBITS_ONE
        handle.xonxoff = False
        handle.rtscts = False
        handle.dsrdtr = False
        handle.timeout = 0
        handle.dtr = True
        handle.rts = False

        try:
            await asyncio.to_thread(handle.open)
        except (serial.SerialException, OSError) as exc:
            raise OpenFailedError(
                f"Could not open {config.port} at {config.baud} baud: {exc}"
            ) from exc

        handle.dtr = True
        handle.rts = False
        return SerialChannel(handle, config)
