"""Command encoding for the instrument's wire dialects and RX diagnostics."""

from __future__ import annotations

import asyncio
import time

from nirctl.core.errors import NotConnectedError
from nirctl.core.logsink import LogSink
from nirctl.core.model import Command, Dialect, Opcode
from nirctl.transports.base import TransportChannel

STX = 0x02
ETX = 0x03
STX_ASCII_ADDRESS = 0x01


def _binary_frame(command: Command) -> bytes:
    params = command.params.ljust(2, b"\x00")
    return bytes([STX, command.opcode.code]) + params


def encode(command: Command, dialect: Dialect | str) -> bytes:
    """Encode a command; opcodes without a letter fall back to the binary frame."""
    dialect = Dialect(dialect)
    if command.opcode is Opcode.PING:
        return bytes([Opcode.PING.code])

    letter = command.opcode.letter
    if dialect is Dialect.ASCII and letter is not None:
        return letter.encode("ascii")
    if dialect is Dialect.STX_ASCII and letter is not None:
        return bytes([STX, STX_ASCII_ADDRESS, ord(letter), ETX])
    if dialect is Dialect.BINARY_ETX:
        return _binary_frame(command) + bytes([ETX])
    return _binary_frame(command)


def render_hex(data: bytes) -> str:
    return " ".join(f"{b:02X}" for b in data)


def render_ascii(data: bytes) -> str:
    return "".join(chr(b) if 32 <= b <= 126 else "." for b in data)


def format_rx(data: bytes) -> str:
    return f"RX << [{render_hex(data)}] {render_ascii(data)}"


async def listen(
    channel: TransportChannel,
    duration_s: float,
    log: LogSink,
    *,
    poll_s: float = 0.1,
) -> bool:
    """Passively read until the deadline, logging every chunk that arrives."""
    received = False
    deadline = time.monotonic() + duration_s
    while True:
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            break
        chunk = await channel.read(min(poll_s, remaining))
        if chunk:
            received = True
            log(format_rx(chunk))
    return received


class CommandProtocol:
    """Writes encoded commands to the current channel, one write at a time."""

    def __init__(self, dialect: Dialect | str, log: LogSink) -> None:
        self.dialect = Dialect(dialect)
        self._log = log
        self._channel: TransportChannel | None = None
        self._write_lock = asyncio.Lock()

    @property
    def channel(self) -> TransportChannel | None:
        return self._channel

    def bind(self, channel: TransportChannel | None) -> None:
        self._channel = channel

    def encode(self, command: Command) -> bytes:
        return encode(command, self.dialect)

    async def send(self, command: Command, *, silent: bool = False) -> bytes:
        channel = self._channel
        if channel is None or not channel.is_open:
            raise NotConnectedError(f"Cannot send {command.label or command.opcode.name}: no open channel")
        payload = self.encode(command)
        async with self._write_lock:
            await channel.write(payload)
        if not silent:
            self._log(f"TX -> {command.label or command.opcode.name} [{render_hex(payload)}]")
        return payload
