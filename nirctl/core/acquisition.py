"""Request/response orchestration with one exchange in flight at a time."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Coroutine
from typing import Any

from nirctl.core.assembler import PacketAssembler
from nirctl.core.errors import AcquisitionBusyError, NirctlError, NotConnectedError
from nirctl.core.logsink import LogSink
from nirctl.core.model import (
    FRAME_SIZE,
    AcquisitionOutcome,
    AcquisitionState,
    ByteOrder,
    Command,
    Timings,
)
from nirctl.core.protocol import CommandProtocol, format_rx, listen
from nirctl.transports.base import TransportChannel

_DONE = "done"
_TIMEOUT = "timeout"
_ABORTED = "aborted"
_ERROR = "error"


class AcquisitionController:
    """Races each exchange against its window.

    States run ``IDLE -> AWAITING_RESPONSE -> COMPLETED | TIMED_OUT | FAILED``.
    The read side of an exchange is a task; whichever of the task or the
    window finishes first wins and the other is cancelled and awaited.
    ``abort()`` cancels the task so the exchange resolves as FAILED.
    """

    def __init__(
        self,
        protocol: CommandProtocol,
        log: LogSink,
        *,
        byte_order: ByteOrder | str,
        timings: Timings | None = None,
        frame_size: int = FRAME_SIZE,
    ) -> None:
        self._protocol = protocol
        self._log = log
        self.byte_order = ByteOrder(byte_order)
        self.timings = timings or Timings()
        self.frame_size = frame_size
        self.state = AcquisitionState.IDLE
        self.last_outcome: AcquisitionOutcome | None = None
        self.assembler = PacketAssembler(frame_size)
        self._reader: asyncio.Future[Any] | None = None

    @property
    def busy(self) -> bool:
        return self.state is AcquisitionState.AWAITING_RESPONSE

    def abort(self, reason: str = "aborted") -> bool:
        reader = self._reader
        if reader is None or reader.done():
            return False
        self._log.warning(f"Cancelling in-flight exchange: {reason}")
        reader.cancel()
        return True

    def _channel(self) -> TransportChannel:
        channel = self._protocol.channel
        if channel is None or not channel.is_open:
            raise NotConnectedError("No open channel")
        return channel

    def _begin(self) -> None:
        if self.busy:
            raise AcquisitionBusyError("Another exchange is already awaiting a response")
        self.state = AcquisitionState.AWAITING_RESPONSE

    def _finish(self, outcome: AcquisitionOutcome) -> AcquisitionOutcome:
        self.state = outcome.state
        self.last_outcome = outcome
        return outcome

    async def _race(self, coro: Coroutine[Any, Any, Any], window_s: float) -> tuple[str, Any]:
        task = asyncio.ensure_future(coro)
        self._reader = task
        try:
            done, _ = await asyncio.wait({task}, timeout=window_s)
        except asyncio.CancelledError:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError, NirctlError):
                await task
            raise
        finally:
            self._reader = None

        if not done:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError, NirctlError):
                await task
            return _TIMEOUT, None
        if task.cancelled():
            return _ABORTED, None
        exc = task.exception()
        if exc is not None:
            return _ERROR, exc
        return _DONE, task.result()

    async def _fill(self, channel: TransportChannel, assembler: PacketAssembler) -> None:
        while not assembler.is_complete:
            chunk = await channel.read(self.timings.read_poll_s)
            if chunk:
                assembler.append(chunk)
                self._log(format_rx(chunk), logging.DEBUG)

    async def acquire_frame(
        self,
        command: Command | None = None,
        *,
        window_s: float | None = None,
    ) -> AcquisitionOutcome:
        """Send a scan-type command and collect one full frame."""
        command = command or Command.scan()
        window_s = self.timings.scan_timeout_s if window_s is None else window_s
        self._begin()
        assembler = PacketAssembler(self.frame_size)
        self.assembler = assembler
        try:
            try:
                channel = self._channel()
                await self._protocol.send(command)
            except NirctlError as exc:
                self._log.error(f"{command.label} not sent: {exc}")
                return self._finish(AcquisitionOutcome(AcquisitionState.FAILED, detail=str(exc)))

            status, error = await self._race(self._fill(channel, assembler), window_s)
            received = assembler.bytes_received

            if status == _DONE:
                self._log(f"Scan OK: {received} bytes")
                spectrum = assembler.drain_as_spectrum(self.byte_order)
                return self._finish(
                    AcquisitionOutcome(
                        AcquisitionState.COMPLETED,
                        bytes_received=received,
                        frame_size=self.frame_size,
                        spectrum=spectrum,
                    )
                )
            if status == _TIMEOUT:
                detail = f"incomplete: {assembler.describe_progress()}"
                self._log.warning(f"Timeout after {window_s:.1f}s waiting for {command.label} ({detail})")
                return self._finish(
                    AcquisitionOutcome(
                        AcquisitionState.TIMED_OUT,
                        bytes_received=received,
                        frame_size=self.frame_size,
                        detail=detail,
                    )
                )
            detail = "cancelled" if status == _ABORTED else f"read failed: {error}"
            self._log.error(f"{command.label} failed ({detail}, {assembler.describe_progress()})")
            return self._finish(
                AcquisitionOutcome(
                    AcquisitionState.FAILED,
                    bytes_received=received,
                    frame_size=self.frame_size,
                    detail=detail,
                )
            )
        finally:
            if self.busy:
                self.state = AcquisitionState.FAILED

    async def fire(self, command: Command) -> bool:
        """Write a command without waiting for any answer."""
        if self.busy:
            raise AcquisitionBusyError("Another exchange is already awaiting a response")
        try:
            await self._protocol.send(command)
        except NirctlError as exc:
            self._log.error(f"Error TX {command.label}: {exc}")
            return False
        return True

    async def probe(self, command: Command, *, window_s: float | None = None) -> bool:
        """Write a command, then listen for any answer during the window."""
        window_s = self.timings.probe_window_s if window_s is None else window_s
        self._begin()
        try:
            try:
                await self._protocol.send(command)
            except NirctlError as exc:
                self._log.error(f"Error TX {command.label}: {exc}")
                self._finish(AcquisitionOutcome(AcquisitionState.FAILED, detail=str(exc)))
                return False
            return await self._listen_window(window_s, command.label)
        finally:
            if self.busy:
                self.state = AcquisitionState.FAILED

    async def listen(self, duration_s: float) -> bool:
        """Passively log whatever arrives for ``duration_s``."""
        self._begin()
        try:
            return await self._listen_window(duration_s, "SNIFF")
        finally:
            if self.busy:
                self.state = AcquisitionState.FAILED

    async def _listen_window(self, duration_s: float, label: str) -> bool:
        try:
            channel = self._channel()
        except NotConnectedError as exc:
            self._log.error(f"{label} not possible: {exc}")
            self._finish(AcquisitionOutcome(AcquisitionState.FAILED, detail=str(exc)))
            return False

        poll_s = self.timings.read_poll_s
        status, value = await self._race(
            listen(channel, duration_s, self._log, poll_s=poll_s),
            duration_s + poll_s + 0.5,
        )
        if status == _DONE:
            received = bool(value)
            if not received:
                self._log(f"{label}: no bytes within {duration_s:.1f}s")
            self._finish(
                AcquisitionOutcome(
                    AcquisitionState.COMPLETED if received else AcquisitionState.TIMED_OUT,
                    frame_size=0,
                )
            )
            return received

        detail = {_TIMEOUT: "listen overran", _ABORTED: "cancelled"}.get(status, f"read failed: {value}")
        self._log.error(f"{label} failed ({detail})")
        self._finish(AcquisitionOutcome(AcquisitionState.FAILED, frame_size=0, detail=detail))
        return False
