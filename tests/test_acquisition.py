from __future__ import annotations

import asyncio
import struct

import pytest

from nirctl.core.acquisition import AcquisitionController
from nirctl.core.errors import AcquisitionBusyError, UnexpectedDisconnectError
from nirctl.core.logsink import LogSink
from nirctl.core.model import AcquisitionState, ByteOrder, Command, Dialect, Timings
from nirctl.core.protocol import CommandProtocol

FRAME = struct.pack("<128H", *range(0, 1280, 10))


class ScriptedChannel:
    """Answers each write with queued chunks; optionally hangs once drained."""

    def __init__(self, replies: dict[bytes, list[bytes]] | None = None, *, hang: bool = False) -> None:
        self.replies = replies or {}
        self.hang = hang
        self.writes: list[bytes] = []
        self.pending: list[bytes] = []
        self.is_open = True
        self.reads_cancelled = 0

    async def write(self, payload: bytes) -> None:
        self.writes.append(payload)
        self.pending.extend(self.replies.get(payload, []))

    async def read(self, timeout_s: float) -> bytes:
        if self.pending:
            return self.pending.pop(0)
        if self.hang:
            try:
                await asyncio.Event().wait()
            except asyncio.CancelledError:
                self.reads_cancelled += 1
                raise
        await asyncio.sleep(min(timeout_s, 0.005))
        return b""


class DroppingChannel(ScriptedChannel):
    async def read(self, timeout_s: float) -> bytes:
        raise UnexpectedDisconnectError("link dropped")


def _controller(channel, lines: list[str] | None = None, byte_order=ByteOrder.LITTLE):
    log = LogSink(lines.append if lines is not None else None)
    protocol = CommandProtocol(Dialect.STX_ASCII, log)
    protocol.bind(channel)
    timings = Timings(scan_timeout_s=1.0, probe_window_s=0.05, read_poll_s=0.01)
    return AcquisitionController(protocol, log, byte_order=byte_order, timings=timings)


SCAN = bytes([0x02, 0x01, 0x53, 0x03])


@pytest.mark.asyncio
async def test_scan_reassembles_fragments_into_spectrum() -> None:
    channel = ScriptedChannel({SCAN: [FRAME[:100], FRAME[100:200], FRAME[200:], b"surplus"]})
    controller = _controller(channel)

    outcome = await controller.acquire_frame()

    assert channel.writes == [SCAN]
    assert outcome.state is AcquisitionState.COMPLETED
    assert controller.state is AcquisitionState.COMPLETED
    assert outcome.bytes_received == 256
    assert outcome.spectrum is not None
    assert outcome.spectrum.samples == tuple(range(0, 1280, 10))
    assert outcome.spectrum.wavelengths[0] == 900
    assert outcome.spectrum.wavelengths[-1] == 1700


@pytest.mark.asyncio
async def test_byte_order_follows_configuration() -> None:
    channel = ScriptedChannel({SCAN: [FRAME]})
    outcome = await _controller(channel, byte_order=ByteOrder.BIG).acquire_frame()
    assert outcome.spectrum is not None
    assert outcome.spectrum.samples[1] == 0x0A00


@pytest.mark.asyncio
async def test_scan_times_out_within_window() -> None:
    channel = ScriptedChannel(hang=True)
    lines: list[str] = []
    controller = _controller(channel, lines)
    loop = asyncio.get_running_loop()

    started = loop.time()
    outcome = await controller.acquire_frame(window_s=0.2)
    elapsed = loop.time() - started

    assert 0.19 <= elapsed < 1.0
    assert outcome.state is AcquisitionState.TIMED_OUT
    assert outcome.spectrum is None
    assert outcome.bytes_received == 0
    assert controller.assembler.bytes_received == 0
    assert channel.reads_cancelled == 1
    assert any("incomplete: 0/256 bytes" in line for line in lines)


@pytest.mark.asyncio
async def test_partial_frame_reports_received_count() -> None:
    channel = ScriptedChannel({SCAN: [FRAME[:100]]}, hang=True)
    controller = _controller(channel)

    outcome = await controller.acquire_frame(window_s=0.1)

    assert outcome.state is AcquisitionState.TIMED_OUT
    assert outcome.bytes_received == 100
    assert outcome.detail == "incomplete: 100/256 bytes"
    assert controller.assembler.bytes_received == 100


@pytest.mark.asyncio
async def test_abort_resolves_in_flight_scan_as_failed() -> None:
    channel = ScriptedChannel(hang=True)
    controller = _controller(channel)

    task = asyncio.create_task(controller.acquire_frame(window_s=5.0))
    await asyncio.sleep(0.05)
    assert controller.busy
    assert controller.abort("transport dropped")

    outcome = await asyncio.wait_for(task, timeout=1.0)
    assert outcome.state is AcquisitionState.FAILED
    assert outcome.detail == "cancelled"
    assert not controller.busy


@pytest.mark.asyncio
async def test_read_failure_resolves_as_failed() -> None:
    controller = _controller(DroppingChannel())
    outcome = await controller.acquire_frame()
    assert outcome.state is AcquisitionState.FAILED
    assert "link dropped" in outcome.detail


@pytest.mark.asyncio
async def test_second_exchange_while_busy_is_rejected() -> None:
    controller = _controller(ScriptedChannel(hang=True))

    task = asyncio.create_task(controller.acquire_frame(window_s=5.0))
    await asyncio.sleep(0.02)
    with pytest.raises(AcquisitionBusyError):
        await controller.acquire_frame()
    with pytest.raises(AcquisitionBusyError):
        await controller.fire(Command.lamp(True))

    controller.abort()
    await task


@pytest.mark.asyncio
async def test_scan_without_channel_fails_without_raising() -> None:
    log = LogSink()
    protocol = CommandProtocol(Dialect.BINARY, log)
    controller = AcquisitionController(protocol, log, byte_order=ByteOrder.LITTLE)

    outcome = await controller.acquire_frame()

    assert outcome.state is AcquisitionState.FAILED
    assert not controller.busy


@pytest.mark.asyncio
async def test_probe_reports_whether_anything_answered() -> None:
    version = bytes([0x02, 0x01, 0x56, 0x03])
    answering = _controller(ScriptedChannel({version: [b"FW 1.2"]}))
    silent = _controller(ScriptedChannel())

    assert await answering.probe(Command.version()) is True
    assert await silent.probe(Command.version()) is False
    assert silent.state is AcquisitionState.TIMED_OUT


@pytest.mark.asyncio
async def test_listen_logs_rx_lines() -> None:
    channel = ScriptedChannel()
    channel.pending.append(b"OK\r\n")
    lines: list[str] = []

    received = await _controller(channel, lines).listen(0.05)

    assert received is True
    assert "RX << [4F 4B 0D 0A] OK.." in lines
