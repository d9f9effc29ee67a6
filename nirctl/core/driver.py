"""Driver used by the CLI and by UI frontends."""

from __future__ import annotations

import asyncio
from collections.abc import Callable

from nirctl.core.acquisition import AcquisitionController
from nirctl.core.errors import AcquisitionBusyError, NirctlError
from nirctl.core.logsink import LogFn, LogSink
from nirctl.core.model import (
    AcquisitionState,
    Command,
    ConnectResult,
    ConnectStatus,
    DeviceProfile,
    NegotiationResult,
    SerialPortInfo,
    Spectrum,
)
from nirctl.core.negotiator import ConnectionNegotiator
from nirctl.core.protocol import CommandProtocol
from nirctl.transports.base import TransportChannel
from nirctl.transports.ble_gatt import BLEGATTTransport
from nirctl.transports.serial_port import SerialTransport


class NIRDriver:
    """One instrument connection, owned by the caller.

    Acquisition failures resolve to ``None``/``False`` with a log line; only
    a total connect failure raises.
    """

    def __init__(
        self,
        profile: DeviceProfile,
        *,
        port: str | None = None,
        address: str | None = None,
        log_sink: LogFn | None = None,
        serial_transport: SerialTransport | None = None,
        ble_transport: BLEGATTTransport | None = None,
        port_lister: Callable[[], list[SerialPortInfo]] | None = None,
    ) -> None:
        self.profile = profile
        self.port = port
        self.address = address
        self.log = LogSink(log_sink)
        self.negotiator = ConnectionNegotiator(
            profile,
            self.log,
            serial_transport=serial_transport,
            ble_transport=ble_transport,
            port_lister=port_lister,
        )
        self.protocol = CommandProtocol(profile.dialect, self.log)
        self.controller = AcquisitionController(
            self.protocol,
            self.log,
            byte_order=profile.byte_order,
            timings=profile.timings,
        )
        self.connection: NegotiationResult | None = None
        self._channel: TransportChannel | None = None
        self._closing: set[asyncio.Task[None]] = set()

    def set_logger(self, fn: LogFn | None) -> None:
        self.log.set_logger(fn)

    @property
    def is_connected(self) -> bool:
        return self._channel is not None and self._channel.is_open

    @property
    def status(self) -> ConnectStatus | None:
        return self.connection.status if self.connection else None

    async def __aenter__(self) -> NIRDriver:
        await self.connect()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.disconnect()

    async def connect(self) -> ConnectResult:
        if self.is_connected and self.connection is not None:
            return ConnectResult(self.connection.display_name, self.connection.status)
        await self._release()

        self.log(f"Connecting with profile '{self.profile.id}' ({self.profile.transport})...")
        try:
            channel, result = await self.negotiator.negotiate(port=self.port, address=self.address)
        except NirctlError as exc:
            self.log.error(f"Fatal connect error: {exc}")
            raise

        self._channel = channel
        self.connection = result
        self.protocol.bind(channel)
        channel.add_disconnect_callback(self._on_transport_drop)
        if result.status is ConnectStatus.CONNECTED_FORCED:
            self.log.warning(f"Connected without confirmation: {result.descriptor.describe()}")
        else:
            self.log(f"Connected: {result.display_name} ({result.descriptor.describe()})")
        return ConnectResult(display_name=result.display_name, status=result.status)

    def _on_transport_drop(self) -> None:
        self.log.error("Unexpected disconnect from instrument")
        self.controller.abort("transport dropped")
        channel, self._channel = self._channel, None
        self.protocol.bind(None)
        self.connection = None
        if channel is None:
            return
        task = asyncio.get_running_loop().create_task(channel.close())
        self._closing.add(task)
        task.add_done_callback(self._collect_close)

    def _collect_close(self, task: asyncio.Task[None]) -> None:
        self._closing.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            self.log.warning(f"Closing dropped link failed: {exc}")

    async def _release(self) -> None:
        channel, self._channel = self._channel, None
        self.protocol.bind(None)
        self.connection = None
        if channel is not None:
            await channel.close()
        if self._closing:
            await asyncio.gather(*self._closing, return_exceptions=True)

    async def disconnect(self) -> None:
        was_open = self._channel is not None
        self.controller.abort("disconnect requested")
        await self._release()
        if was_open:
            self.log("Disconnected.")

    async def scan(self) -> Spectrum | None:
        if not self.is_connected:
            self.log.error("Scan requested without an active connection")
            return None
        outcome = await self.controller.acquire_frame(Command.scan())
        if outcome.state is not AcquisitionState.COMPLETED:
            return None
        return outcome.spectrum

    async def dark_reference(self) -> Spectrum | None:
        self.log("Starting DARK reference (lamp off)...")
        await self.set_lamp(False)
        return await self.scan()

    async def white_reference(self) -> Spectrum | None:
        self.log("Starting WHITE reference (lamp on)...")
        await self.set_lamp(True)
        await self.warm_up()
        delay = self.profile.timings.lamp_stabilize_s
        self.log(f"Waiting {delay:.1f}s for lamp stability...")
        await asyncio.sleep(delay)
        return await self.scan()

    async def set_lamp(self, on: bool) -> bool:
        return await self._fire(Command.lamp(on))

    async def warm_up(self) -> bool:
        return await self._fire(Command.warm_up())

    async def _fire(self, command: Command) -> bool:
        try:
            return await self.controller.fire(command)
        except AcquisitionBusyError as exc:
            self.log.warning(f"{command.label} skipped: {exc}")
            return False

    async def get_system_info(self) -> None:
        command = Command.version()
        try:
            await self.controller.probe(command, window_s=self.profile.timings.probe_window_s)
        except AcquisitionBusyError as exc:
            self.log.warning(f"{command.label} skipped: {exc}")

    async def sniff(self, duration_s: float = 3.0) -> bool:
        if not self.is_connected:
            return False
        self.log(f"Listening for {duration_s:.1f}s...")
        try:
            return await self.controller.listen(duration_s)
        except AcquisitionBusyError as exc:
            self.log.warning(f"Sniff skipped: {exc}")
            return False
