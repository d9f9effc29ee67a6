"""Finding a working transport configuration and confirming the link."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable

from nirctl.core.device_match import best_port_for_profile
from nirctl.core.errors import (
    HandshakeTimeoutError,
    NoDeviceFoundError,
    OpenFailedError,
    ProfileValidationError,
    TransportError,
)
from nirctl.core.logsink import LogSink
from nirctl.core.model import (
    Command,
    ConnectStatus,
    DeviceProfile,
    NegotiationResult,
    SerialPortInfo,
    TransportDescriptor,
)
from nirctl.core.protocol import encode, listen, render_hex
from nirctl.transports.base import TransportChannel
from nirctl.transports.ble_gatt import BLEGATTTransport
from nirctl.transports.serial_port import SerialConfig, SerialTransport, list_serial_ports

Sleep = Callable[[float], Awaitable[None]]


class ConnectionNegotiator:
    """Drives the sequential discovery strategy selected by the profile.

    Serial profiles sweep baud rates with a PING + VERSION stimulus and keep
    the first candidate that answers. BLE profiles rely on service-first
    device selection instead of sweeping.
    """

    def __init__(
        self,
        profile: DeviceProfile,
        log: LogSink,
        *,
        serial_transport: SerialTransport | None = None,
        ble_transport: BLEGATTTransport | None = None,
        port_lister: Callable[[], list[SerialPortInfo]] | None = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.profile = profile
        self._log = log
        self._serial = serial_transport or SerialTransport()
        self._ble = ble_transport or BLEGATTTransport()
        self._port_lister = port_lister or list_serial_ports
        self._sleep = sleep

    async def negotiate(
        self,
        *,
        port: str | None = None,
        address: str | None = None,
    ) -> tuple[TransportChannel, NegotiationResult]:
        if self.profile.transport == "serial":
            return await self._baud_sweep(port or self._pick_port())
        if self.profile.transport == "ble":
            return await self._discover_ble(address)
        raise TransportError(f"Unsupported transport type '{self.profile.transport}'")

    def _pick_port(self) -> str:
        ports = self._port_lister()
        picked = best_port_for_profile(ports, self.profile)
        if picked is None:
            seen = ", ".join(p.device for p in ports) or "none"
            raise NoDeviceFoundError(
                f"No serial port matches profile '{self.profile.id}' (ports seen: {seen}). Use --port."
            )
        self._log(f"Selected serial port {picked.device} ({picked.description})")
        return picked.device

    async def _baud_sweep(self, port: str) -> tuple[TransportChannel, NegotiationResult]:
        spec = self.profile.serial
        if spec is None:
            raise ProfileValidationError(f"Profile '{self.profile.id}' has no serial settings")
        timings = self.profile.timings
        self._log(f"Starting baud sweep on {port}: {', '.join(str(b) for b in spec.baud_candidates)}")

        for baud in spec.baud_candidates:
            self._log(f"Probing {baud} baud...")
            try:
                channel = await self._serial.open(SerialConfig(port=port, baud=baud))
            except OpenFailedError as exc:
                self._log.warning(f"Open failed at {baud} baud: {exc}")
                await self._sleep(timings.retry_pause_s)
                continue

            try:
                await self._handshake(channel)
            except TransportError as exc:
                self._log(f"No answer at {baud} baud ({exc})")
                await channel.close()
                await self._sleep(timings.retry_pause_s)
                continue
            except asyncio.CancelledError:
                await channel.close()
                raise

            self._log(f"Link confirmed at {baud} baud")
            return channel, NegotiationResult(
                display_name=f"{self.profile.name} @ {baud}",
                descriptor=TransportDescriptor(kind="serial", port=port, baud=baud),
                status=ConnectStatus.CONNECTED,
            )

        self._log.warning("Baud sweep failed: no response at any rate")
        self._log(f"Forcing connection at {spec.default_baud} baud for manual commands")
        channel = await self._serial.open(SerialConfig(port=port, baud=spec.default_baud))
        return channel, NegotiationResult(
            display_name=f"{self.profile.name} (No Response)",
            descriptor=TransportDescriptor(kind="serial", port=port, baud=spec.default_baud),
            status=ConnectStatus.CONNECTED_FORCED,
        )

    async def _handshake(self, channel: TransportChannel) -> None:
        timings = self.profile.timings
        await self._sleep(timings.settle_s)
        for command in (Command.ping(), Command.version()):
            payload = encode(command, self.profile.dialect)
            await channel.write(payload)
            self._log(f"TX -> {command.label} [{render_hex(payload)}]")
        answered = await listen(
            channel,
            timings.handshake_window_s,
            self._log,
            poll_s=timings.read_poll_s,
        )
        if not answered:
            raise HandshakeTimeoutError(f"silent for {timings.handshake_window_s:.1f}s")

    async def _discover_ble(self, address: str | None) -> tuple[TransportChannel, NegotiationResult]:
        spec = self.profile.ble
        if spec is None:
            raise ProfileValidationError(f"Profile '{self.profile.id}' has no BLE settings")
        self._log(
            f"Requesting BLE device ({spec.discovery}) with service {spec.service_uuid}"
            + (f" at {address}" if address else "")
        )
        channel = await self._ble.open(spec, address=address)
        display_name = channel.name or self.profile.name
        self._log(f"GATT link ready: {display_name} ({channel.address}), notifications on {channel.notify_uuid}")
        return channel, NegotiationResult(
            display_name=display_name,
            descriptor=TransportDescriptor(
                kind="ble",
                address=channel.address,
                service_uuid=spec.service_uuid,
                characteristic_uuid=channel.notify_uuid,
            ),
            status=ConnectStatus.CONNECTED,
        )
