"""Stable public API for building tooling on top of nirctl.

This module is the supported integration surface for third-party callers.
Avoid importing from private/internal modules unless intentionally depending on
non-stable internals.
"""

from __future__ import annotations

from nirctl.core.assembler import PacketAssembler, decode_samples, intensity, wavelength_nm
from nirctl.core.errors import (
    AcquisitionBusyError,
    HandshakeTimeoutError,
    NirctlError,
    NoDeviceFoundError,
    NotConnectedError,
    OpenFailedError,
    ProfileLoadError,
    ProfileResolutionError,
    ProfileValidationError,
    ProtocolError,
    ServiceNotFoundError,
    TransportError,
    TransportUnavailableError,
    UnexpectedDisconnectError,
    WriteFailureError,
)
from nirctl.core.driver import NIRDriver
from nirctl.core.logsink import LogFn
from nirctl.core.model import (
    AcquisitionOutcome,
    AcquisitionState,
    ByteOrder,
    Command,
    ConnectResult,
    ConnectStatus,
    DeviceProfile,
    Dialect,
    Opcode,
    SerialPortInfo,
    Spectrum,
    SpectrumPoint,
)
from nirctl.core.profile_loader import load_profiles
from nirctl.transports.ble_gatt import BLEGATTTransport
from nirctl.transports.serial_port import SerialTransport, list_serial_ports

__all__ = [
    "NirctlError",
    "ProfileLoadError",
    "ProfileResolutionError",
    "ProfileValidationError",
    "TransportError",
    "TransportUnavailableError",
    "OpenFailedError",
    "NoDeviceFoundError",
    "ServiceNotFoundError",
    "HandshakeTimeoutError",
    "WriteFailureError",
    "UnexpectedDisconnectError",
    "ProtocolError",
    "NotConnectedError",
    "AcquisitionBusyError",
    "AcquisitionOutcome",
    "AcquisitionState",
    "ByteOrder",
    "Command",
    "ConnectResult",
    "ConnectStatus",
    "DeviceProfile",
    "Dialect",
    "Opcode",
    "SerialPortInfo",
    "Spectrum",
    "SpectrumPoint",
    "PacketAssembler",
    "decode_samples",
    "intensity",
    "wavelength_nm",
    "NIRDriver",
    "BLEGATTTransport",
    "SerialTransport",
    "Client",
]


class Client:
    """Public entry point for profile lookup and driver construction.

    A `Client` loads packaged and user device profiles once, and builds
    `NIRDriver` instances for a chosen profile. Each driver owns its own
    connection and log sink; nothing is shared between drivers.
    """

    def __init__(
        self,
        *,
        serial_transport: SerialTransport | None = None,
        ble_transport: BLEGATTTransport | None = None,
    ) -> None:
        loaded = load_profiles()
        self.profiles = loaded.profiles
        self.load_warnings = loaded.warnings
        self._serial_transport = serial_transport
        self._ble_transport = ble_transport

    def list_profiles(self) -> list[DeviceProfile]:
        return sorted(self.profiles.values(), key=lambda p: p.id)

    def list_serial_ports(self) -> list[SerialPortInfo]:
        return list_serial_ports()

    def get_profile(self, profile_id: str) -> DeviceProfile:
        profile = self.profiles.get(profile_id)
        if profile is None:
            available = ", ".join(sorted(self.profiles))
            raise ProfileResolutionError(f"Unknown profile '{profile_id}'. Available: {available}")
        return profile

    def driver(
        self,
        profile_id: str,
        *,
        port: str | None = None,
        address: str | None = None,
        log_sink: LogFn | None = None,
    ) -> NIRDriver:
        return NIRDriver(
            self.get_profile(profile_id),
            port=port,
            address=address,
            log_sink=log_sink,
            serial_transport=self._serial_transport,
            ble_transport=self._ble_transport,
        )
