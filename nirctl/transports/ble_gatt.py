"""BLE GATT transport implementation."""

from __future__ import annotations

import asyncio
import logging
import re
from typing import Any

from nirctl.core.device_match import advertisement_score
from nirctl.core.errors import (
    NoDeviceFoundError,
    OpenFailedError,
    ServiceNotFoundError,
    TransportUnavailableError,
    UnexpectedDisconnectError,
    WriteFailureError,
)
from nirctl.core.model import BLESpec, DetectedDevice
from nirctl.transports.base import DisconnectCallback

LOGGER = logging.getLogger(__name__)

_BASE_UUID_RE = re.compile(r"^0000([0-9a-f]{4})-0000-1000-8000-00805f9b34fb$")


def _uuid_key(uuid: str) -> str:
    normalized = uuid.strip().lower()
    match = _BASE_UUID_RE.match(normalized)
    return match.group(1) if match else normalized


def resolve_service(services: Any, service_uuid: str) -> Any:
    """Direct lookup first, then a substring match over every primary service."""
    service = None
    try:
        service = services.get_service(service_uuid)
    except Exception as exc:
        LOGGER.debug("Direct service lookup for %s failed: %s", service_uuid, exc)
    if service is not None:
        return service

    key = _uuid_key(service_uuid)
    for candidate in services:
        if key in str(candidate.uuid).lower():
            return candidate
    raise ServiceNotFoundError(f"GATT service {service_uuid} not found on device")


def resolve_characteristic(service: Any, char_uuid: str) -> Any:
    characteristic = service.get_characteristic(char_uuid)
    if characteristic is not None:
        return characteristic

    key = _uuid_key(char_uuid)
    for candidate in service.characteristics:
        if key in str(candidate.uuid).lower():
            return candidate
    raise ServiceNotFoundError(
        f"Characteristic {char_uuid} not found in service {service.uuid}"
    )


class BLEChannel:
    """Notification-fed byte stream over one GATT session."""

    def __init__(self, spec: BLESpec, *, address: str, name: str) -> None:
        self.spec = spec
        self.address = address
        self.name = name
        self.notify_uuid = spec.characteristic_uuid
        self.write_uuid = spec.write_char_uuid or spec.characteristic_uuid
        self._client: Any = None
        self._queue: asyncio.Queue[bytes | None] = asyncio.Queue()
        self._dropped = False
        self._closed = False
        self._callbacks: list[DisconnectCallback] = []

    def attach(self, client: Any, *, notify_uuid: str, write_uuid: str) -> None:
        self._client = client
        self.notify_uuid = notify_uuid
        self.write_uuid = write_uuid

    @property
    def is_open(self) -> bool:
        return (
            self._client is not None
            and not self._dropped
            and not self._closed
            and bool(self._client.is_connected)
        )

    def add_disconnect_callback(self, callback: DisconnectCallback) -> None:
        self._callbacks.append(callback)

    def handle_notification(self, _sender: Any, data: bytearray) -> None:
        self._queue.put_nowait(bytes(data))

    def handle_disconnect(self, _client: Any = None) -> None:
        if self._closed or self._dropped:
            return
        self._dropped = True
        LOGGER.warning("BLE device %s disconnected", self.address)
        self._queue.put_nowait(None)
        for callback in self._callbacks:
            callback()

    async def write(self, payload: bytes) -> None:
        if not self.is_open:
            raise WriteFailureError(f"BLE link to {self.address} is not open")
        try:
            await self._client.write_gatt_char(
                self.write_uuid,
                payload,
                response=self.spec.write_with_response,
            )
        except Exception as exc:
            raise WriteFailureError(f"BLE write to {self.write_uuid} failed: {exc}") from exc

    async def read(self, timeout_s: float) -> bytes:
        if self._dropped or self._closed:
            raise UnexpectedDisconnectError(f"BLE link to {self.address} is closed")
        try:
            first = await asyncio.wait_for(self._queue.get(), timeout=timeout_s)
        except asyncio.TimeoutError:
            return b""
        if first is None:
            raise UnexpectedDisconnectError(f"BLE device {self.address} disconnected")

        chunks = [first]
        while not self._queue.empty():
            item = self._queue.get_nowait()
            if item is None:
                # keep the drop visible to the next read
                self._queue.put_nowait(None)
                break
            chunks.append(item)
        return b"".join(chunks)

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._callbacks.clear()
        client, self._client = self._client, None
        if client is None:
            return
        try:
            if client.is_connected:
                await client.stop_notify(self.notify_uuid)
        except Exception as exc:
            LOGGER.debug("stop_notify on %s failed: %s", self.notify_uuid, exc)
        try:
            await client.disconnect()
        except Exception as exc:
            LOGGER.debug("BLE disconnect from %s failed: %s", self.address, exc)


class BLEGATTTransport:
    """Selects a device, connects GATT, resolves the data channel, subscribes."""

    async def open(self, spec: BLESpec, *, address: str | None = None) -> BLEChannel:
        try:
            from bleak import BleakClient, BleakScanner  # type: ignore
        except Exception as exc:  # pragma: no cover - import failure path
            raise TransportUnavailableError(
                "BLE transport requires 'bleak'. Install dependency and retry."
            ) from exc

        device = await self._select_device(BleakScanner, spec, address)
        name = getattr(device, "name", None) or ""
        channel = BLEChannel(spec, address=device.address, name=name)

        client = BleakClient(
            device,
            disconnected_callback=channel.handle_disconnect,
            timeout=spec.scan_timeout_s,
        )
        try:
            await client.connect()
        except Exception as exc:
            raise OpenFailedError(f"GATT connect to {device.address} failed: {exc}") from exc
        channel.attach(client, notify_uuid=channel.notify_uuid, write_uuid=channel.write_uuid)

        try:
            service = resolve_service(client.services, spec.service_uuid)
            notify_char = resolve_characteristic(service, spec.characteristic_uuid)
            write_char = (
                resolve_characteristic(service, spec.write_char_uuid)
                if spec.write_char_uuid
                else notify_char
            )
            channel.attach(client, notify_uuid=notify_char.uuid, write_uuid=write_char.uuid)
            await client.start_notify(notify_char, channel.handle_notification)
        except ServiceNotFoundError:
            await channel.close()
            raise
        except Exception as exc:
            await channel.close()
            raise OpenFailedError(
                f"Subscribing to {spec.characteristic_uuid} on {device.address} failed: {exc}"
            ) from exc

        return channel

    async def _select_device(self, scanner_cls: Any, spec: BLESpec, address: str | None) -> Any:
        if address:
            device = await scanner_cls.find_device_by_address(address, timeout=spec.scan_timeout_s)
            if device is None:
                raise NoDeviceFoundError(f"BLE device {address} not found")
            return device

        def _matches(device: Any, adv: Any) -> bool:
            detected = DetectedDevice(
                address=device.address,
                name=device.name or getattr(adv, "local_name", None) or "",
                service_uuids=tuple(getattr(adv, "service_uuids", None) or ()),
            )
            return advertisement_score(detected, spec) > 0

        device = None
        if spec.discovery == "service_first":
            device = await scanner_cls.find_device_by_filter(
                _matches,
                timeout=spec.scan_timeout_s,
                service_uuids=[spec.service_uuid],
            )
        if device is None and spec.name_prefixes:
            device = await scanner_cls.find_device_by_filter(_matches, timeout=spec.scan_timeout_s)
        if device is None:
            raise NoDeviceFoundError(
                f"No BLE device advertising {spec.service_uuid} or named {list(spec.name_prefixes)}"
            )
        return device
