"""Matching serial ports and BLE advertisements against device profiles."""

from __future__ import annotations

from nirctl.core.model import BLESpec, DetectedDevice, DeviceProfile, SerialPortInfo


def _service_match(device: DetectedDevice, spec: BLESpec) -> bool:
    wanted = spec.service_uuid.lower()
    return any(uuid.lower() == wanted for uuid in device.service_uuids)


def _name_prefix_match(device: DetectedDevice, spec: BLESpec) -> bool:
    lower_name = device.name.lower()
    return any(lower_name.startswith(prefix.lower()) for prefix in spec.name_prefixes)


def advertisement_score(device: DetectedDevice, spec: BLESpec) -> int:
    """Service UUID matches outrank name prefixes; legacy discovery ignores services."""
    service_match = spec.discovery == "service_first" and _service_match(device, spec)
    name_match = _name_prefix_match(device, spec)
    if service_match and name_match:
        return 3
    if service_match:
        return 2
    if name_match:
        return 1
    return 0


def port_matches(port: SerialPortInfo, profile: DeviceProfile) -> bool:
    if profile.serial is None or port.vid is None:
        return False
    return port.vid in profile.serial.usb_vendor_ids


def best_port_for_profile(ports: list[SerialPortInfo], profile: DeviceProfile) -> SerialPortInfo | None:
    for port in ports:
        if port_matches(port, profile):
            return port
    return None
