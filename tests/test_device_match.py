from nirctl.core.device_match import advertisement_score, best_port_for_profile, port_matches
from nirctl.core.model import BLESpec, ByteOrder, DetectedDevice, DeviceProfile, Dialect, SerialPortInfo, SerialSpec

SERVICE = "6e400001-b5a3-f393-e0a9-e50e24dcca9e"


def _spec(discovery: str = "service_first") -> BLESpec:
    return BLESpec(
        service_uuid=SERVICE,
        characteristic_uuid="6e400003-b5a3-f393-e0a9-e50e24dcca9e",
        discovery=discovery,
        name_prefixes=("MicroNIR",),
    )


def _serial_profile(vendor_ids: tuple[int, ...]) -> DeviceProfile:
    return DeviceProfile(
        id="p1",
        name="p1",
        transport="serial",
        dialect=Dialect.ASCII,
        byte_order=ByteOrder.LITTLE,
        serial=SerialSpec(usb_vendor_ids=vendor_ids),
    )


def test_score_prefers_combined_match() -> None:
    device = DetectedDevice(address="AA:BB", name="MicroNIR 1700", service_uuids=(SERVICE.upper(),))
    assert advertisement_score(device, _spec()) == 3


def test_service_match_outranks_name_match() -> None:
    by_service = DetectedDevice(address="AA", name="Unnamed", service_uuids=(SERVICE,))
    by_name = DetectedDevice(address="BB", name="micronir-22")
    assert advertisement_score(by_service, _spec()) == 2
    assert advertisement_score(by_name, _spec()) == 1


def test_legacy_discovery_ignores_services() -> None:
    device = DetectedDevice(address="AA", name="Unnamed", service_uuids=(SERVICE,))
    assert advertisement_score(device, _spec("legacy")) == 0


def test_no_match_scores_zero() -> None:
    device = DetectedDevice(address="AA", name="Heart Rate Strap")
    assert advertisement_score(device, _spec()) == 0


def test_port_matching_uses_usb_vendor_ids() -> None:
    profile = _serial_profile((0x0403, 0x2457))
    ports = [
        SerialPortInfo(device="/dev/ttyS0"),
        SerialPortInfo(device="/dev/ttyACM0", vid=0x2341),
        SerialPortInfo(device="/dev/ttyUSB0", vid=0x2457),
    ]
    assert not port_matches(ports[0], profile)
    picked = best_port_for_profile(ports, profile)
    assert picked is not None
    assert picked.device == "/dev/ttyUSB0"


def test_no_port_match_returns_none() -> None:
    profile = _serial_profile(())
    assert best_port_for_profile([SerialPortInfo(device="/dev/ttyUSB0", vid=0x0403)], profile) is None
