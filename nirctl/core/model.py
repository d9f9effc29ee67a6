"""Core data models used across loader, protocol, controller, and CLI."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

FRAME_SIZE = 256
SAMPLE_COUNT = FRAME_SIZE // 2
WAVELENGTH_MIN_NM = 900
WAVELENGTH_MAX_NM = 1700
ADC_FULL_SCALE = 65535

DEFAULT_BAUD_CANDIDATES = (115200, 9600, 921600, 57600, 38400, 19200)
DEFAULT_BAUD = 115200


class Opcode(Enum):
    """Instrument opcodes with their binary byte and single-letter forms."""

    PING = (0x00, None)
    SCAN = (0x02, "S")
    LAMP = (0x03, None)
    VERSION = (0x05, "V")
    WARMUP = (0x57, "W")

    def __init__(self, code: int, letter: str | None) -> None:
        self.code = code
        self.letter = letter


class Dialect(str, Enum):
    BINARY = "binary"
    BINARY_ETX = "binary_etx"
    STX_ASCII = "stx_ascii"
    ASCII = "ascii"


class ByteOrder(str, Enum):
    LITTLE = "little"
    BIG = "big"


class ConnectStatus(str, Enum):
    CONNECTED = "CONNECTED"
    CONNECTED_FORCED = "CONNECTED_FORCED"


class AcquisitionState(str, Enum):
    IDLE = "IDLE"
    AWAITING_RESPONSE = "AWAITING_RESPONSE"
    COMPLETED = "COMPLETED"
    TIMED_OUT = "TIMED_OUT"
    FAILED = "FAILED"


@dataclass(frozen=True)
class Command:
    opcode: Opcode
    params: bytes = b""
    label: str = ""

    def __post_init__(self) -> None:
        if len(self.params) > 2:
            raise ValueError(f"{self.opcode.name} accepts at most two parameter bytes")

    @classmethod
    def ping(cls) -> Command:
        return cls(Opcode.PING, label="PING")

    @classmethod
    def scan(cls) -> Command:
        return cls(Opcode.SCAN, label="SCAN")

    @classmethod
    def lamp(cls, on: bool) -> Command:
        return cls(Opcode.LAMP, params=bytes([1 if on else 0]), label=f"LAMP {'ON' if on else 'OFF'}")

    @classmethod
    def warm_up(cls) -> Command:
        return cls(Opcode.WARMUP, label="WARM UP")

    @classmethod
    def version(cls) -> Command:
        return cls(Opcode.VERSION, label="GET VERSION")


@dataclass(frozen=True)
class SpectrumPoint:
    wavelength_nm: int
    intensity: float


@dataclass(frozen=True)
class Spectrum:
    points: tuple[SpectrumPoint, ...]
    samples: tuple[int, ...]

    @property
    def wavelengths(self) -> tuple[int, ...]:
        return tuple(p.wavelength_nm for p in self.points)

    @property
    def intensities(self) -> tuple[float, ...]:
        return tuple(p.intensity for p in self.points)

    def __len__(self) -> int:
        return len(self.points)


@dataclass(frozen=True)
class AcquisitionOutcome:
    state: AcquisitionState
    bytes_received: int = 0
    frame_size: int = FRAME_SIZE
    spectrum: Spectrum | None = None
    detail: str = ""


@dataclass(frozen=True)
class TransportDescriptor:
    kind: str
    port: str | None = None
    baud: int | None = None
    address: str | None = None
    service_uuid: str | None = None
    characteristic_uuid: str | None = None

    def describe(self) -> str:
        if self.kind == "serial":
            return f"serial {self.port} @ {self.baud} baud"
        return f"ble {self.address} service={self.service_uuid} char={self.characteristic_uuid}"


@dataclass(frozen=True)
class NegotiationResult:
    display_name: str
    descriptor: TransportDescriptor
    status: ConnectStatus


@dataclass(frozen=True)
class ConnectResult:
    display_name: str
    status: ConnectStatus


@dataclass(frozen=True)
class Timings:
    settle_s: float = 0.1
    retry_pause_s: float = 0.2
    handshake_window_s: float = 0.8
    scan_timeout_s: float = 7.5
    probe_window_s: float = 1.0
    read_poll_s: float = 0.1
    lamp_stabilize_s: float = 1.5


@dataclass(frozen=True)
class SerialSpec:
    baud_candidates: tuple[int, ...] = DEFAULT_BAUD_CANDIDATES
    default_baud: int = DEFAULT_BAUD
    usb_vendor_ids: tuple[int, ...] = ()


@dataclass(frozen=True)
class BLESpec:
    service_uuid: str
    characteristic_uuid: str
    write_char_uuid: str | None = None
    discovery: str = "service_first"
    name_prefixes: tuple[str, ...] = ()
    write_with_response: bool = False
    scan_timeout_s: float = 10.0


@dataclass(frozen=True)
class DeviceProfile:
    id: str
    name: str
    transport: str
    dialect: Dialect
    byte_order: ByteOrder
    serial: SerialSpec | None = None
    ble: BLESpec | None = None
    timings: Timings = field(default_factory=Timings)


@dataclass(frozen=True)
class SerialPortInfo:
    device: str
    description: str = ""
    vid: int | None = None
    pid: int | None = None


@dataclass(frozen=True)
class DetectedDevice:
    address: str
    name: str
    service_uuids: tuple[str, ...] = ()
