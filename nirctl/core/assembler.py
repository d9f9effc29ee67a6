"""Frame reassembly and conversion of raw samples into physical units."""

from __future__ import annotations

import struct

from nirctl.core.errors import ProtocolError
from nirctl.core.model import (
    ADC_FULL_SCALE,
    FRAME_SIZE,
    SAMPLE_COUNT,
    WAVELENGTH_MAX_NM,
    WAVELENGTH_MIN_NM,
    ByteOrder,
    Spectrum,
    SpectrumPoint,
)

_STRUCT_PREFIX = {ByteOrder.LITTLE: "<", ByteOrder.BIG: ">"}


def wavelength_nm(index: int, count: int = SAMPLE_COUNT) -> int:
    span = WAVELENGTH_MAX_NM - WAVELENGTH_MIN_NM
    return round(WAVELENGTH_MIN_NM + index * span / (count - 1))


def intensity(sample: int) -> float:
    return sample / ADC_FULL_SCALE


def decode_samples(data: bytes, byte_order: ByteOrder | str) -> tuple[int, ...]:
    """Pair bytes into unsigned 16-bit samples in the given byte order."""
    if len(data) % 2 != 0:
        raise ProtocolError(f"Sample payload must have even length, got {len(data)} bytes")
    prefix = _STRUCT_PREFIX[ByteOrder(byte_order)]
    return struct.unpack(f"{prefix}{len(data) // 2}H", data)


def build_spectrum(samples: tuple[int, ...]) -> Spectrum:
    count = len(samples)
    points = tuple(
        SpectrumPoint(wavelength_nm=wavelength_nm(i, count), intensity=intensity(s))
        for i, s in enumerate(samples)
    )
    return Spectrum(points=points, samples=tuple(samples))


class PacketAssembler:
    """Accumulates streamed fragments into one fixed-size frame."""

    def __init__(self, frame_size: int = FRAME_SIZE) -> None:
        if frame_size <= 0 or frame_size % 2 != 0:
            raise ValueError("frame_size must be a positive even number of bytes")
        self.frame_size = frame_size
        self._buffer = bytearray()

    @property
    def bytes_received(self) -> int:
        return len(self._buffer)

    @property
    def is_complete(self) -> bool:
        return len(self._buffer) >= self.frame_size

    def append(self, chunk: bytes) -> int:
        """Append up to the frame boundary and return how many bytes were kept."""
        room = self.frame_size - len(self._buffer)
        kept = bytes(chunk[:room]) if room > 0 else b""
        self._buffer.extend(kept)
        return len(kept)

    def reset(self) -> None:
        self._buffer.clear()

    def describe_progress(self) -> str:
        return f"{self.bytes_received}/{self.frame_size} bytes"

    def drain_as_spectrum(self, byte_order: ByteOrder | str) -> Spectrum:
        if not self.is_complete:
            received = self.describe_progress()
            self.reset()
            raise ProtocolError(f"Frame incomplete: {received}")
        data = bytes(self._buffer)
        self.reset()
        return build_spectrum(decode_samples(data, byte_order))
