"""
CRC-16 / CRC-32 used by the boot-ROM UART programming protocol.

Both variants are the reflected, table-driven algorithms seeded with 0 and
without a final XOR:

- CRC-16: polynomial 0xA001 (reflected 0x8005), 2 bytes on the wire
- CRC-32: polynomial 0xEDB88320, 4 bytes on the wire

Note that the CRC-32 variant is NOT zlib.crc32 (which seeds with 0xFFFFFFFF
and inverts the result). The device recomputes the value over the received
frame, so the algorithm must match bit for bit.
"""

from enum import IntEnum
from typing import Iterable, List

P_16 = 0xA001
P_32 = 0xEDB88320


class CrcWidth(IntEnum):
    """Session-wide CRC selection."""
    CRC16 = 16
    CRC32 = 32

    @property
    def num_bytes(self) -> int:
        """Size of the CRC field appended to a frame."""
        return self.value // 8

    @property
    def mask(self) -> int:
        return (1 << self.value) - 1


def _build_table(poly: int) -> List[int]:
    table = []
    for index in range(256):
        crc = index
        for _ in range(8):
            if crc & 1:
                crc = (crc >> 1) ^ poly
            else:
                crc >>= 1
        table.append(crc)
    return table


CRC16_TABLE = _build_table(P_16)
CRC32_TABLE = _build_table(P_32)


def _width(width: int) -> CrcWidth:
    try:
        return CrcWidth(width)
    except ValueError:
        raise ValueError(f"Unsupported CRC width {width} (expected 16 or 32)")


def crc_update(state: int, byte: int, width: int = CrcWidth.CRC16) -> int:
    """
    Fold one byte into a running CRC.

    Args:
        state: CRC accumulated so far (0 for a fresh computation)
        byte: Next input byte (0-255)
        width: 16 or 32

    Returns:
        Updated CRC state
    """
    w = _width(width)
    table = CRC32_TABLE if w == CrcWidth.CRC32 else CRC16_TABLE
    state &= w.mask
    return ((state >> 8) ^ table[(state ^ byte) & 0xFF]) & w.mask


def crc_of(data: Iterable[int], width: int = CrcWidth.CRC16) -> int:
    """Compute the CRC of a whole buffer, seeded at 0."""
    w = _width(width)
    crc = 0
    for byte in data:
        crc = crc_update(crc, byte, w)
    return crc


def crc_bytes(data: bytes, width: int = CrcWidth.CRC16) -> bytes:
    """Return the CRC of data as the big-endian field appended to frames."""
    w = _width(width)
    return crc_of(data, w).to_bytes(w.num_bytes, "big")
