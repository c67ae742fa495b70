"""Tests for the protocol CRC engine."""

import zlib

import pytest

from uart_update_tool.protocol.crc import (
    CRC16_TABLE,
    CRC32_TABLE,
    CrcWidth,
    crc_bytes,
    crc_of,
    crc_update,
)


def test_crc16_arc_check_value():
    """CRC-16 matches the ARC check value."""
    # Poly 0xA001 reflected, init 0, no final XOR is CRC-16/ARC.
    assert crc_of(b"123456789", CrcWidth.CRC16) == 0xBB3D


def test_crc_tables_match_reference_entries():
    """Table entries match known values."""
    assert CRC16_TABLE[1] == 0xC0C1
    assert CRC16_TABLE[255] == 0x4040
    assert CRC32_TABLE[1] == 0x77073096
    assert CRC32_TABLE[255] == 0x2D02EF8D


def test_crc32_is_zlib_without_pre_and_post_inversion():
    """Init 0 / no final XOR equals zlib seeded with ~0 and re-inverted."""
    for data in (b"", b"\x01", b"123456789", bytes(range(256)) * 3):
        assert crc_of(data, CrcWidth.CRC32) == zlib.crc32(data, 0xFFFFFFFF) ^ 0xFFFFFFFF


def test_crc_of_empty_buffer_is_seed():
    """No data leaves the initial value."""
    assert crc_of(b"", 16) == 0
    assert crc_of(b"", 32) == 0


def test_crc_update_folds_to_crc_of():
    """Byte-wise updates equal the one-shot CRC."""
    data = b"\x07\x00\x00\x01\x00\x00\xAB"
    for width in (16, 32):
        state = 0
        for byte in data:
            state = crc_update(state, byte, width)
        assert state == crc_of(data, width)


def test_crc_is_deterministic():
    """Same input gives the same CRC."""
    data = bytes(range(200))
    assert crc_of(data, 32) == crc_of(bytearray(data), 32)
    assert crc_bytes(data, 16) == crc_bytes(data, 16)


def test_crc_bytes_is_msb_first():
    """CRC bytes are emitted MSB first."""
    assert crc_bytes(b"123456789", CrcWidth.CRC16) == b"\xBB\x3D"
    value = crc_of(b"123456789", CrcWidth.CRC32)
    assert crc_bytes(b"123456789", CrcWidth.CRC32) == value.to_bytes(4, "big")


def test_crc_width_num_bytes():
    """Width maps to its byte count."""
    assert CrcWidth.CRC16.num_bytes == 2
    assert CrcWidth.CRC32.num_bytes == 4


@pytest.mark.parametrize("width", [0, 8, 24, 64])
def test_unsupported_width_rejected(width):
    """Widths other than 16 and 32 raise ValueError."""
    with pytest.raises(ValueError, match="Unsupported CRC width"):
        crc_of(b"\x00", width)
