"""
Centralized parsing helpers for addresses, sizes, port names and payloads.

The CLI and the core actions both import these helpers rather than
re-implement them. Every helper validates before any port is touched.
"""

import struct
import sys
from pathlib import Path
from typing import Optional, Union

from uart_update_tool.config import MAX_PORT_INDEX, port_prefixes
from uart_update_tool.protocol.crc import CrcWidth
from uart_update_tool.protocol.errors import InputValidationError, PayloadError

PayloadSource = Union[bytes, bytearray, str, Path]


def parse_int(value: Optional[str], label: str = "value") -> Optional[int]:
    """
    Parse an integer from string, supporting multiple formats.

    This is the single source of truth for address and size parsing.

    Accepts:
        - Decimal: "4096"
        - Hex with 0x prefix: "0x1000" or "0X1000"
        - Hex with h suffix: "1000h" or "1000H"
        - None for "not given"

    Returns:
        Parsed non-negative integer, or None if value is None or empty.

    Raises:
        InputValidationError: If value cannot be parsed or is negative.
    """
    if value is None:
        return None

    value = value.strip()
    if not value:
        return None

    try:
        # Hex with 0x/0X prefix
        if value.lower().startswith("0x"):
            number = int(value, 16)
        # Hex with h/H suffix
        elif value.lower().endswith("h"):
            number = int(value[:-1], 16)
        # Decimal
        else:
            number = int(value)
    except ValueError:
        raise InputValidationError(
            f"Invalid {label} '{value}'. Use decimal (4096), hex (0x1000), or suffix (1000h)."
        )

    if number < 0:
        raise InputValidationError(f"Invalid {label} '{value}': must not be negative")
    return number


def parse_crc_width(value: Union[int, str]) -> CrcWidth:
    """
    Parse a CRC width selection ("16" or "32").

    Raises:
        InputValidationError: If width is not 16 or 32.
    """
    try:
        return CrcWidth(int(value))
    except ValueError:
        raise InputValidationError(f"Invalid CRC width '{value}'. Use 16 or 32.")


def validate_port_name(name: str, platform: str = sys.platform) -> str:
    """
    Check that a short port name belongs to an accepted naming family.

    Accepted names are a family prefix followed by a number, e.g.
    "ttyS0", "ttyUSB3" (POSIX) or "COM4" (Windows).

    Returns:
        The stripped port name.

    Raises:
        InputValidationError: If the name matches no accepted family.
    """
    name = name.strip()
    for prefix in port_prefixes(platform):
        suffix = name[len(prefix):]
        if name.startswith(prefix) and suffix.isdigit() and int(suffix) <= MAX_PORT_INDEX:
            return name

    families = ", ".join(f"{p}0-{p}{MAX_PORT_INDEX}" for p in port_prefixes(platform))
    raise InputValidationError(f"Invalid port name '{name}'. Expected one of: {families}")


def parse_hex_words(text: str) -> bytes:
    """
    Convert whitespace-separated hexadecimal word tokens to bytes.

    Each token is one 32-bit word ("0x" prefix optional) and is stored
    little-endian, the way the device keeps words in memory.

    Example:
        parse_hex_words("0x12345678 AB")  # b"\\x78\\x56\\x34\\x12\\xab\\x00\\x00\\x00"

    Raises:
        PayloadError: If a token is not a 32-bit hex number.
    """
    words = bytearray()
    for token in text.split():
        try:
            value = int(token, 16)
        except ValueError:
            raise PayloadError(f"Invalid hex word '{token}'")
        if not 0 <= value <= 0xFFFFFFFF:
            raise PayloadError(f"Hex word '{token}' does not fit in 32 bits")
        words += struct.pack("<I", value)
    return bytes(words)


def load_payload(source: PayloadSource, word_mode: bool = False) -> bytes:
    """
    Resolve a write source to the bytes that will be sent.

    Args:
        source: Raw bytes, a file path, or (word_mode) hex word text
        word_mode: Treat a string source as hex word tokens

    Returns:
        Non-empty payload bytes.

    Raises:
        PayloadError: If the file cannot be read or the payload is empty.
    """
    if isinstance(source, (bytes, bytearray)):
        data = bytes(source)
    elif word_mode and isinstance(source, str):
        data = parse_hex_words(source)
    else:
        path = Path(source)
        try:
            data = path.read_bytes()
        except OSError as e:
            raise PayloadError(f"Could not read input file {path}: {e}")

    if not data:
        raise PayloadError("Zero-length payload, nothing to write")
    return data


def format_region(address: int, size: int) -> str:
    """Human-readable description of a memory range."""
    return f"0x{address:08X}-0x{address + size:08X}"
