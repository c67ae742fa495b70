"""
UART Programming Protocol command codec.

Builds host-to-device command frames and validates device responses.

Frame format (framed commands):
    [ opcode | size | addr_b3 | addr_b2 | addr_b1 | addr_b0 | data... | crc ]

- size: number of data bytes minus one (Write/Read), 0 for Execute
- address: 32-bit, big-endian regardless of host byte order
- crc: CRC-16 (2 bytes) or CRC-32 (4 bytes) over every preceding byte,
  most significant byte first

Sync (0x55) and Set-High-Rate (0xA0) are single-byte control commands sent
without CRC.

Responses carry no length prefix, so every request knows its expected
response size before it is sent:

    Sync            -> 5A
    Write           -> 07
    Read (N bytes)  -> 1C | N data bytes | 2 trailing bytes
    Execute (exit)  -> 70
    Execute (call)  -> xx | 73 | result
    Set-High-Rate   -> (nothing)
"""

import struct
from dataclasses import dataclass
from enum import Enum
from typing import Union

from uart_update_tool.config import MAX_RW_DATA_SIZE, TimeoutClass
from uart_update_tool.protocol.crc import CrcWidth, crc_bytes
from uart_update_tool.protocol.errors import InputValidationError, ProtocolMismatchError

# Protocol opcodes
H2D_SYNC_CMD = 0x55
D2H_SYNC_CMD = 0x5A
WRITE_CMD = 0x07
READ_CMD = 0x1C
FCALL_CMD = 0x70
FCALL_RSLT_CMD = 0x73
SET_HIGH_RATE_CMD = 0xA0
ERROR_CMD = 0xFF

# opcode + size + 4 address bytes
FRAME_HEADER_SIZE = 6
# echo + 2 trailing bytes around the read payload
READ_RESPONSE_OVERHEAD = 3

MAX_ADDRESS = 0xFFFFFFFF


class Operation(Enum):
    """Protocol operations a CommandRequest can carry."""
    SYNC = "sync"
    WRITE = "write"
    READ = "read"
    EXEC_EXIT = "exec_exit"
    EXEC_RETURN = "exec_return"
    SET_HIGH_RATE = "set_high_rate"


@dataclass(frozen=True)
class CommandRequest:
    """
    One encoded command paired with the response size it produces.

    Attributes:
        operation: Operation the frame encodes
        frame: Bytes to transmit
        response_size: Exact number of bytes the device answers with
        address: Target address (framed commands only)
        size: Data size in bytes (Write/Read only)
        timeout_class: Which response timeout applies
    """
    operation: Operation
    frame: bytes
    response_size: int
    address: int = 0
    size: int = 0
    timeout_class: TimeoutClass = TimeoutClass.DEFAULT


# Tagged response variants ---------------------------------------------------

@dataclass(frozen=True)
class SyncAck:
    """Device answered the synchronization byte."""


@dataclass(frozen=True)
class WriteAck:
    """Device acknowledged a Write window."""


@dataclass(frozen=True)
class ReadData:
    """Payload returned by a Read window."""
    payload: bytes


@dataclass(frozen=True)
class ExecAck:
    """Device accepted an Execute and left command mode."""


@dataclass(frozen=True)
class ExecResult:
    """Executed code returned; code is the device-side result byte."""
    code: int


@dataclass(frozen=True)
class NoResponse:
    """Command that produces no response bytes."""


Response = Union[SyncAck, WriteAck, ReadData, ExecAck, ExecResult, NoResponse]


def address_bytes(address: int) -> bytes:
    """Pack a 32-bit address as four big-endian bytes."""
    if not 0 <= address <= MAX_ADDRESS:
        raise InputValidationError(f"Address 0x{address:X} does not fit in 32 bits")
    return struct.pack(">I", address)


def expected_response_size(operation: Operation, size: int = 0) -> int:
    """
    Return the response length for an operation.

    Args:
        operation: Protocol operation
        size: Requested data size (Read only)
    """
    if operation == Operation.READ:
        return size + READ_RESPONSE_OVERHEAD
    if operation == Operation.EXEC_RETURN:
        return 3
    if operation == Operation.SET_HIGH_RATE:
        return 0
    return 1


def _check_data_size(size: int, label: str) -> None:
    if not 1 <= size <= MAX_RW_DATA_SIZE:
        raise InputValidationError(
            f"{label} size must be 1..{MAX_RW_DATA_SIZE} bytes, got {size}"
        )


def _framed(opcode: int, size_field: int, address: int, data: bytes, width: int) -> bytes:
    body = bytes([opcode, size_field]) + address_bytes(address) + data
    return body + crc_bytes(body, width)


def build_sync() -> CommandRequest:
    """Host-to-device synchronization command."""
    return CommandRequest(
        operation=Operation.SYNC,
        frame=bytes([H2D_SYNC_CMD]),
        response_size=expected_response_size(Operation.SYNC),
    )


def build_set_high_rate() -> CommandRequest:
    """Ask the device to switch its UART to the high baud rate."""
    return CommandRequest(
        operation=Operation.SET_HIGH_RATE,
        frame=bytes([SET_HIGH_RATE_CMD]),
        response_size=expected_response_size(Operation.SET_HIGH_RATE),
    )


def build_write(address: int, data: bytes, width: int = CrcWidth.CRC16) -> CommandRequest:
    """
    Build a WRITE command for a single window.

    The size field carries len(data) - 1.
    """
    _check_data_size(len(data), "Write")
    return CommandRequest(
        operation=Operation.WRITE,
        frame=_framed(WRITE_CMD, len(data) - 1, address, bytes(data), width),
        response_size=expected_response_size(Operation.WRITE),
        address=address,
        size=len(data),
    )


def build_read(address: int, size: int, width: int = CrcWidth.CRC16) -> CommandRequest:
    """
    Build a READ command for a single window of `size` bytes.

    The size field carries size - 1.
    """
    _check_data_size(size, "Read")
    return CommandRequest(
        operation=Operation.READ,
        frame=_framed(READ_CMD, size - 1, address, b"", width),
        response_size=expected_response_size(Operation.READ, size),
        address=address,
        size=size,
    )


def build_exec_exit(address: int, width: int = CrcWidth.CRC16) -> CommandRequest:
    """Execute code that does not return to the ROM command loop."""
    return CommandRequest(
        operation=Operation.EXEC_EXIT,
        frame=_framed(FCALL_CMD, 0, address, b"", width),
        response_size=expected_response_size(Operation.EXEC_EXIT),
        address=address,
    )


def build_exec_return(address: int, width: int = CrcWidth.CRC16) -> CommandRequest:
    """
    Execute returnable code and wait for its result.

    Called routines are often flash erase helpers, so the long timeout
    class applies.
    """
    return CommandRequest(
        operation=Operation.EXEC_RETURN,
        frame=_framed(FCALL_CMD, 0, address, b"", width),
        response_size=expected_response_size(Operation.EXEC_RETURN),
        address=address,
        timeout_class=TimeoutClass.FLASH_ERASE,
    )


def verify_frame_crc(frame: bytes, width: int = CrcWidth.CRC16) -> bool:
    """Recompute the trailing CRC of a framed command."""
    n = CrcWidth(width).num_bytes
    if len(frame) <= n:
        return False
    return crc_bytes(frame[:-n], width) == frame[-n:]


def _describe(raw: bytes) -> str:
    if not raw:
        return "nothing"
    text = raw[:16].hex().upper()
    if raw[0] == ERROR_CMD:
        text += " (device error response)"
    return text


def decode_response(request: CommandRequest, raw: bytes) -> Response:
    """
    Validate a response buffer against the request that produced it.

    The caller guarantees `raw` holds request.response_size bytes.

    Raises:
        ProtocolMismatchError: If the echoed opcode is not the expected one
    """
    op = request.operation

    if op == Operation.SET_HIGH_RATE:
        return NoResponse()

    if op == Operation.EXEC_RETURN:
        if len(raw) < 3 or raw[1] != FCALL_RSLT_CMD:
            raise ProtocolMismatchError(
                f"Execute at 0x{request.address:08X}: expected result opcode "
                f"0x{FCALL_RSLT_CMD:02X} in byte 1, got {_describe(raw)}",
                expected=FCALL_RSLT_CMD,
                received=raw,
            )
        return ExecResult(code=raw[2])

    expected = {
        Operation.SYNC: D2H_SYNC_CMD,
        Operation.WRITE: WRITE_CMD,
        Operation.READ: READ_CMD,
        Operation.EXEC_EXIT: FCALL_CMD,
    }[op]

    if not raw or raw[0] != expected:
        raise ProtocolMismatchError(
            f"{op.value} at 0x{request.address:08X}: expected 0x{expected:02X}, "
            f"got {_describe(raw)}",
            expected=expected,
            received=raw,
        )

    if op == Operation.READ:
        return ReadData(payload=bytes(raw[1:1 + request.size]))
    if op == Operation.EXEC_EXIT:
        return ExecAck()
    if op == Operation.SYNC:
        return SyncAck()
    return WriteAck()
