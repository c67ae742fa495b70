"""Boot-ROM UART programming protocol layer - CRC, command codec, link session."""

from .errors import (
    UartUpdateError,
    TransportError,
    PortOpenError,
    ProtocolMismatchError,
    CommandTimeoutError,
    InputValidationError,
    PayloadError,
)
from .crc import CrcWidth, crc_update, crc_of, crc_bytes
from .commands import (
    Operation,
    CommandRequest,
    SyncAck,
    WriteAck,
    ReadData,
    ExecAck,
    ExecResult,
    NoResponse,
    build_sync,
    build_write,
    build_read,
    build_exec_exit,
    build_exec_return,
    build_set_high_rate,
    decode_response,
    expected_response_size,
    verify_frame_crc,
)
from .session import LinkSession, SyncResult

__all__ = [
    # Errors
    "UartUpdateError",
    "TransportError",
    "PortOpenError",
    "ProtocolMismatchError",
    "CommandTimeoutError",
    "InputValidationError",
    "PayloadError",
    # CRC
    "CrcWidth",
    "crc_update",
    "crc_of",
    "crc_bytes",
    # Codec
    "Operation",
    "CommandRequest",
    "SyncAck",
    "WriteAck",
    "ReadData",
    "ExecAck",
    "ExecResult",
    "NoResponse",
    "build_sync",
    "build_write",
    "build_read",
    "build_exec_exit",
    "build_exec_return",
    "build_set_high_rate",
    "decode_response",
    "expected_response_size",
    "verify_frame_crc",
    # Session
    "LinkSession",
    "SyncResult",
]
