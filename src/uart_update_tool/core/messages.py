"""
Standardized warning and message system for the UART Update Tool.

Provides structured warning items with stable codes so every front end
reports the same condition the same way.
"""

from dataclasses import dataclass
from enum import Enum
from typing import List, Dict, Any


class MessageLevel(Enum):
    """Severity level for messages."""
    INFO = "info"
    WARN = "warn"
    ERROR = "error"


class WarningCode(Enum):
    """Stable warning codes for known conditions."""
    # Connection warnings
    W_PORT_NOT_FOUND = "W_PORT_NOT_FOUND"
    W_SERIAL_ERROR = "W_SERIAL_ERROR"
    W_SERIAL_TIMEOUT = "W_SERIAL_TIMEOUT"
    W_SYNC_FAILED = "W_SYNC_FAILED"
    W_BAUD_NOT_FOUND = "W_BAUD_NOT_FOUND"

    # Protocol warnings
    W_PROTOCOL_MISMATCH = "W_PROTOCOL_MISMATCH"
    W_DEVICE_ERROR = "W_DEVICE_ERROR"
    W_COMMAND_MODE_LEFT = "W_COMMAND_MODE_LEFT"

    # Data warnings
    W_PARTIAL_TRANSFER = "W_PARTIAL_TRANSFER"
    W_INPUT_INVALID = "W_INPUT_INVALID"

    # Generic
    W_UNKNOWN = "W_UNKNOWN"


# Default remediation hints for each warning code
WARNING_REMEDIATIONS: Dict[WarningCode, str] = {
    WarningCode.W_PORT_NOT_FOUND:
        "Disconnect other terminal apps and make sure the boot straps select UART programming.",
    WarningCode.W_SERIAL_ERROR:
        "Close other serial apps. Check the USB-serial driver and the --port name.",
    WarningCode.W_SERIAL_TIMEOUT:
        "Check cable connection. Try a lower baud rate or run 'scan-baud'.",
    WarningCode.W_SYNC_FAILED:
        "Device is not in UART programming mode or the baud rate is wrong. Try 'scan-baud'.",
    WarningCode.W_BAUD_NOT_FOUND:
        "Reset the device into boot-ROM mode and rescan.",
    WarningCode.W_PROTOCOL_MISMATCH:
        "Device answered with an unexpected opcode. Check --crc matches the device.",
    WarningCode.W_DEVICE_ERROR:
        "Device rejected the command (0xFF). Check address range and CRC width.",
    WarningCode.W_COMMAND_MODE_LEFT:
        "Device executed code and left command mode. Reset it before sending more commands.",
    WarningCode.W_PARTIAL_TRANSFER:
        "Some windows completed before the failure. Already written memory is not rolled back.",
    WarningCode.W_INPUT_INVALID:
        "Check file name, address and size arguments.",
    WarningCode.W_UNKNOWN:
        "Check logs for more details (--verbose).",
}


@dataclass
class WarningItem:
    """
    Structured warning message with stable code.

    Attributes:
        level: Severity (INFO, WARN, ERROR)
        code: Stable warning code for programmatic handling
        title: Short, user-facing title
        detail: Longer explanation of the issue
        remediation: Suggested action to resolve the issue
    """
    level: MessageLevel
    code: WarningCode
    title: str
    detail: str = ""
    remediation: str = ""

    def __post_init__(self):
        """Set default remediation if not provided."""
        if not self.remediation and self.code in WARNING_REMEDIATIONS:
            self.remediation = WARNING_REMEDIATIONS[self.code]

    @classmethod
    def warn(cls, code: WarningCode, title: str, detail: str = "") -> "WarningItem":
        """Create a WARN-level warning."""
        return cls(MessageLevel.WARN, code, title, detail)

    @classmethod
    def error(cls, code: WarningCode, title: str, detail: str = "") -> "WarningItem":
        """Create an ERROR-level warning."""
        return cls(MessageLevel.ERROR, code, title, detail)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON/display."""
        return {
            "level": self.level.value,
            "code": self.code.value,
            "title": self.title,
            "detail": self.detail,
            "remediation": self.remediation,
        }


def classify_message(message: str) -> WarningCode:
    """Map a warning or error string to its stable code."""
    msg = message.lower()

    if "device error" in msg:
        return WarningCode.W_DEVICE_ERROR
    if "expected 0x" in msg or "opcode" in msg:
        return WarningCode.W_PROTOCOL_MISMATCH
    if "no port answered" in msg:
        return WarningCode.W_PORT_NOT_FOUND
    if "no baud rate" in msg:
        return WarningCode.W_BAUD_NOT_FOUND
    if "synchroniz" in msg:
        return WarningCode.W_SYNC_FAILED
    if "timeout" in msg or "bytes are expected" in msg or "short read" in msg:
        return WarningCode.W_SERIAL_TIMEOUT
    if "cannot open" in msg or "write error" in msg or "incomplete write" in msg or "cannot configure" in msg:
        return WarningCode.W_SERIAL_ERROR
    if "windows completed" in msg:
        return WarningCode.W_PARTIAL_TRANSFER
    if "command mode" in msg:
        return WarningCode.W_COMMAND_MODE_LEFT
    if "invalid" in msg or "zero-length" in msg or "could not read" in msg:
        return WarningCode.W_INPUT_INVALID
    return WarningCode.W_UNKNOWN


def result_to_warnings(result: "OperationResult") -> List[WarningItem]:
    """
    Convert Result object's warnings and errors to WarningItem list.

    Args:
        result: OperationResult from core operations

    Returns:
        List of WarningItem objects
    """
    items = [
        WarningItem.warn(classify_message(warning), warning)
        for warning in result.warnings
    ]
    items.extend(
        WarningItem.error(classify_message(err), err)
        for err in result.errors
    )
    return items
