"""
Core module for the UART Update Tool.

This module provides the single source of truth for:
- Address, size, port name and payload parsing (parsing.py)
- Result objects (results.py)
- Memory transfer, execute and status workflows (actions.py)
- Port and baud-rate discovery (discovery.py)
- Standardized warnings/messages (messages.py)

The CLI calls into this module rather than driving the protocol directly.
"""

from .parsing import (
    parse_int,
    parse_crc_width,
    parse_hex_words,
    validate_port_name,
    load_payload,
)
from .results import OperationResult
from .messages import (
    MessageLevel,
    WarningCode,
    WarningItem,
    classify_message,
    result_to_warnings,
)
from .actions import (
    TransferPlan,
    write_memory,
    read_memory,
    execute_exit,
    execute_return,
    set_high_baud_rate,
    read_status_messages,
)
from .discovery import (
    BaudProbe,
    BaudScanReport,
    PortScanResult,
    ScanStopReason,
    scan_baud_rate,
    scan_ports,
)

__all__ = [
    # Parsing
    "parse_int",
    "parse_crc_width",
    "parse_hex_words",
    "validate_port_name",
    "load_payload",
    # Results
    "OperationResult",
    # Messages
    "MessageLevel",
    "WarningCode",
    "WarningItem",
    "classify_message",
    "result_to_warnings",
    # Actions
    "TransferPlan",
    "write_memory",
    "read_memory",
    "execute_exit",
    "execute_return",
    "set_high_baud_rate",
    "read_status_messages",
    # Discovery
    "BaudProbe",
    "BaudScanReport",
    "PortScanResult",
    "ScanStopReason",
    "scan_baud_rate",
    "scan_ports",
]
