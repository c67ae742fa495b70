"""
UART Update Tool - host-side client for the boot-ROM UART programming protocol

Synchronize with the device, write and read its memory, run code on it and
discover which port and baud rate it answers on.
"""

__version__ = "0.1.0"

from uart_update_tool.protocol import LinkSession, SyncResult
from uart_update_tool.config import LinkConfig, TimeoutPolicy

__all__ = [
    "LinkSession",
    "SyncResult",
    "LinkConfig",
    "TimeoutPolicy",
    "__version__",
]
