"""
Link, timeout and discovery configuration for the UART Update Tool.

Provides a single source of truth for:
- Serial link settings (baud rate, framing, flow control)
- Per-operation-class timeouts
- Baud-rate scan limits and step sizes
- Port naming families per platform

Usage:
    from uart_update_tool.config import LinkConfig, TimeoutPolicy

    config = LinkConfig(baudrate=115200)
    slow = config.with_baudrate(57600)
    timeouts = TimeoutPolicy(command=5.0)
"""

import sys
from dataclasses import dataclass, replace
from enum import Enum
from typing import Tuple


DEFAULT_BAUD_RATE = 115200
DEFAULT_PORT_NAME = "COM1" if sys.platform == "win32" else "ttyS0"

# Largest data payload a single Write/Read frame may carry
MAX_RW_DATA_SIZE = 256
# Window size for console word-token input (one 32-bit word)
WORD_SIZE = 4

# Discovery result file, written to the working directory
SCAN_RESULT_FILE = "SerialPortNumber.txt"
# Highest numeric suffix probed per port prefix (inclusive)
MAX_PORT_INDEX = 255

MAX_SYNC_TRIALS = 3


class Parity(Enum):
    """Serial parity setting."""
    NONE = "none"
    ODD = "odd"
    EVEN = "even"


class StopBits(Enum):
    """Serial stop bits setting."""
    ONE = 1
    ONE_POINT_FIVE = 1.5
    TWO = 2


class FlowControl(Enum):
    """Serial flow control setting."""
    NONE = "none"
    SOFTWARE = "software"   # XON/XOFF
    HARDWARE = "hardware"   # RTS/CTS


class TimeoutClass(Enum):
    """Operation classes that share a response timeout."""
    DEFAULT = "default"
    FLASH_ERASE = "flash_erase"


@dataclass(frozen=True)
class LinkConfig:
    """
    Hardware configuration of a serial link.

    Attributes:
        baudrate: Line rate in bits per second
        byte_size: Data bits per character (5-8)
        parity: Parity mode
        stop_bits: Stop bit count
        flow_control: Flow control mode
    """
    baudrate: int = DEFAULT_BAUD_RATE
    byte_size: int = 8
    parity: Parity = Parity.NONE
    stop_bits: StopBits = StopBits.ONE
    flow_control: FlowControl = FlowControl.NONE

    def __post_init__(self) -> None:
        if self.baudrate <= 0:
            raise ValueError(f"Baud rate must be positive, got {self.baudrate}")
        if self.byte_size not in (5, 6, 7, 8):
            raise ValueError(f"Byte size must be 5-8, got {self.byte_size}")

    def with_baudrate(self, baudrate: int) -> "LinkConfig":
        """Return a copy of this configuration at another baud rate."""
        return replace(self, baudrate=baudrate)


@dataclass(frozen=True)
class TimeoutPolicy:
    """
    Timing parameters for the send/wait engine.

    Attributes:
        command: Response timeout for ordinary commands (seconds)
        flash_erase: Response timeout for erase-class commands (seconds)
        sync_wait: Wait window for one sync response attempt (seconds)
        sync_retry_delay: Back-off between sync attempts (seconds)
        poll_interval: Sleep between queued-byte polls (seconds)
    """
    command: float = 10.0
    flash_erase: float = 120.0
    sync_wait: float = 0.5
    sync_retry_delay: float = 1.0
    poll_interval: float = 0.005

    def for_class(self, timeout_class: TimeoutClass) -> float:
        """Return the response timeout for an operation class."""
        if timeout_class == TimeoutClass.FLASH_ERASE:
            return self.flash_erase
        return self.command


@dataclass(frozen=True)
class BaudScanLimits:
    """
    Baud-rate discovery parameters.

    Step sizes are percentages of the current candidate rate; min_step is
    in absolute baud units.
    """
    low: int = 400
    high: int = 150000
    big_step: int = 20
    medium_step: int = 10
    small_step: int = 1
    min_step: int = 5

    def __post_init__(self) -> None:
        if self.low <= 0 or self.high <= self.low:
            raise ValueError(f"Invalid baud scan range {self.low}..{self.high}")


def port_prefixes(platform: str = sys.platform) -> Tuple[str, ...]:
    """
    Return the serial device name families for a platform.

    The first entry is the primary family scanned by port discovery, the
    second covers USB-serial adapters.
    """
    if platform == "win32":
        return ("COM",)
    return ("ttyS", "ttyUSB")


def device_path(name: str, platform: str = sys.platform) -> str:
    """Map a short port name (ttyUSB0, COM3) to the path the OS opens."""
    if platform == "win32":
        if name.startswith("\\\\.\\"):
            return name
        return "\\\\.\\" + name
    if name.startswith("/"):
        return name
    return "/dev/" + name
