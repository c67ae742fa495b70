"""Exception hierarchy for the UART programming protocol stack."""

from typing import Optional


class UartUpdateError(Exception):
    """Base exception for all tool errors"""
    pass


class TransportError(UartUpdateError):
    """Serial port could not be opened, configured, written, read or closed"""
    pass


class PortOpenError(TransportError):
    """Serial port could not be opened at all"""
    pass


class ProtocolMismatchError(UartUpdateError):
    """Device answered with an unexpected opcode"""

    def __init__(self, message: str, expected: Optional[int] = None, received: bytes = b""):
        super().__init__(message)
        self.expected = expected
        self.received = bytes(received)


class CommandTimeoutError(UartUpdateError):
    """Expected response bytes did not arrive before the timeout"""

    def __init__(self, message: str, available: int = 0, expected: int = 0):
        super().__init__(message)
        self.available = available
        self.expected = expected


class InputValidationError(UartUpdateError, ValueError):
    """User input rejected before any transport activity"""
    pass


class PayloadError(InputValidationError):
    """Write source could not be read, parsed, or holds no data"""
    pass
