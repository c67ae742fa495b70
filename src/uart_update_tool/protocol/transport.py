"""
Serial Transport Layer

Handles raw serial I/O with the device boot-ROM.

This module provides:
- Serial port open/configure/close
- Atomic frame writes
- Non-blocking reads and queued-byte queries for the polling engine

It knows nothing about frames or opcodes; see protocol.session for the
send/wait engine built on top of it.
"""

import logging
from typing import Optional

try:
    import serial
except ImportError:
    raise ImportError("PySerial required: pip install pyserial")

from uart_update_tool.config import (
    FlowControl,
    LinkConfig,
    Parity,
    StopBits,
    device_path,
)
from uart_update_tool.protocol.errors import PortOpenError, TransportError

logger = logging.getLogger(__name__)

_PARITY = {
    Parity.NONE: serial.PARITY_NONE,
    Parity.ODD: serial.PARITY_ODD,
    Parity.EVEN: serial.PARITY_EVEN,
}

_STOPBITS = {
    StopBits.ONE: serial.STOPBITS_ONE,
    StopBits.ONE_POINT_FIVE: serial.STOPBITS_ONE_POINT_FIVE,
    StopBits.TWO: serial.STOPBITS_TWO,
}


def serial_settings(config: LinkConfig) -> dict:
    """Translate a LinkConfig into pyserial settings."""
    return {
        "baudrate": config.baudrate,
        "bytesize": config.byte_size,
        "parity": _PARITY[config.parity],
        "stopbits": _STOPBITS[config.stop_bits],
        "xonxoff": config.flow_control == FlowControl.SOFTWARE,
        "rtscts": config.flow_control == FlowControl.HARDWARE,
    }


class SerialTransport:
    """
    Raw serial transport for the boot-ROM UART.

    Reads are non-blocking (timeout=0); the caller polls bytes_available()
    and only reads once the expected count is queued.

    Example:
        transport = SerialTransport()
        transport.open("ttyUSB0", LinkConfig(baudrate=115200))
        transport.write(b"\\x55")
        if transport.bytes_available():
            reply = transport.read(1)
        transport.close()
    """

    def __init__(self, write_timeout: float = 2.0):
        """
        Initialize transport.

        Args:
            write_timeout: Seconds a single write may block before failing
        """
        self.write_timeout = write_timeout
        self.name: Optional[str] = None
        self.ser: Optional[serial.Serial] = None

    @property
    def is_open(self) -> bool:
        return bool(self.ser and self.ser.is_open)

    def open(self, name: str, config: LinkConfig) -> None:
        """
        Open and configure a serial device.

        Args:
            name: Short device name (e.g. "ttyUSB0", "COM3")
            config: Link settings to apply

        Raises:
            PortOpenError: If the device cannot be opened or configured
        """
        path = device_path(name)
        port = None
        try:
            port = serial.Serial(
                port=path,
                timeout=0,
                write_timeout=self.write_timeout,
                **serial_settings(config),
            )
            port.reset_input_buffer()
            port.reset_output_buffer()
        except (serial.SerialException, ValueError, OSError) as e:
            if port is not None:
                port.close()
            self.ser = None
            raise PortOpenError(f"Cannot open port {path}: {e}")
        self.ser = port

        self.name = name
        logger.debug(f"Opened {path} at {config.baudrate} bps")

    def configure(self, config: LinkConfig) -> None:
        """
        Re-apply link settings to the open port and flush stale input.

        Raises:
            TransportError: If the port rejects the settings
        """
        self._require_open()
        try:
            self.ser.apply_settings(serial_settings(config))
            self.ser.reset_input_buffer()
        except (serial.SerialException, ValueError, OSError) as e:
            raise TransportError(
                f"Cannot configure {self.name} for {config.baudrate} bps: {e}"
            )

    def close(self) -> None:
        """
        Close serial port.

        Raises:
            TransportError: If the OS refuses to close the device
        """
        if self.ser and self.ser.is_open:
            try:
                self.ser.close()
            except (serial.SerialException, OSError) as e:
                raise TransportError(f"Port close failed for {self.name}: {e}")
            logger.debug(f"Closed {self.name}")
        self.ser = None

    def write(self, data: bytes) -> int:
        """
        Send raw bytes.

        Raises:
            TransportError: If the write fails or is incomplete
        """
        self._require_open()
        try:
            written = self.ser.write(data)
        except (serial.SerialException, OSError) as e:
            raise TransportError(f"Write error: {e}")
        if written != len(data):
            raise TransportError(
                f"Incomplete write: sent {written}/{len(data)} bytes"
            )
        logger.debug(f">>> {data[:32].hex().upper()}" + ("..." if len(data) > 32 else ""))
        return written

    def read(self, length: int) -> bytes:
        """
        Read up to length bytes without blocking.

        May return fewer bytes than requested, including none.
        """
        self._require_open()
        try:
            data = self.ser.read(length)
        except (serial.SerialException, OSError) as e:
            raise TransportError(f"Read error: {e}")
        if data:
            logger.debug(f"<<< {data[:32].hex().upper()}" + ("..." if len(data) > 32 else ""))
        return data

    def bytes_available(self) -> int:
        """Return the number of bytes queued for reading."""
        self._require_open()
        try:
            return self.ser.in_waiting
        except (serial.SerialException, OSError) as e:
            raise TransportError(f"Cannot query input queue: {e}")

    def _require_open(self) -> None:
        if not self.ser or not self.ser.is_open:
            raise TransportError("Serial port not open")
