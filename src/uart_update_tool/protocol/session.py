"""
Link session and send/wait engine.

A LinkSession owns one open transport plus its hardware configuration, CRC
width and timeout policy. Every protocol operation takes the session
explicitly; there is no process-wide port handle.

Command lifecycle (one command in flight at a time):

    Idle -> Sent -> WaitingForData -> Complete | TimedOut

1. The whole frame is written at once; a short write is a TransportError.
2. The queued-byte count is polled until the expected response size is
   available or the timeout for the command's class elapses.
3. Exactly one bounded read of the expected size is performed.

A timed-out command is reported, never resent.
"""

import logging
import time
from enum import Enum
from typing import Callable, Optional

from uart_update_tool.config import (
    MAX_SYNC_TRIALS,
    LinkConfig,
    TimeoutClass,
    TimeoutPolicy,
)
from uart_update_tool.protocol.commands import (
    CommandRequest,
    Response,
    build_sync,
    decode_response,
)
from uart_update_tool.protocol.crc import CrcWidth
from uart_update_tool.protocol.errors import (
    CommandTimeoutError,
    ProtocolMismatchError,
    TransportError,
)

logger = logging.getLogger(__name__)


class SyncResult(Enum):
    """Outcome of one synchronization handshake."""
    OK = 0x00
    WRONG_DATA = 0x01
    TIMEOUT = 0x02
    ERROR = 0x03


class LinkSession:
    """
    Exclusive owner of a serial link to the device boot-ROM.

    The transport is any object providing open(name, config),
    configure(config), close(), write(data), read(n) and bytes_available();
    SerialTransport is used when none is given. The clock and sleep
    callables are injectable so tests can simulate elapsed time.

    Example:
        with LinkSession("ttyUSB0", LinkConfig(baudrate=115200)) as session:
            if session.check_sync() == SyncResult.OK:
                session.execute(build_read(0x10000, 16))
    """

    def __init__(
        self,
        port: str,
        config: Optional[LinkConfig] = None,
        crc_width: CrcWidth = CrcWidth.CRC16,
        timeouts: Optional[TimeoutPolicy] = None,
        transport=None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Initialize session (the port is not opened yet).

        Args:
            port: Short serial device name (e.g. "ttyS0", "COM3")
            config: Link settings (default 115200 8N1, no flow control)
            crc_width: CRC used by every framed command of this session
            timeouts: Timing policy for the send/wait engine
            transport: Transport collaborator (default SerialTransport)
            clock: Monotonic time source in seconds
            sleep: Blocking sleep function
        """
        if transport is None:
            from uart_update_tool.protocol.transport import SerialTransport
            transport = SerialTransport()

        self.port = port
        self.config = config or LinkConfig()
        self.crc_width = CrcWidth(crc_width)
        self.timeouts = timeouts or TimeoutPolicy()
        self.transport = transport
        self.clock = clock
        self.sleep = sleep
        self.is_open = False
        self.last_sync_response = b""

    @property
    def baudrate(self) -> int:
        return self.config.baudrate

    def open(self) -> "LinkSession":
        """
        Open the port with the session configuration.

        Does nothing if the session is already open, so an opened session
        can still be used as a context manager.

        Raises:
            PortOpenError: If the port cannot be opened
        """
        if self.is_open:
            return self
        self.transport.open(self.port, self.config)
        self.is_open = True
        logger.info(f"Port {self.port} opened at {self.config.baudrate} bps")
        return self

    def close(self) -> None:
        """Close the port. Safe to call on a closed session."""
        if self.is_open:
            self.is_open = False
            self.transport.close()

    def __enter__(self) -> "LinkSession":
        return self.open()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def reconfigure(self, baudrate: Optional[int] = None, config: Optional[LinkConfig] = None) -> None:
        """
        Apply a new link configuration between commands.

        Args:
            baudrate: Shortcut for changing only the baud rate
            config: Full replacement configuration

        Raises:
            TransportError: If the port rejects the settings
        """
        new_config = config or self.config
        if baudrate is not None:
            new_config = new_config.with_baudrate(baudrate)
        self.transport.configure(new_config)
        self.config = new_config

    def wait_for_bytes(self, expected: int, timeout: float) -> int:
        """
        Poll the input queue until `expected` bytes are available.

        Returns:
            Number of bytes queued when the loop ended (may be < expected
            if the timeout elapsed)
        """
        start = self.clock()
        while True:
            available = self.transport.bytes_available()
            if available >= expected:
                return available
            if self.clock() - start > timeout:
                return available
            self.sleep(self.timeouts.poll_interval)

    def transact(self, request: CommandRequest) -> bytes:
        """
        Send one command and collect its raw response.

        Raises:
            TransportError: If the frame cannot be written
            CommandTimeoutError: If fewer than request.response_size bytes
                arrive before the timeout
        """
        self.transport.write(request.frame)
        if request.response_size == 0:
            return b""
        return self.receive(
            request.response_size,
            request.timeout_class,
            label=request.operation.value,
        )

    def receive(
        self,
        expected: int,
        timeout_class: TimeoutClass = TimeoutClass.DEFAULT,
        label: str = "receive",
    ) -> bytes:
        """
        Wait for exactly `expected` bytes and read them in one bounded read.

        Also used on its own for device-initiated traffic (status records).

        Raises:
            CommandTimeoutError: If the bytes do not arrive in time
        """
        timeout = self.timeouts.for_class(timeout_class)
        available = self.wait_for_bytes(expected, timeout)
        if available < expected:
            raise CommandTimeoutError(
                f"{label}: [{available}] bytes received, "
                f"[{expected}] bytes are expected (timeout {timeout:g}s)",
                available=available,
                expected=expected,
            )

        raw = self.transport.read(expected)
        if len(raw) < expected:
            raise CommandTimeoutError(
                f"{label}: short read of {len(raw)}/{expected} bytes",
                available=len(raw),
                expected=expected,
            )
        return raw

    def execute(self, request: CommandRequest) -> Response:
        """
        Send one command and decode its response.

        Raises:
            TransportError, CommandTimeoutError, ProtocolMismatchError
        """
        return decode_response(request, self.transact(request))

    def check_sync(self, baudrate: Optional[int] = None) -> SyncResult:
        """
        Check that host and device are synchronized.

        The link is (re)configured first, which also flushes stale input.
        After sending the sync byte, up to MAX_SYNC_TRIALS wait windows are
        allowed for the single response byte.

        Args:
            baudrate: Rate to check (default: current session rate)
        """
        self.last_sync_response = b""
        try:
            self.reconfigure(baudrate)
        except TransportError as e:
            logger.debug(f"Sync at {baudrate}: {e}")
            return SyncResult.ERROR

        request = build_sync()
        received = b""
        try:
            self.transport.write(request.frame)
            for attempt in range(MAX_SYNC_TRIALS):
                if self.wait_for_bytes(1, self.timeouts.sync_wait) >= 1:
                    received = self.transport.read(1)
                    if received:
                        break
                if attempt < MAX_SYNC_TRIALS - 1:
                    # Give the ROM-Code time to answer
                    self.sleep(self.timeouts.sync_retry_delay)
        except TransportError as e:
            logger.debug(f"Sync at {self.baudrate}: {e}")
            return SyncResult.ERROR

        self.last_sync_response = received
        if not received:
            return SyncResult.TIMEOUT
        try:
            decode_response(request, received)
        except ProtocolMismatchError:
            return SyncResult.WRONG_DATA
        return SyncResult.OK
