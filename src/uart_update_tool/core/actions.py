"""
Core workflow actions for the UART Update Tool.

This module exposes the operations the CLI (or any embedding program) calls
on an open LinkSession. Each one drives the command codec and the send/wait
engine and reports through an OperationResult instead of raising, so a
failed operation leaves the session usable for the next command.

Multi-window transfers stop at the first failed window. Windows that
already completed are not rolled back; the result records how far the
transfer got.
"""

import hashlib
import logging
import math
import struct
from contextlib import contextmanager
from dataclasses import dataclass
from typing import BinaryIO, Callable, Iterator, Optional

from uart_update_tool.config import MAX_RW_DATA_SIZE, WORD_SIZE
from uart_update_tool.protocol.commands import (
    MAX_ADDRESS,
    build_exec_exit,
    build_exec_return,
    build_read,
    build_set_high_rate,
    build_write,
)
from uart_update_tool.protocol.errors import InputValidationError, UartUpdateError
from uart_update_tool.protocol.session import LinkSession, SyncResult
from .parsing import PayloadSource, format_region, load_payload
from .results import OperationResult

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int, int], None]

# Status message stream: u32 status + u32 trailing data size, little-endian
STATUS_RECORD_SIZE = 8
STATUS_APP_END = 0x09


class _ListLogHandler(logging.Handler):
    """Capture log records into a list of formatted strings."""

    def __init__(self, level: int = logging.INFO) -> None:
        super().__init__(level)
        self.records = []
        self.setFormatter(logging.Formatter("%(levelname)s %(name)s: %(message)s"))

    def emit(self, record: logging.LogRecord) -> None:
        self.records.append(self.format(record))


@contextmanager
def _capture_logs(logger_name: str = "uart_update_tool"):
    """Capture logs for core operations into a list."""
    target_logger = logging.getLogger(logger_name)
    handler = _ListLogHandler()
    previous_level = target_logger.level
    if previous_level in (logging.NOTSET, logging.WARNING, logging.ERROR, logging.CRITICAL):
        target_logger.setLevel(logging.INFO)
    target_logger.addHandler(handler)
    try:
        yield handler.records
    finally:
        target_logger.removeHandler(handler)
        target_logger.setLevel(previous_level)


@dataclass(frozen=True)
class Window:
    """One chunk of a transfer."""
    index: int
    address: int
    offset: int
    length: int


@dataclass(frozen=True)
class TransferPlan:
    """
    Split of a transfer into windows of at most chunk_size bytes.

    Example:
        plan = TransferPlan(address=0x1000, total=260, chunk_size=256)
        [(w.address, w.length) for w in plan.windows()]
        # [(0x1000, 256), (0x1100, 4)]
    """
    address: int
    total: int
    chunk_size: int = MAX_RW_DATA_SIZE

    def __post_init__(self) -> None:
        if self.total <= 0:
            raise InputValidationError(f"Invalid size {self.total}: nothing to transfer")
        if not 1 <= self.chunk_size <= MAX_RW_DATA_SIZE:
            raise InputValidationError(
                f"Invalid window size {self.chunk_size} (1..{MAX_RW_DATA_SIZE})"
            )
        if self.address < 0 or self.address + self.total - 1 > MAX_ADDRESS:
            raise InputValidationError(
                f"Invalid range 0x{self.address:X}+{self.total}: exceeds 32-bit address space"
            )

    @property
    def window_count(self) -> int:
        return math.ceil(self.total / self.chunk_size)

    def windows(self) -> Iterator[Window]:
        for index in range(self.window_count):
            offset = index * self.chunk_size
            yield Window(
                index=index,
                address=self.address + offset,
                offset=offset,
                length=min(self.chunk_size, self.total - offset),
            )


def _record_failure(result: OperationResult, error: UartUpdateError) -> None:
    """Attach an operation error to the result."""
    logger.error(f"{result.operation} failed: {error}")
    result.add_error(str(error))
    result.metadata["error_type"] = type(error).__name__


def write_memory(
    session: LinkSession,
    address: int,
    source: PayloadSource,
    word_mode: bool = False,
    progress_cb: Optional[ProgressCallback] = None,
) -> OperationResult:
    """
    Write a payload to device memory, one Write command per window.

    Args:
        session: Open, synchronized link session
        address: Target start address
        source: Raw bytes, a file path, or (word_mode) hex word text
        word_mode: Send 4-byte windows of little-endian hex words
        progress_cb: Optional callback(bytes_done, window_number, window_count)

    Returns:
        OperationResult with:
            - metadata["windows_written"]: windows acknowledged by the device
            - metadata["window_count"]: windows planned
            - metadata["bytes_written"]: bytes acknowledged
            - hashes["sha256"]: hash of the full payload
    """
    with _capture_logs() as logs:
        try:
            data = load_payload(source, word_mode)
            plan = TransferPlan(address, len(data), WORD_SIZE if word_mode else MAX_RW_DATA_SIZE)
        except InputValidationError as e:
            result = OperationResult.failure("write_memory", str(e), port=session.port)
            result.metadata["error_type"] = type(e).__name__
            result.logs = logs
            return result

        result = OperationResult.success(
            operation="write_memory",
            port=session.port,
            region=format_region(address, len(data)),
            bytes_len=len(data),
        )
        result.logs = logs
        result.hashes["sha256"] = hashlib.sha256(data).hexdigest()
        result.metadata.update(window_count=plan.window_count, windows_written=0, bytes_written=0)

        logger.info(
            f"Writing {len(data)} bytes to {result.region} in {plan.window_count} window(s)"
        )
        try:
            for window in plan.windows():
                chunk = data[window.offset:window.offset + window.length]
                session.execute(build_write(window.address, chunk, session.crc_width))

                done = window.offset + window.length
                result.metadata["windows_written"] = window.index + 1
                result.metadata["bytes_written"] = done
                logger.debug(f"Window {window.index + 1}/{plan.window_count} at 0x{window.address:08X} written")
                if progress_cb:
                    progress_cb(done, window.index + 1, plan.window_count)
        except UartUpdateError as e:
            _record_failure(result, e)
            written = result.metadata["windows_written"]
            if written:
                result.add_warning(
                    f"{written} of {plan.window_count} windows completed before the failure"
                )
            return result

        logger.info(f"Write completed: {len(data)} bytes")
        return result


def read_memory(
    session: LinkSession,
    address: int,
    size: int,
    sink: Optional[BinaryIO] = None,
    progress_cb: Optional[ProgressCallback] = None,
) -> OperationResult:
    """
    Read device memory in 256-byte windows.

    Each window's payload is appended to `sink` as soon as it arrives, so
    on failure the sink holds every window read so far.

    Args:
        session: Open, synchronized link session
        address: Start address
        size: Total bytes to read
        sink: Optional binary file object receiving the data
        progress_cb: Optional callback(bytes_done, window_number, window_count)

    Returns:
        OperationResult with metadata["data"] (bytes read, possibly partial)
        and metadata["windows_read"]
    """
    with _capture_logs() as logs:
        try:
            plan = TransferPlan(address, size, MAX_RW_DATA_SIZE)
        except InputValidationError as e:
            result = OperationResult.failure("read_memory", str(e), port=session.port)
            result.metadata["error_type"] = type(e).__name__
            result.logs = logs
            return result

        result = OperationResult.success(
            operation="read_memory",
            port=session.port,
            region=format_region(address, size),
        )
        result.logs = logs
        result.metadata.update(window_count=plan.window_count, windows_read=0)

        data = bytearray()
        logger.info(f"Reading {size} bytes from {result.region}")
        try:
            for window in plan.windows():
                response = session.execute(build_read(window.address, window.length, session.crc_width))
                data += response.payload
                if sink is not None:
                    sink.write(response.payload)

                result.metadata["windows_read"] = window.index + 1
                if progress_cb:
                    progress_cb(len(data), window.index + 1, plan.window_count)
        except UartUpdateError as e:
            _record_failure(result, e)
            if result.metadata["windows_read"]:
                result.add_warning(
                    f"{result.metadata['windows_read']} of {plan.window_count} "
                    f"windows completed before the failure"
                )
        finally:
            result.metadata["data"] = bytes(data)
            result.bytes_len = len(data)
            result.hashes["sha256"] = hashlib.sha256(data).hexdigest()

        return result


def execute_exit(session: LinkSession, address: int) -> OperationResult:
    """
    Jump to code at `address` without expecting it to return.

    After a successful call the device has left command mode; no further
    protocol traffic is possible until it is reset.
    """
    with _capture_logs() as logs:
        result = OperationResult.success(
            operation="execute_exit",
            port=session.port,
            region=f"0x{address:08X}",
        )
        result.logs = logs
        try:
            session.execute(build_exec_exit(address, session.crc_width))
        except UartUpdateError as e:
            _record_failure(result, e)
            return result

        logger.info(f"Execution started at 0x{address:08X}")
        result.add_warning("Device left command mode")
        return result


def execute_return(session: LinkSession, address: int) -> OperationResult:
    """
    Call code at `address` and wait for the result code it returns.

    Uses the flash-erase timeout class since called routines are often
    erase helpers.

    Returns:
        OperationResult with metadata["result_code"]
    """
    with _capture_logs() as logs:
        result = OperationResult.success(
            operation="execute_return",
            port=session.port,
            region=f"0x{address:08X}",
        )
        result.logs = logs
        try:
            response = session.execute(build_exec_return(address, session.crc_width))
        except UartUpdateError as e:
            _record_failure(result, e)
            return result

        result.metadata["result_code"] = response.code
        logger.info(f"Call to 0x{address:08X} returned 0x{response.code:02X}")
        return result


def set_high_baud_rate(session: LinkSession, baudrate: Optional[int] = None) -> OperationResult:
    """
    Ask the device to switch to its high baud rate.

    The command has no response. When `baudrate` is given the host link is
    switched to it afterwards and a sync check confirms both ends agree.

    Returns:
        OperationResult with metadata["baudrate"] (host rate afterwards) and,
        when a rate was given, metadata["sync"]
    """
    with _capture_logs() as logs:
        result = OperationResult.success(operation="set_high_baud_rate", port=session.port)
        result.logs = logs
        try:
            session.execute(build_set_high_rate())
            logger.info("Set-high-baud-rate command sent")

            if baudrate is not None:
                session.reconfigure(baudrate)
                sync = session.check_sync()
                result.metadata["sync"] = sync.name
                if sync != SyncResult.OK:
                    result.add_error(
                        f"Device did not synchronize at {baudrate} bps ({sync.name})"
                    )
        except UartUpdateError as e:
            _record_failure(result, e)

        result.metadata["baudrate"] = session.baudrate
        return result


def read_status_messages(
    session: LinkSession,
    sink: BinaryIO,
    max_records: Optional[int] = None,
) -> OperationResult:
    """
    Stream device status records into `sink` until the end-of-application record.

    Record layout (little-endian):
        status    u32
        data_size u32
        data      data_size bytes

    Every record (header and data) is copied to `sink` verbatim. The record
    whose status is 0x09 ends the stream. Each wait is bounded by the
    ordinary command timeout.

    Args:
        session: Open link session (the device is running application code)
        sink: Binary file object receiving the raw stream
        max_records: Stop after this many records even without the end record

    Returns:
        OperationResult with metadata["records"] as a list of
        {"status", "data_size"} dicts
    """
    with _capture_logs() as logs:
        result = OperationResult.success(operation="read_status_messages", port=session.port)
        result.logs = logs
        records = []
        result.metadata["records"] = records

        logger.info("Reading status messages")
        try:
            while max_records is None or len(records) < max_records:
                header = session.receive(STATUS_RECORD_SIZE, label="status record")
                sink.write(header)
                result.bytes_len += len(header)

                status, data_size = struct.unpack("<II", header)
                records.append({"status": status, "data_size": data_size})
                logger.debug(f"Status 0x{status:08X}, {data_size} data byte(s)")
                if status == STATUS_APP_END:
                    break

                if data_size:
                    payload = session.receive(data_size, label="status data")
                    sink.write(payload)
                    result.bytes_len += len(payload)
            else:
                result.add_warning(f"Stopped after {len(records)} records without end-of-application status")
        except UartUpdateError as e:
            _record_failure(result, e)

        return result
