"""Shared fixtures: an in-memory boot-ROM device and a simulated clock."""

import struct
from typing import Dict, Optional, Set

import pytest

from uart_update_tool.config import LinkConfig, TimeoutPolicy
from uart_update_tool.protocol import LinkSession, PortOpenError, TransportError
from uart_update_tool.protocol.commands import (
    D2H_SYNC_CMD,
    ERROR_CMD,
    FCALL_CMD,
    FCALL_RSLT_CMD,
    H2D_SYNC_CMD,
    READ_CMD,
    SET_HIGH_RATE_CMD,
    WRITE_CMD,
    verify_frame_crc,
)
from uart_update_tool.protocol.crc import CrcWidth


class FakeClock:
    """Monotonic clock that only advances when sleep() is called."""

    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps = []

    def clock(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


class FakeDevice:
    """
    Transport double that behaves like the boot-ROM command loop.

    Frames written by the host are decoded and answered into an input queue
    the host drains through bytes_available()/read().

    Attributes:
        memory: Sparse device memory (address -> byte)
        baudrate: Rate the device UART runs at
        tolerance: Relative rate error still answered with 0x5A
        garble_tolerance: Relative rate error answered with a garbled byte
        fail_writes: 1-based Write command numbers answered with 0xFF
        return_codes: Execute-with-return result per address
        silent: Never answer anything
    """

    def __init__(
        self,
        crc_width: CrcWidth = CrcWidth.CRC16,
        baudrate: int = 115200,
        present: bool = True,
    ) -> None:
        self.crc_width = crc_width
        self.baudrate = baudrate
        self.present = present
        self.tolerance = 0.02
        self.garble_tolerance = 0.06
        self.memory: Dict[int, int] = {}
        self.fail_writes: Set[int] = set()
        self.return_codes: Dict[int, int] = {}
        self.unconfigurable: Set[int] = set()
        self.silent = False

        self.is_open = False
        self.host_config: Optional[LinkConfig] = None
        self.rx = bytearray()
        self.frames = []
        self.write_count = 0
        self.high_rate_requested = False
        self.executed_at: Optional[int] = None

    # Transport interface --------------------------------------------------

    def open(self, name: str, config: LinkConfig) -> None:
        if not self.present:
            raise PortOpenError(f"Cannot open port /dev/{name}: no such device")
        self.is_open = True
        self.host_config = config

    def configure(self, config: LinkConfig) -> None:
        if config.baudrate in self.unconfigurable:
            raise TransportError(f"Cannot configure for {config.baudrate} bps")
        self.host_config = config
        self.rx.clear()

    def close(self) -> None:
        self.is_open = False

    def write(self, data: bytes) -> int:
        self.frames.append(bytes(data))
        if not self.silent:
            self._handle(bytes(data))
        return len(data)

    def read(self, length: int) -> bytes:
        data = bytes(self.rx[:length])
        del self.rx[:length]
        return data

    def bytes_available(self) -> int:
        return len(self.rx)

    # Device model ---------------------------------------------------------

    def load(self, address: int, data: bytes) -> None:
        for i, value in enumerate(data):
            self.memory[address + i] = value

    def dump(self, address: int, size: int) -> bytes:
        return bytes(self.memory.get(address + i, 0) for i in range(size))

    def _rate_error(self) -> float:
        return abs(self.host_config.baudrate - self.baudrate) / self.baudrate

    def _handle(self, frame: bytes) -> None:
        opcode = frame[0]
        if opcode == H2D_SYNC_CMD:
            error = self._rate_error()
            if error <= self.tolerance:
                self.rx.append(D2H_SYNC_CMD)
            elif error <= self.garble_tolerance:
                self.rx.append(0x00)
            return
        if opcode == SET_HIGH_RATE_CMD:
            self.high_rate_requested = True
            return

        if not verify_frame_crc(frame, self.crc_width):
            self.rx.append(ERROR_CMD)
            return

        size = frame[1] + 1
        address = struct.unpack(">I", frame[2:6])[0]
        if opcode == WRITE_CMD:
            self.write_count += 1
            if self.write_count in self.fail_writes:
                self.rx.append(ERROR_CMD)
                return
            self.load(address, frame[6:6 + size])
            self.rx.append(WRITE_CMD)
        elif opcode == READ_CMD:
            self.rx += bytes([READ_CMD]) + self.dump(address, size) + b"\x00\x00"
        elif opcode == FCALL_CMD:
            self.executed_at = address
            if address in self.return_codes:
                self.rx += bytes([0x00, FCALL_RSLT_CMD, self.return_codes[address]])
            else:
                self.rx.append(FCALL_CMD)
        else:
            self.rx.append(ERROR_CMD)


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def device():
    return FakeDevice()


@pytest.fixture
def timeouts():
    # Coarse polling keeps simulated timeouts to a few hundred iterations
    return TimeoutPolicy(poll_interval=0.1)


@pytest.fixture
def make_session(fake_clock, timeouts):
    """Factory for open sessions on a given transport double."""
    def factory(transport, port="ttyUSB0", baudrate=115200, crc_width=CrcWidth.CRC16):
        session = LinkSession(
            port,
            LinkConfig(baudrate=baudrate),
            crc_width=crc_width,
            timeouts=timeouts,
            transport=transport,
            clock=fake_clock.clock,
            sleep=fake_clock.sleep,
        )
        return session.open()
    return factory


@pytest.fixture
def session(make_session, device):
    s = make_session(device)
    yield s
    s.close()
