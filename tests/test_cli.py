"""Tests for CLI commands, argument parsing and exit codes."""

from unittest.mock import MagicMock

import pytest
import typer
from typer.testing import CliRunner

from uart_update_tool import cli
from uart_update_tool.cli import ExitCode, app
from uart_update_tool.core.discovery import BaudProbe, BaudScanReport, PortScanResult
from uart_update_tool.core.results import OperationResult
from uart_update_tool.protocol import CrcWidth, LinkSession, SyncResult
from uart_update_tool.protocol import transport as transport_module

from conftest import FakeDevice

runner = CliRunner()


@pytest.fixture
def cli_device(monkeypatch, fake_clock, timeouts):
    """Route every session the CLI opens to one in-memory device."""
    device = FakeDevice()

    def session_factory(port, config=None, crc_width=CrcWidth.CRC16, **kwargs):
        return LinkSession(
            port, config, crc_width=crc_width, timeouts=timeouts, transport=device,
            clock=fake_clock.clock, sleep=fake_clock.sleep,
        )

    monkeypatch.setattr(cli, "LinkSession", session_factory)
    return device


class TestParsingWrappers:
    """CLI wrappers convert ValueError to typer.BadParameter."""

    def test_parse_int(self):
        """Bad or missing numbers become BadParameter."""
        assert cli.parse_int("0x10", "address") == 16
        with pytest.raises(typer.BadParameter):
            cli.parse_int("zz", "address")
        with pytest.raises(typer.BadParameter, match="Missing"):
            cli.parse_int("", "address")

    def test_parse_address(self):
        """Addresses must fit in 32 bits."""
        assert cli.parse_address("0xFFFFFFFF") == 0xFFFFFFFF
        with pytest.raises(typer.BadParameter, match="32 bits"):
            cli.parse_address("0x100000000")

    def test_parse_read_size(self):
        """Read sizes are non-zero and stay inside the address space."""
        assert cli.parse_read_size("0x100", 0xFFFFFF00) == 0x100
        with pytest.raises(typer.BadParameter, match="nothing to read"):
            cli.parse_read_size("0", 0x0)
        with pytest.raises(typer.BadParameter, match="address space"):
            cli.parse_read_size("0x101", 0xFFFFFF00)

    def test_parse_crc_width(self):
        """Only 16 and 32 are accepted."""
        assert cli.parse_crc_width(32) == CrcWidth.CRC32
        with pytest.raises(typer.BadParameter):
            cli.parse_crc_width(8)

    def test_exit_code_for_results(self):
        """Payload errors map to FILE_ERR, others to OPR_ERR."""
        assert cli.exit_code_for(OperationResult.success("x")) == ExitCode.OK
        failed = OperationResult.failure("x", "boom")
        failed.metadata["error_type"] = "PayloadError"
        assert cli.exit_code_for(failed) == ExitCode.FILE_ERR
        failed.metadata["error_type"] = "InputValidationError"
        assert cli.exit_code_for(failed) == ExitCode.OPR_ERR
        failed.metadata["error_type"] = "CommandTimeoutError"
        assert cli.exit_code_for(failed) == ExitCode.OPR_ERR


def test_version():
    """Version command prints the package version."""
    result = runner.invoke(app, ["version"])
    assert result.exit_code == 0
    assert cli.__version__ in result.output


def test_sync_ok(cli_device):
    """Sync prints OK and exits 0."""
    result = runner.invoke(app, ["sync", "--port", "ttyUSB0"])
    assert result.exit_code == ExitCode.OK
    assert "OK" in result.output


def test_sync_failure_exit_code(cli_device):
    """A device at another rate gives SYNC_ERR."""
    cli_device.baudrate = 9600
    result = runner.invoke(app, ["sync", "-p", "ttyS0"])
    assert result.exit_code == ExitCode.SYNC_ERR


def test_invalid_port_name(cli_device):
    """An unknown port family gives PORT_ERR without I/O."""
    result = runner.invoke(app, ["sync", "--port", "lpt1"])
    assert result.exit_code == ExitCode.PORT_ERR
    assert cli_device.frames == []


def test_port_open_failure(cli_device):
    """A port that cannot be opened gives PORT_ERR."""
    cli_device.present = False
    result = runner.invoke(app, ["sync", "--port", "ttyUSB3"])
    assert result.exit_code == ExitCode.PORT_ERR


def test_write_file(cli_device, tmp_path):
    """Write command transfers a binary file."""
    path = tmp_path / "image.bin"
    path.write_bytes(bytes(range(100)) * 3)
    result = runner.invoke(app, ["write", "0x20000", str(path), "-p", "ttyUSB0"])
    assert result.exit_code == ExitCode.OK
    assert cli_device.dump(0x20000, 300) == bytes(range(100)) * 3


def test_write_missing_file(cli_device, tmp_path):
    """A missing file gives FILE_ERR without I/O."""
    result = runner.invoke(app, ["write", "0x0", str(tmp_path / "missing.bin"), "-p", "ttyUSB0"])
    assert result.exit_code == ExitCode.FILE_ERR
    assert cli_device.frames == []


def test_write_console_words(cli_device):
    """Console mode writes hex words little-endian."""
    result = runner.invoke(app, ["write", "0x400", "DEADBEEF 1", "--console", "-p", "ttyUSB0"])
    assert result.exit_code == ExitCode.OK
    assert cli_device.dump(0x400, 8) == b"\xEF\xBE\xAD\xDE\x01\x00\x00\x00"


def test_write_console_misaligned(cli_device):
    """Console mode needs a word-aligned address."""
    result = runner.invoke(app, ["write", "0x402", "DEADBEEF", "--console", "-p", "ttyUSB0"])
    assert result.exit_code == ExitCode.ALIGN_ERR


def test_write_failure_is_operation_error(cli_device, tmp_path):
    """A device error mid-transfer gives OPR_ERR and progress."""
    path = tmp_path / "image.bin"
    path.write_bytes(b"\x00" * 600)
    cli_device.fail_writes = {2}
    result = runner.invoke(app, ["write", "0x0", str(path), "-p", "ttyUSB0"])
    assert result.exit_code == ExitCode.OPR_ERR
    assert "Windows written: 1/3" in result.output


def test_read_to_file(cli_device, tmp_path):
    """Read command saves memory to a file."""
    cli_device.load(0x1000, b"\x12\x34\x56\x78" * 80)
    out = tmp_path / "dump.bin"
    result = runner.invoke(app, ["read", "0x1000", "320", "-o", str(out), "-p", "ttyUSB0"])
    assert result.exit_code == ExitCode.OK
    assert out.read_bytes() == b"\x12\x34\x56\x78" * 80


def test_read_to_console_prints_words(cli_device):
    """Without --output memory is printed as words."""
    cli_device.load(0x1000, b"\x12\x34\x56\x78")
    result = runner.invoke(app, ["read", "0x1000", "4", "-p", "ttyUSB0"])
    assert result.exit_code == ExitCode.OK
    assert "78563412" in result.output


def test_call_prints_result_code(cli_device):
    """Call command prints the routine result code."""
    cli_device.return_codes[0x30000] = 0x05
    result = runner.invoke(app, ["call", "0x30000", "-p", "ttyUSB0"])
    assert result.exit_code == ExitCode.OK
    assert "0x05" in result.output


def test_go(cli_device):
    """Go command jumps to the address."""
    result = runner.invoke(app, ["go", "0x10000", "-p", "ttyUSB0"])
    assert result.exit_code == ExitCode.OK
    assert cli_device.executed_at == 0x10000


def test_set_high_rate(cli_device):
    """Set-high-rate sends the switch command."""
    result = runner.invoke(app, ["set-high-rate", "-p", "ttyUSB0"])
    assert result.exit_code == ExitCode.OK
    assert cli_device.high_rate_requested


def test_scan_ports_not_found(monkeypatch, tmp_path):
    """No answering port gives SCAN_ERR."""
    monkeypatch.setattr(cli, "core_scan_ports", lambda config, result_file: PortScanResult(probed=["ttyS0"]))
    result = runner.invoke(app, ["scan-ports", "--result-file", str(tmp_path / "out.txt")])
    assert result.exit_code == ExitCode.SCAN_ERR


def test_scan_baud_invalid_range(cli_device):
    """A low limit above the high limit gives BAUDRATE_ERR."""
    result = runner.invoke(app, ["scan-baud", "-p", "ttyUSB0", "--low", "5000", "--high", "1000"])
    assert result.exit_code == ExitCode.BAUDRATE_ERR


def test_scan_baud_finds_rate(cli_device):
    """Scan prints the best baud rate."""
    result = runner.invoke(app, ["scan-baud", "-p", "ttyUSB0", "--low", "113000"])
    assert result.exit_code == ExitCode.OK
    assert "114130" in result.output


def test_device_command_opens_serial_port_once(monkeypatch):
    """A command opens one serial handle and closes it when done."""
    port = MagicMock()
    port.is_open = True
    port.write.side_effect = lambda data: len(data)
    port.in_waiting = 1
    port.read.return_value = b"\x5A"
    factory = MagicMock(return_value=port)
    monkeypatch.setattr(transport_module.serial, "Serial", factory)

    result = runner.invoke(app, ["sync", "-p", "ttyUSB0"])

    assert result.exit_code == ExitCode.OK
    assert factory.call_count == 1
    port.close.assert_called_once()


def test_scan_baud_rejected_best_rate(cli_device, monkeypatch):
    """Failing to switch to the best rate is a baud rate error."""
    report = BaudScanReport(
        probes=[BaudProbe(114130, SyncResult.OK, 1141)],
        error="Cannot configure ttyUSB0 for 114130 bps",
    )
    monkeypatch.setattr(cli, "core_scan_baud_rate", lambda session, limits, on_probe: report)
    result = runner.invoke(app, ["scan-baud", "-p", "ttyUSB0"])
    assert result.exit_code == ExitCode.BAUDRATE_ERR
    assert "114130" in result.output


def test_write_empty_file_is_file_error(cli_device, tmp_path):
    """An empty input file maps to the file error exit code."""
    path = tmp_path / "empty.bin"
    path.write_bytes(b"")
    result = runner.invoke(app, ["write", "0x0", str(path), "-p", "ttyUSB0"])
    assert result.exit_code == ExitCode.FILE_ERR


@pytest.mark.parametrize("args", [
    ["go", "0x100000000"],
    ["call", "0x100000000"],
    ["read", "0x0", "0"],
    ["read", "0xFFFFFFF0", "0x20"],
])
def test_bad_arguments_are_usage_errors(cli_device, args):
    """Out-of-range addresses and sizes are rejected before the port is used."""
    result = runner.invoke(app, args + ["-p", "ttyUSB0"])
    assert result.exit_code == 2
    assert cli_device.frames == []
