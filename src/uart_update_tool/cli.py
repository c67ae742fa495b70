"""
UART Update Tool CLI

Command-line interface for updating device memory through the boot-ROM
UART programming protocol.
"""

import sys
import logging
from enum import IntEnum
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.logging import RichHandler
from rich.progress import Progress, BarColumn, TextColumn

from uart_update_tool import __version__
from uart_update_tool.config import (
    DEFAULT_BAUD_RATE,
    DEFAULT_PORT_NAME,
    SCAN_RESULT_FILE,
    WORD_SIZE,
    BaudScanLimits,
    LinkConfig,
)
from uart_update_tool.protocol import (
    CrcWidth,
    LinkSession,
    PortOpenError,
    SyncResult,
)
from uart_update_tool.protocol.errors import PayloadError

# Import from core module for unified logic
from uart_update_tool.core.parsing import (
    parse_int as _parse_int_core,
    parse_crc_width as _parse_crc_width_core,
    validate_port_name,
)
from uart_update_tool.core.results import OperationResult
from uart_update_tool.core.actions import (
    write_memory as core_write_memory,
    read_memory as core_read_memory,
    execute_exit as core_execute_exit,
    execute_return as core_execute_return,
    set_high_baud_rate as core_set_high_baud_rate,
    read_status_messages as core_read_status_messages,
)
from uart_update_tool.core.discovery import (
    BaudProbe,
    scan_baud_rate as core_scan_baud_rate,
    scan_ports as core_scan_ports,
)
from uart_update_tool.core.messages import (
    WarningItem,
    WarningCode,
    MessageLevel,
    result_to_warnings,
)

# Setup logging
logging.basicConfig(
    level=logging.INFO,
    format="%(message)s",
    handlers=[RichHandler(rich_tracebacks=True)],
)
logger = logging.getLogger("uart_update_tool")

# Setup Rich console
console = Console()

app = typer.Typer(help="UART Update Tool - boot-ROM memory programming over a serial link")

state = {"verbose": False}


class ExitCode(IntEnum):
    """Process exit codes (kept compatible with existing scripts)."""
    OK = 0x00
    PORT_ERR = 0x01
    BAUDRATE_ERR = 0x02
    SYNC_ERR = 0x03
    OPR_ERR = 0x05
    ALIGN_ERR = 0x06
    FILE_ERR = 0x07
    SCAN_ERR = 0x09


PORT_OPTION = typer.Option(DEFAULT_PORT_NAME, "--port", "-p", help="Serial port short name (e.g. ttyUSB0, COM3)")
BAUD_OPTION = typer.Option(DEFAULT_BAUD_RATE, "--baudrate", "-b", help="Link baud rate")
CRC_OPTION = typer.Option(16, "--crc", help="Frame CRC width: 16 or 32")

# One past the highest device address
ADDRESS_LIMIT = 1 << 32


def print_header(text: str) -> None:
    """Print fancy header."""
    console.print(Panel(text, expand=False, style="bold blue"))


def print_success(text: str) -> None:
    """Print success message."""
    console.print(f"✓ {text}", style="green")


def print_warning(text: str) -> None:
    """Print warning message."""
    console.print(f"⚠️  {text}", style="yellow")


def print_error(text: str) -> None:
    """Print error message."""
    console.print(f"❌ {text}", style="red")


def print_structured_warning(warning: WarningItem, verbose: bool = False) -> None:
    """Print a structured warning with optional remediation."""
    if warning.level == MessageLevel.ERROR:
        style = "red"
        icon = "❌"
    elif warning.level == MessageLevel.WARN:
        style = "yellow"
        icon = "⚠️"
    else:
        style = "blue"
        icon = "ℹ️"

    console.print(f"{icon} [{warning.code.value}] {warning.title}", style=style)
    if verbose and warning.detail:
        console.print(f"   {warning.detail}", style="dim")
    if verbose and warning.remediation:
        console.print(f"   → {warning.remediation}", style="cyan")


def print_warnings_from_result(result: OperationResult, verbose: bool = False) -> None:
    """Print all warnings from an OperationResult using structured format."""
    for warning in result_to_warnings(result):
        print_structured_warning(warning, verbose=verbose)


def parse_int(value: Optional[str], label: str) -> int:
    """
    Parse a required integer argument (decimal, 0x prefix or h suffix).

    CLI wrapper around core.parsing.parse_int that converts
    ValueError to typer.BadParameter for proper CLI error handling.
    """
    try:
        number = _parse_int_core(value, label)
    except ValueError as e:
        raise typer.BadParameter(str(e))
    if number is None:
        raise typer.BadParameter(f"Missing {label}")
    return number


def parse_crc_width(value: int) -> CrcWidth:
    """CLI wrapper around core.parsing.parse_crc_width."""
    try:
        return _parse_crc_width_core(value)
    except ValueError as e:
        raise typer.BadParameter(str(e))


def exit_code_for(result: OperationResult) -> ExitCode:
    """Map a failed OperationResult to a process exit code."""
    if result.ok:
        return ExitCode.OK
    if result.metadata.get("error_type") == PayloadError.__name__:
        return ExitCode.FILE_ERR
    return ExitCode.OPR_ERR


def parse_address(value: str) -> int:
    """Parse a device address, rejecting anything beyond 32 bits."""
    address = parse_int(value, "address")
    if address > ADDRESS_LIMIT - 1:
        raise typer.BadParameter(f"Address 0x{address:X} does not fit in 32 bits")
    return address


def parse_read_size(value: str, address: int) -> int:
    """Parse a read length that is non-zero and stays inside the address space."""
    size = parse_int(value, "size")
    if size == 0:
        raise typer.BadParameter("Invalid size 0: nothing to read")
    if address + size > ADDRESS_LIMIT:
        raise typer.BadParameter(
            f"Region 0x{address:08X}+{size} runs past the 32-bit address space"
        )
    return size


def finish(result: OperationResult, success_text: str) -> None:
    """Print result warnings/errors and exit with the mapped code on failure."""
    print_warnings_from_result(result, verbose=state["verbose"])
    if result.ok:
        print_success(success_text)
        return
    sys.exit(exit_code_for(result))


def open_session(port: str, baudrate: int, crc: int) -> LinkSession:
    """
    Validate the link options and open the port.

    Exits with PORT_ERR if the name is invalid or the port cannot be opened.
    """
    width = parse_crc_width(crc)
    try:
        port = validate_port_name(port)
        session = LinkSession(port, LinkConfig(baudrate=baudrate), crc_width=width)
    except ValueError as e:
        print_error(str(e))
        sys.exit(ExitCode.PORT_ERR)

    try:
        return session.open()
    except PortOpenError as e:
        print_error(str(e))
        sys.exit(ExitCode.PORT_ERR)


def require_sync(session: LinkSession) -> None:
    """Perform the Host/Device synchronization check or exit with SYNC_ERR."""
    console.print("Performing a Host/Device synchronization check...")
    result = session.check_sync()
    if result != SyncResult.OK:
        print_structured_warning(
            WarningItem.error(
                WarningCode.W_SYNC_FAILED,
                f"Host/Device synchronization failed at {session.baudrate} bps, error = {result.name}",
            ),
            verbose=True,
        )
        sys.exit(ExitCode.SYNC_ERR)


def make_progress() -> Progress:
    return Progress(
        TextColumn("[{task.description}]"),
        BarColumn(),
        TextColumn("[{task.percentage:.0f}%]"),
        console=console,
    )


@app.callback()
def main_options(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show protocol traffic and remediation hints"),
    silent: bool = typer.Option(False, "--silent", help="Only show warnings and errors"),
) -> None:
    """UART Update Tool - boot-ROM memory programming over a serial link."""
    state["verbose"] = verbose
    level = logging.DEBUG if verbose else logging.WARNING if silent else logging.INFO
    logger.setLevel(logging.DEBUG if verbose else logging.INFO)
    for handler in logging.getLogger().handlers:
        handler.setLevel(level)


@app.command()
def ports() -> None:
    """List available serial ports."""
    print_header("Available Serial Ports")

    try:
        import serial.tools.list_ports

        ports_list = list(serial.tools.list_ports.comports())

        if not ports_list:
            print_warning("No serial ports found")
            return

        table = Table(title="Serial Ports")
        table.add_column("Port", style="cyan")
        table.add_column("Device", style="magenta")
        table.add_column("Description", style="green")

        for port in ports_list:
            table.add_row(port.device, port.name or "-", port.description or "-")

        console.print(table)
    except ImportError:
        print_error("pyserial not installed: pip install pyserial")


@app.command()
def sync(
    port: str = PORT_OPTION,
    baudrate: int = BAUD_OPTION,
    crc: int = CRC_OPTION,
) -> None:
    """Check that host and device are synchronized."""
    print_header("Host/Device Synchronization")

    with open_session(port, baudrate, crc) as session:
        result = session.check_sync()
        response = session.last_sync_response.hex().upper() or "-"

    table = Table(title="Sync Check")
    table.add_column("Property", style="cyan")
    table.add_column("Value", style="green")
    table.add_row("Port", port)
    table.add_row("Baud Rate", str(baudrate))
    table.add_row("Result", result.name)
    table.add_row("Response", response)
    console.print(table)

    if result != SyncResult.OK:
        print_error("Host/Device synchronization failed")
        sys.exit(ExitCode.SYNC_ERR)
    print_success("Host and device are synchronized")


@app.command("scan-ports")
def scan_ports(
    baudrate: int = BAUD_OPTION,
    result_file: str = typer.Option(SCAN_RESULT_FILE, "--result-file", help="File receiving the discovered port name"),
) -> None:
    """Scan all serial ports for a device answering sync."""
    print_header("Scan Ports")

    with console.status("Scanning ports..."):
        result = core_scan_ports(LinkConfig(baudrate=baudrate), result_file=result_file)

    console.print(f"Tried {len(result.probed)} names, {len(result.opened)} opened")
    if not result.found:
        print_error("No port answered sync")
        sys.exit(ExitCode.SCAN_ERR)

    print_success(f"Found port {result.port}")
    console.print(f"[dim]Saved to: {result.result_file}[/dim]")


@app.command("scan-baud")
def scan_baud(
    port: str = PORT_OPTION,
    low: int = typer.Option(BaudScanLimits.low, "--low", help="Lowest baud rate to try"),
    high: int = typer.Option(BaudScanLimits.high, "--high", help="Scan stops below this baud rate"),
) -> None:
    """Scan the baud-rate range for rates the device answers on."""
    print_header("Scan Baud Rate")

    try:
        limits = BaudScanLimits(low=low, high=high)
    except ValueError as e:
        print_error(str(e))
        sys.exit(ExitCode.BAUDRATE_ERR)

    table = Table(title="Baud Rate Probes")
    table.add_column("Baud Rate", style="cyan")
    table.add_column("Result", style="green")
    table.add_column("Next Step", style="dim")

    def on_probe(probe: BaudProbe) -> None:
        table.add_row(str(probe.baudrate), probe.result.name, str(probe.step))

    with open_session(port, low, 16) as session:
        report = core_scan_baud_rate(session, limits=limits, on_probe=on_probe)

    console.print(table)
    console.print(f"Scan ended: {report.stop_reason.value}")
    if not report.found:
        print_error("No baud rate synchronized with the device")
        sys.exit(ExitCode.BAUDRATE_ERR)
    if report.error:
        print_error(report.error)
        sys.exit(ExitCode.BAUDRATE_ERR)

    print_success(f"Device answers at {min(report.ok_rates)}-{max(report.ok_rates)} bps, best {report.best_baudrate}")


@app.command()
def write(
    address: str = typer.Argument(..., help="Start address (e.g. 0x10000)"),
    source: str = typer.Argument(..., help="Input file, or hex words with --console"),
    console_mode: bool = typer.Option(False, "--console", "-c", help="SOURCE is whitespace-separated 32-bit hex words"),
    port: str = PORT_OPTION,
    baudrate: int = BAUD_OPTION,
    crc: int = CRC_OPTION,
) -> None:
    """Write a file (or hex words) to device memory."""
    print_header("Write Memory")

    addr = parse_address(address)
    if console_mode and addr % WORD_SIZE:
        print_error(f"Address 0x{addr:X} is not aligned to {WORD_SIZE} bytes")
        sys.exit(ExitCode.ALIGN_ERR)
    if not console_mode and not Path(source).is_file():
        print_error(f"File not found: {source}")
        sys.exit(ExitCode.FILE_ERR)

    with open_session(port, baudrate, crc) as session:
        require_sync(session)
        with make_progress() as progress:
            task = progress.add_task("Writing...", total=None)

            def on_window(done: int, window: int, count: int) -> None:
                progress.update(task, total=count, completed=window,
                                description=f"Window {window}/{count} ({done:,} bytes)")

            result = core_write_memory(session, addr, source, word_mode=console_mode, progress_cb=on_window)

    if result.ok:
        console.print(f"Region: {result.region}")
    else:
        console.print(
            f"Windows written: {result.metadata.get('windows_written', 0)}"
            f"/{result.metadata.get('window_count', '?')}"
        )
    finish(result, f"Wrote {result.bytes_len:,} bytes")


def print_hex_dump(data: bytes, address: int) -> None:
    """Print data as 32-bit little-endian words, four per row."""
    table = Table(show_header=False, box=None)
    table.add_column("Address", style="cyan")
    table.add_column("Words", style="green")
    for offset in range(0, len(data), 16):
        row = data[offset:offset + 16]
        words = [row[i:i + WORD_SIZE][::-1].hex().upper() for i in range(0, len(row), WORD_SIZE)]
        table.add_row(f"0x{address + offset:08X}", " ".join(words))
    console.print(table)


@app.command()
def read(
    address: str = typer.Argument(..., help="Start address (e.g. 0x10000)"),
    size: str = typer.Argument(..., help="Number of bytes to read"),
    output: Optional[str] = typer.Option(None, "--output", "-o", help="Save to file (default: print words)"),
    port: str = PORT_OPTION,
    baudrate: int = BAUD_OPTION,
    crc: int = CRC_OPTION,
) -> None:
    """Read device memory to a file or the console."""
    print_header("Read Memory")

    addr = parse_address(address)
    length = parse_read_size(size, addr)

    with open_session(port, baudrate, crc) as session:
        require_sync(session)
        with make_progress() as progress:
            task = progress.add_task("Reading...", total=length)

            def on_window(done: int, window: int, count: int) -> None:
                progress.update(task, completed=done, description=f"Window {window}/{count}")

            if output:
                try:
                    with open(output, "wb") as sink:
                        result = core_read_memory(session, addr, length, sink=sink, progress_cb=on_window)
                except OSError as e:
                    print_error(f"Cannot write output file {output}: {e}")
                    sys.exit(ExitCode.FILE_ERR)
            else:
                result = core_read_memory(session, addr, length, progress_cb=on_window)

    data = result.metadata.get("data", b"")
    if output:
        console.print(f"[dim]{len(data):,} bytes saved to: {output}[/dim]")
    elif data:
        print_hex_dump(data, addr)
    finish(result, f"Read {len(data):,} bytes from {result.region}")


@app.command()
def go(
    address: str = typer.Argument(..., help="Address to jump to"),
    port: str = PORT_OPTION,
    baudrate: int = BAUD_OPTION,
    crc: int = CRC_OPTION,
) -> None:
    """Execute code that does not return (device leaves command mode)."""
    print_header("Execute (no return)")

    addr = parse_address(address)
    with open_session(port, baudrate, crc) as session:
        require_sync(session)
        result = core_execute_exit(session, addr)

    finish(result, f"Execution started at 0x{addr:08X}")


@app.command()
def call(
    address: str = typer.Argument(..., help="Address of the routine to call"),
    port: str = PORT_OPTION,
    baudrate: int = BAUD_OPTION,
    crc: int = CRC_OPTION,
) -> None:
    """Execute returnable code and print its result code."""
    print_header("Execute (return)")

    addr = parse_address(address)
    with open_session(port, baudrate, crc) as session:
        require_sync(session)
        with console.status(f"Waiting for 0x{addr:08X} to return..."):
            result = core_execute_return(session, addr)

    if result.ok:
        console.print(f"Result code: [bold]0x{result.metadata['result_code']:02X}[/bold]")
    finish(result, "Call returned")


@app.command("set-high-rate")
def set_high_rate(
    rate: Optional[int] = typer.Option(None, "--rate", "-r", help="Host baud rate to switch to afterwards"),
    port: str = PORT_OPTION,
    baudrate: int = BAUD_OPTION,
    crc: int = CRC_OPTION,
) -> None:
    """Switch the device to its high baud rate."""
    print_header("Set High Baud Rate")

    with open_session(port, baudrate, crc) as session:
        require_sync(session)
        result = core_set_high_baud_rate(session, rate)

    if "sync" in result.metadata:
        console.print(f"Sync at {result.metadata['baudrate']} bps: {result.metadata['sync']}")
    finish(result, "Device switched to high baud rate")


@app.command()
def status(
    output: str = typer.Option(..., "--output", "-o", help="Binary file receiving the status stream"),
    port: str = PORT_OPTION,
    baudrate: int = BAUD_OPTION,
    crc: int = CRC_OPTION,
) -> None:
    """Record device status messages until the end-of-application status."""
    print_header("Read Status Messages")

    with open_session(port, baudrate, crc) as session:
        try:
            with open(output, "wb") as sink:
                result = core_read_status_messages(session, sink)
        except OSError as e:
            print_error(f"Error opening output file: {output} ({e})")
            sys.exit(ExitCode.FILE_ERR)

    table = Table(title="Status Records")
    table.add_column("#", style="dim")
    table.add_column("Status", style="cyan")
    table.add_column("Data Size", style="green")
    for i, record in enumerate(result.metadata["records"], 1):
        table.add_row(str(i), f"0x{record['status']:08X}", str(record["data_size"]))
    console.print(table)
    finish(result, f"Status stream saved to {output}")


@app.command()
def version() -> None:
    """Show the tool version."""
    console.print(f"uart-update-tool {__version__}")


def main() -> None:
    """Main entry point."""
    try:
        app()
    except KeyboardInterrupt:
        console.print("\n[yellow]Operation cancelled by user[/yellow]")
        sys.exit(0)
    except Exception as e:
        console.print(f"\n[red bold]Fatal error:[/red bold] {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
