"""
Link discovery: find the serial device and the baud rate the boot-ROM answers on.

This module provides:
- scan_baud_rate(): adaptive sweep over a baud-rate range driven by sync outcomes
- scan_ports(): probe every candidate device name until one answers sync

Both are built only from LinkSession primitives (reconfigure + check_sync)
plus policy; neither sends anything but the sync byte.
"""

import logging
import os
import statistics
import sys
from dataclasses import dataclass, field, replace
from enum import Enum
from pathlib import Path
from typing import Callable, Dict, List, MutableMapping, Optional

from uart_update_tool.config import (
    MAX_PORT_INDEX,
    SCAN_RESULT_FILE,
    BaudScanLimits,
    LinkConfig,
    TimeoutPolicy,
    port_prefixes,
)
from uart_update_tool.protocol.errors import PortOpenError, TransportError
from uart_update_tool.protocol.session import LinkSession, SyncResult

logger = logging.getLogger(__name__)


# =============================================================================
# Baud-rate discovery
# =============================================================================

class ScanStopReason(Enum):
    """Why a baud-rate scan ended."""
    HIGH_LIMIT = "reached high limit"
    LEFT_RESPONSIVE_WINDOW = "device stopped answering after responding"


@dataclass(frozen=True)
class BaudProbe:
    """One sync attempt of a baud scan and the step taken after it."""
    baudrate: int
    result: SyncResult
    step: int


@dataclass
class BaudScanReport:
    """
    Outcome of a baud-rate scan.

    Attributes:
        probes: Every probe in scan order
        stop_reason: Why the scan ended
        limits: Limits the scan ran with
        error: Why the link could not be left at best_baudrate, if it failed
    """
    probes: List[BaudProbe] = field(default_factory=list)
    stop_reason: ScanStopReason = ScanStopReason.HIGH_LIMIT
    limits: BaudScanLimits = field(default_factory=BaudScanLimits)
    error: Optional[str] = None

    @property
    def ok_rates(self) -> List[int]:
        return [p.baudrate for p in self.probes if p.result == SyncResult.OK]

    @property
    def wrong_data_rates(self) -> List[int]:
        return [p.baudrate for p in self.probes if p.result == SyncResult.WRONG_DATA]

    @property
    def found(self) -> bool:
        return bool(self.ok_rates)

    @property
    def best_baudrate(self) -> Optional[int]:
        """Median of the rates that synced (the middle of the responsive window)."""
        rates = self.ok_rates
        if not rates:
            return None
        return statistics.median_low(rates)

    def to_dict(self) -> Dict:
        return {
            "probes": [
                {"baudrate": p.baudrate, "result": p.result.name, "step": p.step}
                for p in self.probes
            ],
            "ok_rates": self.ok_rates,
            "best_baudrate": self.best_baudrate,
            "stop_reason": self.stop_reason.value,
            "error": self.error,
        }


def next_step(baudrate: int, result: SyncResult, limits: BaudScanLimits) -> int:
    """
    Pick the step to the next candidate rate after a probe.

    Steps are percentages of the current rate: small after OK, medium after
    WRONG_DATA, big otherwise. Never below limits.min_step baud.
    """
    if result == SyncResult.OK:
        percent = limits.small_step
    elif result == SyncResult.WRONG_DATA:
        percent = limits.medium_step
    else:
        percent = limits.big_step
    return max((baudrate * percent) // 100, limits.min_step)


def scan_baud_rate(
    session: LinkSession,
    low: Optional[int] = None,
    high: Optional[int] = None,
    limits: Optional[BaudScanLimits] = None,
    on_probe: Optional[Callable[[BaudProbe], None]] = None,
) -> BaudScanReport:
    """
    Sweep baud rates from low to high, syncing at each candidate.

    Once any probe got an answer (OK or WRONG_DATA), the first probe that
    gets none (TIMEOUT or ERROR) ends the scan: the responsive window is
    contiguous, so everything above it is dead space.

    If a rate synced, the session is left configured at best_baudrate. A
    port that rejects that rate sets report.error instead of raising.

    Args:
        session: Open link session
        low: Lowest rate to try (default limits.low)
        high: Scan stops before this rate (default limits.high)
        limits: Step policy (default BaudScanLimits())
        on_probe: Optional callback invoked after each probe

    Returns:
        BaudScanReport with every probe
    """
    limits = limits or BaudScanLimits()
    if low is not None or high is not None:
        limits = replace(
            limits,
            low=limits.low if low is None else low,
            high=limits.high if high is None else high,
        )

    report = BaudScanReport(limits=limits)
    responded = False
    rate = limits.low

    logger.info(f"Scanning baud rates {limits.low}..{limits.high} on {session.port}")
    while rate < limits.high:
        result = session.check_sync(rate)
        step = next_step(rate, result, limits)
        probe = BaudProbe(baudrate=rate, result=result, step=step)
        report.probes.append(probe)

        received = session.last_sync_response.hex().upper() or "--"
        logger.info(f"{result.name}: Baud rate - {rate}, response - {received}")
        if on_probe:
            on_probe(probe)

        if result in (SyncResult.OK, SyncResult.WRONG_DATA):
            responded = True
        elif responded:
            report.stop_reason = ScanStopReason.LEFT_RESPONSIVE_WINDOW
            break
        rate += step

    best = report.best_baudrate
    if best is not None:
        try:
            session.reconfigure(best)
        except TransportError as e:
            report.error = str(e)
            logger.error(f"Cannot switch to best baud rate {best}: {e}")
            return report
        logger.info(f"Best baud rate: {best}")
    else:
        logger.warning("No baud rate synchronized with the device")
    return report


# =============================================================================
# Port discovery
# =============================================================================

@dataclass
class PortScanResult:
    """
    Outcome of a port scan.

    Attributes:
        port: Short name of the device that answered, or None
        probed: Every name that was tried, in order
        opened: Names that opened but did not sync
        result_file: Where the name was persisted (None when nothing found)
    """
    port: Optional[str] = None
    probed: List[str] = field(default_factory=list)
    opened: List[str] = field(default_factory=list)
    result_file: Optional[Path] = None

    @property
    def found(self) -> bool:
        return self.port is not None


def candidate_ports(platform: str = sys.platform, max_index: int = MAX_PORT_INDEX):
    """Yield candidate short names: the primary family first, then the secondary."""
    for prefix in port_prefixes(platform):
        for index in range(max_index + 1):
            yield f"{prefix}{index}"


def _default_opener(timeouts: Optional[TimeoutPolicy]):
    def opener(name: str, config: LinkConfig) -> LinkSession:
        return LinkSession(name, config, timeouts=timeouts)
    return opener


def scan_ports(
    config: Optional[LinkConfig] = None,
    opener: Optional[Callable[[str, LinkConfig], LinkSession]] = None,
    result_file: Optional[str] = SCAN_RESULT_FILE,
    timeouts: Optional[TimeoutPolicy] = None,
    platform: str = sys.platform,
    max_index: int = MAX_PORT_INDEX,
    environ: Optional[MutableMapping[str, str]] = None,
) -> PortScanResult:
    """
    Find the serial device the boot-ROM is attached to.

    Each candidate is opened with `config`, sync-checked once at the
    configured rate and closed again. The first OK wins and the scan stops,
    so later candidates (including the whole secondary family) are never
    touched.

    On success the short name is exported as PORT in `environ` (default
    os.environ) and written to `result_file` (skipped when None).

    Args:
        config: Link settings for every probe (default 115200 8N1)
        opener: Factory (name, config) -> unopened LinkSession
        result_file: Discovery result file path
        timeouts: Timing policy for the default opener
        platform: Platform whose naming families are scanned
        max_index: Highest numeric suffix tried per family
        environ: Mapping that receives PORT

    Returns:
        PortScanResult (found is False when every candidate failed)
    """
    config = config or LinkConfig()
    opener = opener or _default_opener(timeouts)
    environ = os.environ if environ is None else environ
    result = PortScanResult()

    logger.info(f"Scanning ports at {config.baudrate} bps")
    for name in candidate_ports(platform, max_index):
        result.probed.append(name)
        session = opener(name, config)
        try:
            session.open()
        except PortOpenError as e:
            logger.debug(f"Try to open port {name}: {e}")
            continue

        result.opened.append(name)
        try:
            sync = session.check_sync()
        finally:
            try:
                session.close()
            except TransportError as e:
                logger.warning(f"Closing {name} failed: {e}")

        logger.debug(f"Port {name}: {sync.name}")
        if sync == SyncResult.OK:
            result.port = name
            break

    if not result.found:
        logger.error(f"No port answered sync ({len(result.probed)} candidates tried)")
        return result

    logger.info(f"Found port {result.port}")
    environ["PORT"] = result.port
    if result_file is not None:
        path = Path(result_file)
        path.write_text(result.port)
        result.result_file = path
    return result
