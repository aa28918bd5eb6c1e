"""Latency sampler driving a continuous system ping subprocess."""

import logging
import platform
import re
import shutil
import subprocess
import tempfile

from betterspeedtest.errors import LaunchFailure, MeasurementCancelled
from betterspeedtest.models import IPVersion, LatencySample

logger = logging.getLogger(__name__)

# Seconds to wait for a killed subprocess to be reaped.
REAP_TIMEOUT = 2.0

_LESS_THAN_PATTERN = re.compile(r"time<(\d+(?:\.\d+)?)", re.IGNORECASE)
_LATENCY_PATTERN = re.compile(r"time\s*=\s*(\d+(?:\.\d+)?)\s*ms", re.IGNORECASE)
_DROP_PATTERN = re.compile(
    r"timeout|timed out|no answer yet|unreachable",
    re.IGNORECASE,
)


def parse_ping_line(line: str) -> LatencySample | None:
    """Classify one line of ping output (pure function).

    Handles:
    - Linux/macOS replies: "64 bytes from ...: icmp_seq=1 ttl=57 time=12.3 ms"
    - Fast Windows replies: "time<1ms", read as the midpoint (0.5 ms)
    - Drops: "Request timeout for icmp_seq 5", "Request timed out.",
      "no answer yet for icmp_seq=3", "Destination Host Unreachable"

    Banners, blank lines and the closing statistics block are ignorable.

    Args:
        line: One line of ping stdout

    Returns:
        A valid or dropped LatencySample, or None for ignorable lines

    Examples:
        >>> parse_ping_line("64 bytes from 1.1.1.1: icmp_seq=1 ttl=57 time=12.3 ms")
        LatencySample(value_ms=12.3, dropped=False)
        >>> parse_ping_line("Request timeout for icmp_seq 5")
        LatencySample(value_ms=None, dropped=True)
        >>> parse_ping_line("PING gstatic.com (142.250.74.67): 56 data bytes") is None
        True
    """
    if not line or not line.strip():
        return None

    match = _LESS_THAN_PATTERN.search(line)
    if match:
        return LatencySample(value_ms=float(match.group(1)) / 2.0)

    match = _LATENCY_PATTERN.search(line)
    if match:
        return LatencySample(value_ms=float(match.group(1)))

    if _DROP_PATTERN.search(line):
        return LatencySample(value_ms=None, dropped=True)

    return None


def parse_ping_output(output: str) -> list[LatencySample]:
    """Parse a whole ping transcript into samples, in arrival order."""
    samples = []
    for line in output.splitlines():
        sample = parse_ping_line(line)
        if sample is not None:
            samples.append(sample)
    return samples


class PingSampler:
    """Runs one long-lived ping process for the length of a phase.

    The sampler has no timer of its own: ``start()`` launches ping,
    and the phase controller calls ``stop()`` when the phase is over. Output
    goes to a private temporary file that is read wholesale on stop.
    """

    def __init__(
        self,
        ping_host: str,
        ip_version: IPVersion = IPVersion.IPV4,
        startup_grace: float = 0.25,
    ):
        """Initialize the sampler.

        Args:
            ping_host: Host to ping
            ip_version: Address family; selects ping4/ping6 variants
            startup_grace: Seconds to watch a fresh ping process for an
                immediate failure (unknown host, unsupported family)
        """
        if not ping_host or not ping_host.strip():
            raise ValueError("ping_host must not be empty")

        self.ping_host = ping_host
        self.ip_version = ip_version
        self.startup_grace = startup_grace
        self.system = platform.system()

        self._process: subprocess.Popen | None = None
        self._output = None
        self._errors = None
        self._cancelled = False

        logger.debug(
            "PingSampler initialized: host=%s, ip_version=%s, system=%s",
            ping_host,
            ip_version.value,
            self.system,
        )

    @property
    def running(self) -> bool:
        return self._process is not None and self._process.poll() is None

    def start(self) -> None:
        """Launch the ping subprocess.

        Raises:
            LaunchFailure: ping could not be executed or exited with an
                error during the startup grace period
            MeasurementCancelled: ``cancel()`` was called before or while
                ping was starting
        """
        if self._process is not None:
            raise RuntimeError("PingSampler already started")
        if self._cancelled:
            raise MeasurementCancelled()

        cmd = self._build_ping_command()
        logger.debug("Starting ping: %s", " ".join(cmd))
        try:
            self._output = tempfile.TemporaryFile(mode="w+", prefix="ping.")
            self._errors = tempfile.TemporaryFile(mode="w+", prefix="ping-err.")
            self._process = subprocess.Popen(
                cmd,
                stdin=subprocess.DEVNULL,
                stdout=self._output,
                stderr=self._errors,
            )
        except OSError as e:
            self._close_files()
            raise LaunchFailure(cmd, str(e)) from e

        # cancel() may have run before the process existed to be killed.
        if self._cancelled:
            self._terminate()
            self._close_files()
            raise MeasurementCancelled()

        if self.startup_grace > 0:
            try:
                returncode = self._process.wait(timeout=self.startup_grace)
            except subprocess.TimeoutExpired:
                return
            # A kill from cancel() also ends the process inside the grace period.
            if self._cancelled:
                self._close_files()
                raise MeasurementCancelled()
            if returncode != 0:
                reason = self._read(self._errors).strip() or f"exit status {returncode}"
                self._close_files()
                raise LaunchFailure(cmd, reason)

    def stop(self) -> list[LatencySample]:
        """Terminate ping and return every sample it produced."""
        if self._process is None:
            return []

        self._terminate()
        samples = parse_ping_output(self._read(self._output))
        errors = self._read(self._errors).strip()
        self._close_files()

        if errors:
            logger.warning("ping reported: %s", errors.splitlines()[-1])
        logger.debug(
            "Ping stopped: host=%s, samples=%d, returncode=%s",
            self.ping_host,
            len(samples),
            self._process.returncode,
        )
        return samples

    def cancel(self) -> None:
        """Kill the ping process and reap it. Safe to call repeatedly."""
        self._cancelled = True
        self._terminate()

    def _terminate(self) -> None:
        process = self._process
        if process is None or process.returncode is not None:
            return
        try:
            process.kill()
        except ProcessLookupError:
            pass
        try:
            process.wait(timeout=REAP_TIMEOUT)
        except subprocess.TimeoutExpired:
            logger.warning("ping (pid %d) did not exit after kill", process.pid)

    def _build_ping_command(self) -> list[str]:
        """Build the continuous ping command for the configured family.

        IPv4 prefers ``ping4`` and IPv6 prefers ``ping6`` when installed,
        falling back to ``ping -4``/``ping -6`` style invocations. On Linux,
        iputils ping only reports lost replies when run with ``-O``.
        """
        if self.system == "Windows":
            flag = "-4" if self.ip_version is IPVersion.IPV4 else "-6"
            return ["ping", "-t", flag, self.ping_host]

        if self.ip_version is IPVersion.IPV6:
            cmd = ["ping6"] if shutil.which("ping6") else ["ping", "-6"]
        else:
            cmd = ["ping4"] if shutil.which("ping4") else ["ping"]

        if self.system == "Linux" and self._reports_outstanding(cmd[0]):
            cmd.append("-O")
        return cmd + [self.ping_host]

    @staticmethod
    def _reports_outstanding(binary: str) -> bool:
        """Whether ``binary`` is iputils ping, the variant that accepts ``-O``.

        busybox and inetutils ping reject the flag.
        """
        try:
            result = subprocess.run(
                [binary, "-V"],
                capture_output=True,
                text=True,
                timeout=2,
                stdin=subprocess.DEVNULL,
            )
        except (OSError, subprocess.TimeoutExpired):
            return False
        return "iputils" in (result.stdout + result.stderr)

    @staticmethod
    def _read(handle) -> str:
        if handle is None or handle.closed:
            return ""
        handle.seek(0)
        return handle.read()

    def _close_files(self) -> None:
        for handle in (self._output, self._errors):
            if handle is not None:
                handle.close()
