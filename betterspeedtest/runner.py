"""Throughput runner fanning out concurrent netperf sessions."""

import logging
import subprocess
import tempfile
from dataclasses import dataclass
from typing import IO

from betterspeedtest.errors import LaunchFailure, MeasurementCancelled
from betterspeedtest.models import Direction, IPVersion, ThroughputSession

logger = logging.getLogger(__name__)

REAP_TIMEOUT = 2.0

NETPERF_TESTS = {
    Direction.RECEIVE: "TCP_MAERTS",
    Direction.SEND: "TCP_STREAM",
}


def parse_netperf_rate(output: str) -> float | None:
    """Parse the rate printed by ``netperf -v 0 -P 0`` (pure function).

    netperf prints a single number in Mbps; anything else (empty output,
    error text) yields None.

    Examples:
        >>> parse_netperf_rate("   93.21\\n")
        93.21
        >>> parse_netperf_rate("establish control: are you sure there is a netserver")
    """
    for line in reversed(output.splitlines()):
        fields = line.split()
        if not fields:
            continue
        try:
            return float(fields[0])
        except ValueError:
            continue
    return None


@dataclass
class _RunningSession:
    session: ThroughputSession
    command: list[str]
    process: subprocess.Popen
    output: IO[str]


class ThroughputRunner:
    """Launches ``hosts x sessions_per_host`` netperf processes at once.

    Every session is started before any is waited on, and ``run()`` only
    returns once all of them have exited, so the measured total reflects
    streams that were running simultaneously.
    """

    def __init__(self, ip_version: IPVersion = IPVersion.IPV4):
        self.ip_version = ip_version
        self._running: list[_RunningSession] = []
        self._cancelled = False

    def run(
        self,
        hosts,
        direction: Direction,
        sessions_per_host: int,
        duration: int,
    ) -> list[ThroughputSession]:
        """Run all sessions to completion and return their results.

        Sessions whose output holds no rate are returned with
        ``rate_mbps=None``; they do not fail the run.

        Raises:
            LaunchFailure: a session process could not be created; any
                sessions already started are killed first
            MeasurementCancelled: ``cancel()`` was called while running
        """
        if self._cancelled:
            raise MeasurementCancelled()

        self._running = []
        for host in hosts:
            for _ in range(sessions_per_host):
                self._launch(ThroughputSession(host=host, direction=direction, duration=duration))

        # A cancel that raced the fan-out missed the sessions started after it.
        if self._cancelled:
            self.cancel()

        logger.info(
            "Started %d %s sessions against %d hosts",
            len(self._running),
            direction.value,
            len(set(hosts)),
        )

        for running in self._running:
            running.process.wait()

        try:
            if self._cancelled:
                raise MeasurementCancelled()
            return [self._collect(running) for running in self._running]
        finally:
            for running in self._running:
                running.output.close()
            self._running = []

    def cancel(self) -> None:
        """Kill and reap every outstanding session. Safe to call repeatedly."""
        self._cancelled = True
        running = list(self._running)
        for item in running:
            if item.process.returncode is None:
                try:
                    item.process.kill()
                except ProcessLookupError:
                    pass
        for item in running:
            try:
                item.process.wait(timeout=REAP_TIMEOUT)
            except subprocess.TimeoutExpired:
                logger.warning("netperf (pid %d) did not exit after kill", item.process.pid)

    def _launch(self, session: ThroughputSession) -> None:
        cmd = self._build_netperf_command(session)
        output = None
        logger.debug("Starting session: %s", " ".join(cmd))
        try:
            output = tempfile.TemporaryFile(mode="w+", prefix="netperf.")
            process = subprocess.Popen(
                cmd,
                stdin=subprocess.DEVNULL,
                stdout=output,
                stderr=subprocess.DEVNULL,
            )
        except OSError as e:
            if output is not None:
                output.close()
            self.cancel()
            for running in self._running:
                running.output.close()
            self._running = []
            raise LaunchFailure(cmd, str(e)) from e
        self._running.append(_RunningSession(session, cmd, process, output))

    def _collect(self, running: _RunningSession) -> ThroughputSession:
        running.output.seek(0)
        session = running.session
        session.rate_mbps = parse_netperf_rate(running.output.read())
        if session.rate_mbps is None:
            logger.warning(
                "Session to %s reported no rate (exit status %s)",
                session.host,
                running.process.returncode,
            )
        else:
            logger.debug("Session to %s: %.2f Mbps", session.host, session.rate_mbps)
        return session

    def _build_netperf_command(self, session: ThroughputSession) -> list[str]:
        family = "-4" if self.ip_version is IPVersion.IPV4 else "-6"
        return [
            "netperf",
            family,
            "-H",
            session.host,
            "-t",
            NETPERF_TESTS[session.direction],
            "-l",
            str(session.duration),
            "-v",
            "0",
            "-P",
            "0",
        ]
