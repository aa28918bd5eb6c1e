"""Tests for ThroughputRunner fan-out, join and failure handling.

Short Python scripts stand in for netperf; each receives the host name so
tests can vary the behavior per host.
"""

import errno
import sys
import tempfile
import textwrap
import threading
import time

import pytest

from betterspeedtest.errors import LaunchFailure, MeasurementCancelled
from betterspeedtest.models import Direction, IPVersion, ThroughputSession
from betterspeedtest.runner import ThroughputRunner, parse_netperf_rate
from betterspeedtest.stats import reduce_throughput

# Prints the rate given as the host name, or nothing for host "fail".
FAKE_NETPERF = textwrap.dedent(
    """
    import sys, time
    host = sys.argv[1]
    time.sleep(0.2)
    if host != "fail":
        print("  " + host)
    """
)

SLOW_NETPERF = textwrap.dedent(
    """
    import time
    time.sleep(60)
    print("1.0")
    """
)


def _runner(script: str) -> ThroughputRunner:
    runner = ThroughputRunner()
    runner._build_netperf_command = lambda session: [sys.executable, "-c", script, session.host]
    return runner


class TestParseNetperfRate:
    """Test parsing of netperf's terse output (pure function)."""

    def test_plain_number(self):
        """Test a bare rate with surrounding whitespace."""
        assert parse_netperf_rate("   93.21\n") == 93.21

    def test_empty_output(self):
        """Test empty output has no rate."""
        assert parse_netperf_rate("") is None

    def test_error_text(self):
        """Test netperf error text has no rate."""
        output = "establish control: are you sure there is a netserver listening on host?\n"
        assert parse_netperf_rate(output) is None

    def test_number_after_noise(self):
        """Test the rate is found after a warning line."""
        assert parse_netperf_rate("warning: something\n  941.07\n") == 941.07


class TestThroughputRunnerBuildCommand:
    """Test netperf command construction."""

    def test_download_uses_maerts(self):
        """Receive sessions run TCP_MAERTS."""
        runner = ThroughputRunner(IPVersion.IPV4)
        session = ThroughputSession("netperf.example", Direction.RECEIVE, 60)

        assert runner._build_netperf_command(session) == [
            "netperf", "-4", "-H", "netperf.example", "-t", "TCP_MAERTS",
            "-l", "60", "-v", "0", "-P", "0",
        ]

    def test_upload_over_ipv6_uses_stream(self):
        """Send sessions run TCP_STREAM with the family flag."""
        runner = ThroughputRunner(IPVersion.IPV6)
        session = ThroughputSession("netperf.example", Direction.SEND, 30)

        cmd = runner._build_netperf_command(session)

        assert cmd[1] == "-6"
        assert cmd[cmd.index("-t") + 1] == "TCP_STREAM"
        assert cmd[cmd.index("-l") + 1] == "30"


class TestThroughputRunnerRun:
    """Test fan-out and join against real subprocesses."""

    def test_launches_hosts_times_sessions(self):
        """Two hosts with two sessions each launch four sessions, all joined."""
        runner = _runner(FAKE_NETPERF)
        launched = []
        original_launch = runner._launch

        def recording_launch(session):
            original_launch(session)
            launched.append(runner._running[-1].process)

        runner._launch = recording_launch

        results = runner.run(["10.5", "20.25"], Direction.RECEIVE, 2, 5)

        assert len(launched) == 4
        assert all(process.returncode is not None for process in launched)
        assert sorted(r.rate_mbps for r in results) == [10.5, 10.5, 20.25, 20.25]
        assert all(r.direction is Direction.RECEIVE and r.duration == 5 for r in results)

    def test_sessions_run_concurrently(self):
        """Every session is started before the first one is waited on."""
        runner = _runner(FAKE_NETPERF)
        alive_at_launch_end = []
        original_launch = runner._launch

        def recording_launch(session):
            original_launch(session)
            if len(runner._running) == 3:
                alive_at_launch_end.extend(r.process.poll() is None for r in runner._running)

        runner._launch = recording_launch
        runner.run(["1", "2", "3"], Direction.SEND, 1, 5)

        assert alive_at_launch_end == [True, True, True]

    def test_failed_session_contributes_nothing(self):
        """A session without output is kept with no rate and the sum ignores it."""
        runner = _runner(FAKE_NETPERF)

        results = runner.run(["93.2", "91.8", "95.0", "fail"], Direction.RECEIVE, 1, 5)

        failed = [r for r in results if r.host == "fail"]
        assert len(failed) == 1
        assert failed[0].rate_mbps is None
        assert reduce_throughput(results).total_rate_mbps == pytest.approx(280.0)

    def test_launch_failure_kills_started_sessions(self):
        """A session that cannot start aborts the phase and reaps the others."""
        runner = ThroughputRunner()
        started = []

        def build(session):
            if session.host == "missing":
                return ["betterspeedtest-no-such-netperf-binary"]
            return [sys.executable, "-c", SLOW_NETPERF]

        runner._build_netperf_command = build
        original_launch = runner._launch

        def recording_launch(session):
            original_launch(session)
            started.append(runner._running[-1].process)

        runner._launch = recording_launch

        with pytest.raises(LaunchFailure):
            runner.run(["ok", "missing"], Direction.RECEIVE, 2, 5)

        assert len(started) == 2
        assert all(process.returncode is not None for process in started)

    def test_temp_file_failure_kills_started_sessions(self, monkeypatch):
        """Running out of descriptors partway through the fan-out reaps earlier sessions."""
        runner = _runner(SLOW_NETPERF)
        started = []
        calls = []
        original_temporary_file = tempfile.TemporaryFile

        def failing_temporary_file(*args, **kwargs):
            calls.append(1)
            if len(calls) == 3:
                raise OSError(errno.EMFILE, "Too many open files")
            return original_temporary_file(*args, **kwargs)

        monkeypatch.setattr("betterspeedtest.runner.tempfile.TemporaryFile", failing_temporary_file)
        original_launch = runner._launch

        def recording_launch(session):
            original_launch(session)
            started.append(runner._running[-1].process)

        runner._launch = recording_launch

        with pytest.raises(LaunchFailure, match="Too many open files"):
            runner.run(["a", "b"], Direction.RECEIVE, 2, 60)

        assert len(started) == 2
        assert all(process.returncode is not None for process in started)
        assert runner._running == []


class TestThroughputRunnerCancel:
    """Test cancellation from another thread."""

    def test_cancel_during_join(self):
        """cancel() kills every session and run() raises MeasurementCancelled."""
        runner = _runner(SLOW_NETPERF)
        errors = []

        def target():
            try:
                runner.run(["a", "b"], Direction.RECEIVE, 2, 60)
            except MeasurementCancelled as e:
                errors.append(e)

        thread = threading.Thread(target=target)
        thread.start()

        deadline = time.monotonic() + 10
        while len(runner._running) < 4 and time.monotonic() < deadline:
            time.sleep(0.05)
        processes = [r.process for r in runner._running]

        runner.cancel()
        thread.join(timeout=10)

        assert not thread.is_alive()
        assert len(errors) == 1
        assert len(processes) == 4
        assert all(process.returncode is not None for process in processes)

    def test_cancel_is_idempotent(self):
        """cancel() on an idle runner is harmless and blocks later runs."""
        runner = _runner(FAKE_NETPERF)

        runner.cancel()
        runner.cancel()

        with pytest.raises(MeasurementCancelled):
            runner.run(["1"], Direction.RECEIVE, 1, 5)
