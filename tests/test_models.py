"""Tests for betterspeedtest.models invariants."""

import pytest

from betterspeedtest.models import Direction, LatencySample, Phase, ThroughputSession


class TestLatencySample:
    """Test LatencySample dataclass behavior and invariants."""

    def test_valid_sample(self):
        """Test a sample carrying a round-trip time."""
        sample = LatencySample(value_ms=12.5)

        assert sample.value_ms == 12.5
        assert sample.dropped is False

    def test_dropped_sample(self):
        """Test a dropped sample carries no value."""
        sample = LatencySample(value_ms=None, dropped=True)

        assert sample.value_ms is None
        assert sample.dropped is True

    def test_post_init_dropped_clears_value(self):
        """Test __post_init__ invariant: dropped=True forces value_ms=None."""
        sample = LatencySample(value_ms=12.5, dropped=True)

        assert sample.value_ms is None
        assert sample.dropped is True

    def test_post_init_missing_value_implies_dropped(self):
        """Test __post_init__ invariant: value_ms=None forces dropped=True."""
        sample = LatencySample(value_ms=None)

        assert sample.dropped is True


class TestThroughputSession:
    """Test ThroughputSession defaults."""

    def test_new_session_has_no_rate(self):
        """A session that has not reported is not successful."""
        session = ThroughputSession(host="a.example", direction=Direction.RECEIVE, duration=10)

        assert session.rate_mbps is None
        assert session.succeeded is False

    def test_reported_session_succeeds(self):
        """A session with a rate is successful."""
        session = ThroughputSession(
            host="a.example", direction=Direction.SEND, duration=10, rate_mbps=93.2
        )

        assert session.succeeded is True


class TestPhaseAndDirection:
    """Test Phase titles and the phase to direction mapping."""

    def test_phase_titles(self):
        """Phase titles are capitalized names."""
        assert Phase.IDLE.title == "Idle"
        assert Phase.DOWNLOAD.title == "Download"
        assert Phase.UPLOAD.title == "Upload"

    def test_download_receives_upload_sends(self):
        """Download maps to receive and upload to send."""
        assert Direction.for_phase(Phase.DOWNLOAD) is Direction.RECEIVE
        assert Direction.for_phase(Phase.UPLOAD) is Direction.SEND

    def test_idle_has_no_direction(self):
        """The idle phase has no throughput direction."""
        with pytest.raises(ValueError, match="no throughput direction"):
            Direction.for_phase(Phase.IDLE)
