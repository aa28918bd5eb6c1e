"""Data models for betterspeedtest measurements."""

from dataclasses import dataclass
from enum import Enum


class Phase(str, Enum):
    """One measurement window. Idle has no throughput component."""

    IDLE = "idle"
    DOWNLOAD = "download"
    UPLOAD = "upload"

    @property
    def title(self) -> str:
        return self.value.capitalize()


class Direction(str, Enum):
    """Direction of a throughput session, seen from the local host."""

    RECEIVE = "receive"
    SEND = "send"

    @classmethod
    def for_phase(cls, phase: Phase) -> "Direction":
        if phase is Phase.DOWNLOAD:
            return cls.RECEIVE
        if phase is Phase.UPLOAD:
            return cls.SEND
        raise ValueError(f"Phase {phase.value} has no throughput direction")


class IPVersion(str, Enum):
    """Address family used for both probes and sessions."""

    IPV4 = "ipv4"
    IPV6 = "ipv6"


@dataclass
class LatencySample:
    """A single probe result: a round-trip time or a drop."""

    value_ms: float | None  # None indicates a dropped probe
    dropped: bool = False

    def __post_init__(self):
        """Keep value_ms and dropped consistent."""
        if self.dropped:
            self.value_ms = None
        elif self.value_ms is None:
            self.dropped = True


@dataclass
class ThroughputSession:
    """One concurrent transfer stream and its reported rate."""

    host: str
    direction: Direction
    duration: int
    rate_mbps: float | None = None  # None when the session reported nothing

    @property
    def succeeded(self) -> bool:
        return self.rate_mbps is not None


@dataclass(frozen=True)
class LatencyStats:
    count: int
    loss_percent: float
    min: float
    p10: float
    median: float
    avg: float
    p90: float
    max: float


@dataclass(frozen=True)
class ThroughputStats:
    total_rate_mbps: float


@dataclass(frozen=True)
class PhaseReport:
    """Aggregated result of one phase, handed to the reporter."""

    phase: Phase
    latency: LatencyStats
    throughput: ThroughputStats | None = None
