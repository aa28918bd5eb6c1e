"""Immutable run configuration for betterspeedtest."""

from dataclasses import dataclass, field
from enum import Enum

from betterspeedtest.errors import ConfigError
from betterspeedtest.models import IPVersion, Phase

DEFAULT_HOSTS = ("netperf.bufferbloat.net",)
DEFAULT_DURATION = 60
DEFAULT_IDLE_DURATION = 15
MIN_IDLE_DURATION = 10
DEFAULT_PING_HOST = "gstatic.com"
DEFAULT_SESSIONS = 5

ALL_PHASES = (Phase.IDLE, Phase.DOWNLOAD, Phase.UPLOAD)


class OutputFormat(str, Enum):
    PLAIN = "plain"
    YAML = "yaml"
    PROMETHEUS = "prometheus"


def idle_duration_for(duration: int) -> int:
    """Idle phase length used when the transfer duration is set explicitly."""
    return max(MIN_IDLE_DURATION, duration // 4)


def order_phases(selected) -> tuple[Phase, ...]:
    """Return the selected phases in run order; nothing selected means all."""
    chosen = set(selected)
    if not chosen:
        return ALL_PHASES
    return tuple(phase for phase in ALL_PHASES if phase in chosen)


@dataclass(frozen=True)
class SpeedTestConfig:
    """Settings shared by the controller, sampler and runner.

    Attributes:
        hosts: netperf servers; every one gets ``sessions`` streams
        duration: length of each throughput session in seconds
        idle_duration: length of the idle phase in seconds
        ping_host: target of the latency probe
        sessions: concurrent sessions per host
        ip_version: address family for probes and sessions
        output_format: how phase reports are rendered
        phases: phases to run, in run order
    """

    hosts: tuple[str, ...] = DEFAULT_HOSTS
    duration: int = DEFAULT_DURATION
    idle_duration: int = DEFAULT_IDLE_DURATION
    ping_host: str = DEFAULT_PING_HOST
    sessions: int = DEFAULT_SESSIONS
    ip_version: IPVersion = IPVersion.IPV4
    output_format: OutputFormat = OutputFormat.PLAIN
    phases: tuple[Phase, ...] = field(default=ALL_PHASES)

    def __post_init__(self):
        if not self.hosts:
            raise ConfigError("Missing hostname")
        if any(not host.strip() for host in self.hosts):
            raise ConfigError("Empty hostname in host list")
        if self.duration <= 0:
            raise ConfigError("Duration must be a positive number of seconds")
        if self.idle_duration <= 0:
            raise ConfigError("Idle duration must be a positive number of seconds")
        if not self.ping_host or not self.ping_host.strip():
            raise ConfigError("Missing ping host")
        if self.sessions <= 0:
            raise ConfigError("Number of simultaneous sessions must be positive")
        if not self.phases:
            raise ConfigError("No phases selected")

    @property
    def total_sessions(self) -> int:
        return len(self.hosts) * self.sessions
