"""Phase controller sequencing idle, download and upload measurements."""

import logging
from contextlib import nullcontext
from enum import Enum
from typing import Callable, Iterator, Protocol

from betterspeedtest.cancellation import CancellationToken
from betterspeedtest.config import SpeedTestConfig
from betterspeedtest.errors import MeasurementCancelled
from betterspeedtest.models import (
    Direction,
    LatencySample,
    Phase,
    PhaseReport,
    ThroughputSession,
)
from betterspeedtest.progress import Spinner
from betterspeedtest.runner import ThroughputRunner
from betterspeedtest.sampler import PingSampler
from betterspeedtest.stats import reduce_latency, reduce_throughput

logger = logging.getLogger(__name__)


class LatencySampler(Protocol):
    """Interface of a latency source that runs until told to stop."""

    def start(self) -> None:
        ...

    def stop(self) -> list[LatencySample]:
        ...

    def cancel(self) -> None:
        ...


class SessionRunner(Protocol):
    """Interface of a throughput source that fans out and joins sessions."""

    def run(
        self,
        hosts,
        direction: Direction,
        sessions_per_host: int,
        duration: int,
    ) -> list[ThroughputSession]:
        ...

    def cancel(self) -> None:
        ...


class ControllerState(str, Enum):
    NOT_STARTED = "not_started"
    RUNNING = "running"
    AGGREGATING = "aggregating"
    REPORTED = "reported"
    DONE = "done"
    CANCELLED = "cancelled"


def default_sampler_factory(config: SpeedTestConfig) -> LatencySampler:
    return PingSampler(config.ping_host, config.ip_version)


def default_runner_factory(config: SpeedTestConfig) -> SessionRunner:
    return ThroughputRunner(config.ip_version)


class PhaseController:
    """Runs the configured phases one after another.

    Within a phase the latency sampler runs concurrently with the
    throughput sessions (or with a plain sleep for the idle phase); the
    statistics are reduced only after both have finished. Phases share no
    state: each one gets a fresh sampler and runner from the factories.

    Thread-safety: the controller itself is driven from a single thread;
    only ``token.cancel()`` is expected to arrive from elsewhere.
    """

    def __init__(
        self,
        config: SpeedTestConfig,
        token: CancellationToken | None = None,
        sampler_factory: Callable[[SpeedTestConfig], LatencySampler] = default_sampler_factory,
        runner_factory: Callable[[SpeedTestConfig], SessionRunner] = default_runner_factory,
        spinner: Spinner | None = None,
    ):
        """Initialize the controller.

        Args:
            config: Immutable run configuration
            token: Cancellation token shared with the signal handlers
            sampler_factory: Builds the latency sampler for one phase
            runner_factory: Builds the throughput runner for one phase
            spinner: Optional progress indicator shown while measuring
        """
        self.config = config
        self.token = token if token is not None else CancellationToken()
        self._sampler_factory = sampler_factory
        self._runner_factory = runner_factory
        self._spinner = spinner

        self.state = ControllerState.NOT_STARTED
        self.current_phase: Phase | None = None
        self._completed: list[Phase] = []

    def run(self) -> Iterator[PhaseReport]:
        """Yield one report per configured phase, in run order.

        Raises:
            MeasurementCancelled: the token was cancelled; no report is
                yielded for the interrupted phase
            LaunchFailure: a ping or session process could not start
        """
        for phase in self.config.phases:
            yield self.run_phase(phase)
        self._set_state(ControllerState.DONE, None)

    def run_phase(self, phase: Phase) -> PhaseReport:
        """Measure a single phase and return its aggregated report."""
        self.token.raise_if_cancelled()
        self._set_state(ControllerState.RUNNING, phase)

        sampler = self._sampler_factory(self.config)
        runner = None if phase is Phase.IDLE else self._runner_factory(self.config)
        callbacks = [sampler.cancel] if runner is None else [sampler.cancel, runner.cancel]

        try:
            with self.token.attached(*callbacks), self._spinner_context():
                samples, sessions = self._measure(phase, sampler, runner)
            self.token.raise_if_cancelled()

            self._set_state(ControllerState.AGGREGATING, phase)
            report = PhaseReport(
                phase=phase,
                latency=reduce_latency(samples),
                throughput=None if runner is None else reduce_throughput(sessions),
            )
            # An interrupt during aggregation still discards the phase.
            self.token.raise_if_cancelled()
        except MeasurementCancelled:
            self._set_state(ControllerState.CANCELLED, phase)
            logger.info("Phase %s cancelled", phase.value)
            raise

        self._completed.append(phase)
        self._set_state(ControllerState.REPORTED, phase)
        logger.info(
            "Phase %s finished: %d pings, %d sessions",
            phase.value,
            report.latency.count,
            len(sessions),
        )
        return report

    def get_stats(self) -> dict:
        """Get controller state info.

        Returns:
            Dict with current state, phase and completed phases
        """
        return {
            "state": self.state.value,
            "phase": self.current_phase.value if self.current_phase else None,
            "completed": [phase.value for phase in self._completed],
            "cancelled": self.token.cancelled,
        }

    def _measure(
        self,
        phase: Phase,
        sampler: LatencySampler,
        runner: SessionRunner | None,
    ) -> tuple[list[LatencySample], list[ThroughputSession]]:
        sessions: list[ThroughputSession] = []
        sampler.start()
        try:
            if runner is None:
                logger.info("Idle phase: sampling latency for %ds", self.config.idle_duration)
                if self.token.wait(self.config.idle_duration):
                    raise MeasurementCancelled()
            else:
                sessions = runner.run(
                    self.config.hosts,
                    Direction.for_phase(phase),
                    self.config.sessions,
                    self.config.duration,
                )
        finally:
            samples = sampler.stop()
        return samples, sessions

    def _spinner_context(self):
        if self._spinner is None:
            return nullcontext()
        return self._spinner

    def _set_state(self, state: ControllerState, phase: Phase | None) -> None:
        logger.debug(
            "Controller state: %s -> %s (phase=%s)",
            self.state.value,
            state.value,
            phase.value if phase else None,
        )
        self.state = state
        self.current_phase = phase
