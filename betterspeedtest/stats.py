"""Reduction of raw samples and session results into phase statistics.

Percentiles are plain sorted-index selections, not interpolated, so the
figures line up with earlier betterspeedtest output:

    p10    = sorted[floor(n / 10)]
    p90    = sorted[floor(n * 9 / 10)]
    median = sorted[(n + 1) / 2]  (1-indexed) for odd n,
             sorted[n / 2]        (1-indexed) for even n, no averaging

For n below 10 the p10 index collapses to 0, so ``p10 == min``.
"""

from typing import Iterable

from betterspeedtest.models import LatencySample, LatencyStats, ThroughputSession, ThroughputStats


def _lower_median_index(n: int) -> int:
    """0-based index of the median (lower-middle element for even n)."""
    if n % 2 == 1:
        return (n + 1) // 2 - 1
    return n // 2 - 1


def reduce_latency(samples: Iterable[LatencySample]) -> LatencyStats:
    """Reduce a phase's probe samples to order statistics.

    With no valid samples the count is reported as 1 and every order
    statistic as 0.0. Loss is the share of dropped probes among all probes
    that produced a result, so all-dropped is 100% and no probes at all is 0%.
    """
    valid = []
    dropped = 0
    for sample in samples:
        if sample.dropped:
            dropped += 1
        else:
            valid.append(sample.value_ms)

    n = len(valid)
    total = dropped + n
    loss_percent = dropped / total * 100 if total else 0.0

    if n == 0:
        return LatencyStats(
            count=1,
            loss_percent=loss_percent,
            min=0.0,
            p10=0.0,
            median=0.0,
            avg=0.0,
            p90=0.0,
            max=0.0,
        )

    ordered = sorted(valid)
    return LatencyStats(
        count=n,
        loss_percent=loss_percent,
        min=ordered[0],
        p10=ordered[n // 10],
        median=ordered[_lower_median_index(n)],
        avg=sum(ordered) / n,
        p90=ordered[n * 9 // 10],
        max=ordered[n - 1],
    )


def reduce_throughput(sessions: Iterable[ThroughputSession]) -> ThroughputStats:
    """Sum the rates of every session; failed sessions add nothing."""
    total = sum(session.rate_mbps for session in sessions if session.rate_mbps is not None)
    return ThroughputStats(total_rate_mbps=float(total))
