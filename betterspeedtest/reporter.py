"""Rendering of phase reports as plain text, YAML or Prometheus text."""

import yaml
from prometheus_client import CollectorRegistry, generate_latest
from prometheus_client.core import GaugeMetricFamily

from betterspeedtest.config import OutputFormat
from betterspeedtest.models import PhaseReport

# (quantile label, LatencyStats attribute)
LATENCY_QUANTILES = (
    ("0", "min"),
    ("0.1", "p10"),
    ("0.5", "median"),
    ("0.9", "p90"),
    ("1", "max"),
)


def render(report: PhaseReport, output_format: OutputFormat) -> str:
    """Render one phase report in the requested format."""
    output_format = OutputFormat(output_format)
    if output_format is OutputFormat.YAML:
        return render_yaml(report)
    if output_format is OutputFormat.PROMETHEUS:
        return render_prometheus(report)
    return render_plain(report)


def render_plain(report: PhaseReport) -> str:
    latency = report.latency
    if report.throughput is not None:
        lines = ["", "%8.8s: %1.2f Mbps" % (report.phase.title, report.throughput.total_rate_mbps)]
    else:
        lines = ["", "%8.8s" % report.phase.title]
    lines += [
        " Latency: (in msec, %d pings, %4.2f%% packet loss)" % (latency.count, latency.loss_percent),
        "     Min: %4.2f" % latency.min,
        "   10pct: %4.2f" % latency.p10,
        "  Median: %4.2f" % latency.median,
        "     Avg: %4.2f" % latency.avg,
        "   90pct: %4.2f" % latency.p90,
        "     Max: %4.2f" % latency.max,
    ]
    return "\n".join(lines) + "\n"


def report_fields(report: PhaseReport) -> dict:
    """Flat field mapping shared by the structured formats."""
    latency = report.latency
    fields = {}
    if report.throughput is not None:
        fields["speed"] = round(report.throughput.total_rate_mbps, 2)
    fields.update(
        {
            "ping-count": latency.count,
            "ping-loss": round(latency.loss_percent, 2),
            "ping-min": round(latency.min, 2),
            "ping-p10": round(latency.p10, 2),
            "ping-med": round(latency.median, 2),
            "ping-avg": round(latency.avg, 2),
            "ping-p90": round(latency.p90, 2),
            "ping-max": round(latency.max, 2),
        }
    )
    return fields


def render_yaml(report: PhaseReport) -> str:
    return yaml.safe_dump(
        {report.phase.value: report_fields(report)},
        default_flow_style=False,
        sort_keys=False,
    )


class PhaseReportCollector:
    """prometheus_client collector exposing a single phase report as gauges."""

    def __init__(self, report: PhaseReport):
        self.report = report

    def collect(self):
        phase = self.report.phase.value
        latency = self.report.latency

        if self.report.throughput is not None:
            yield GaugeMetricFamily(
                f"{phase}_speed_mbps",
                f"Total {phase} throughput across all sessions in Mbps",
                value=self.report.throughput.total_rate_mbps,
            )

        yield GaugeMetricFamily(
            f"{phase}_ping_count",
            f"Valid latency samples during the {phase} phase",
            value=latency.count,
        )
        yield GaugeMetricFamily(
            f"{phase}_ping_loss_percent",
            f"Dropped probes during the {phase} phase in percent",
            value=latency.loss_percent,
        )
        yield GaugeMetricFamily(
            f"{phase}_ping_avg_ms",
            f"Mean round-trip time during the {phase} phase",
            value=latency.avg,
        )

        quantiles = GaugeMetricFamily(
            f"{phase}_ping_latency_ms",
            f"Round-trip time order statistics during the {phase} phase",
            labels=["quantile"],
        )
        for label, attribute in LATENCY_QUANTILES:
            quantiles.add_metric([label], getattr(latency, attribute))
        yield quantiles


def render_prometheus(report: PhaseReport) -> str:
    registry = CollectorRegistry()
    registry.register(PhaseReportCollector(report))
    return generate_latest(registry).decode("utf-8")
