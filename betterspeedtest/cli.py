"""Command-line entry point for betterspeedtest."""

import argparse
import logging
import sys

from betterspeedtest.cancellation import (
    CancellationToken,
    install_signal_handlers,
    restore_signal_handlers,
)
from betterspeedtest.config import (
    DEFAULT_DURATION,
    DEFAULT_HOSTS,
    DEFAULT_IDLE_DURATION,
    DEFAULT_PING_HOST,
    DEFAULT_SESSIONS,
    OutputFormat,
    SpeedTestConfig,
    idle_duration_for,
    order_phases,
)
from betterspeedtest.controller import PhaseController
from betterspeedtest.errors import ConfigError, LaunchFailure, MeasurementCancelled
from betterspeedtest.logging_config import configure_logging
from betterspeedtest.models import IPVersion, Phase
from betterspeedtest.progress import Spinner
from betterspeedtest.reporter import render

logger = logging.getLogger(__name__)


class _ArgumentParser(argparse.ArgumentParser):
    """ArgumentParser that reports bad arguments as ConfigError."""

    def error(self, message):
        raise ConfigError(message)


def build_parser() -> argparse.ArgumentParser:
    parser = _ArgumentParser(
        prog="betterspeedtest",
        description="Measure download/upload speed and latency while the link is loaded.",
    )
    family = parser.add_mutually_exclusive_group()
    family.add_argument(
        "-4",
        dest="ip_version",
        action="store_const",
        const=IPVersion.IPV4,
        help="use IPv4 for pings and netperf (default)",
    )
    family.add_argument(
        "-6",
        dest="ip_version",
        action="store_const",
        const=IPVersion.IPV6,
        help="use IPv6 for pings and netperf",
    )
    parser.add_argument(
        "-H",
        "--hosts",
        default=",".join(DEFAULT_HOSTS),
        help="comma-separated netperf servers (default: %(default)s)",
    )
    parser.add_argument(
        "-t",
        "--time",
        type=int,
        default=None,
        help=f"seconds each direction runs (default: {DEFAULT_DURATION})",
    )
    parser.add_argument(
        "-p",
        "--ping",
        default=DEFAULT_PING_HOST,
        help="host to ping for latency (default: %(default)s)",
    )
    parser.add_argument(
        "-n",
        "--number",
        type=int,
        default=DEFAULT_SESSIONS,
        help="simultaneous sessions per host (default: %(default)s)",
    )
    parser.add_argument(
        "-o",
        "--format",
        choices=[fmt.value for fmt in OutputFormat],
        default=OutputFormat.PLAIN.value,
        help="report format (default: %(default)s)",
    )
    for phase in Phase:
        parser.add_argument(
            f"--{phase.value}",
            dest="phases",
            action="append_const",
            const=phase,
            help=f"run the {phase.value} phase (default: all phases)",
        )
    parser.set_defaults(ip_version=IPVersion.IPV4, phases=[])
    return parser


def parse_config(argv=None, parser: argparse.ArgumentParser | None = None) -> SpeedTestConfig:
    """Turn command-line arguments into a validated SpeedTestConfig.

    Raises:
        ConfigError: an argument is missing or invalid
    """
    parser = parser or build_parser()
    args = parser.parse_args(argv)

    if args.time is None:
        duration, idle_duration = DEFAULT_DURATION, DEFAULT_IDLE_DURATION
    else:
        duration, idle_duration = args.time, idle_duration_for(args.time)

    return SpeedTestConfig(
        hosts=tuple(host.strip() for host in args.hosts.split(",")),
        duration=duration,
        idle_duration=idle_duration,
        ping_host=args.ping,
        sessions=args.number,
        ip_version=args.ip_version,
        output_format=OutputFormat(args.format),
        phases=order_phases(args.phases),
    )


def main(argv=None) -> int:
    configure_logging()
    parser = build_parser()
    try:
        config = parse_config(argv, parser)
    except ConfigError as e:
        parser.print_usage(sys.stderr)
        print(f"{parser.prog}: error: {e}", file=sys.stderr)
        return 1

    logger.info(
        "Testing against %s (%s) with %d sessions per host while pinging %s",
        ", ".join(config.hosts),
        config.ip_version.value,
        config.sessions,
        config.ping_host,
    )

    token = CancellationToken()
    spinner = Spinner(sys.stdout) if config.output_format is OutputFormat.PLAIN else None
    controller = PhaseController(config, token, spinner=spinner)

    previous = install_signal_handlers(token)
    try:
        for report in controller.run():
            sys.stdout.write(render(report, config.output_format))
            sys.stdout.flush()
        # A signal after the last phase finished still ends the run as stopped.
        token.raise_if_cancelled()
    except MeasurementCancelled:
        print("\nStopped")
        return 1
    except LaunchFailure as e:
        logger.error("Aborting run: %s", e)
        print(f"{parser.prog}: error: {e}", file=sys.stderr)
        return 1
    finally:
        restore_signal_handlers(previous)
    return 0


if __name__ == "__main__":
    sys.exit(main())
