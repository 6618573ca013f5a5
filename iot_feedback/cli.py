"""Command-line interface for iot-feedback."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import Optional

from . import constants
from .app import DeviceApp, IngestApp, run_demo
from .config import ConfigurationError, FeedbackConfig, load_config
from .logging import configure_logging

LOGGER = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="iot-feedback",
        description="Device telemetry fan-out with a remediation feedback loop",
    )
    parser.add_argument(
        "-c",
        "--config",
        type=Path,
        default=constants.DEFAULT_CONFIG_PATH,
        help=f"Path to configuration file (default: {constants.DEFAULT_CONFIG_PATH})",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    simulate = subparsers.add_parser(
        "simulate", help="Run the monitoring device simulator"
    )
    simulate.add_argument("--iot-endpoint", help="IoT broker endpoint")
    simulate.add_argument("--device-id", help="Device ID")
    simulate.add_argument(
        "--min-temp", type=float, help="Minimum environment temperature"
    )
    simulate.add_argument(
        "--min-hum", type=float, help="Minimum environment relative humidity"
    )
    simulate.add_argument(
        "--velocity", type=float, help="Amplitude of the simulated variation"
    )
    simulate.add_argument(
        "--update-frequency",
        type=float,
        help="Seconds between monitoring updates",
    )
    simulate.add_argument(
        "--remediation-factor",
        type=float,
        help="Amplitude of the variation while a remediation is active",
    )
    simulate.add_argument("--log-level", help="Logging level")

    subparsers.add_parser(
        "ingest", help="Fan out device telemetry to metrics, archive and records"
    )

    demo = subparsers.add_parser(
        "demo", help="Run the whole loop in-process without a broker or cloud"
    )
    demo.add_argument("--iterations", type=int, default=5)
    demo.add_argument(
        "--no-remediation",
        action="store_true",
        help="Inspect change batches without emitting commands",
    )

    subparsers.add_parser(
        "show-config", help="Print the resolved configuration and exit"
    )

    return parser


def apply_overrides(config: FeedbackConfig, args: argparse.Namespace) -> None:
    """Apply simulator flags on top of file and environment settings."""

    if getattr(args, "iot_endpoint", None):
        config.broker.host = args.iot_endpoint
        config.raw.set("broker", "host", args.iot_endpoint)
    if getattr(args, "device_id", None):
        config.device.device_id = args.device_id
        config.raw.set("device", "device_id", args.device_id)
    if getattr(args, "log_level", None):
        config.logging.level = args.log_level.upper()
        config.raw.set("logging", "level", config.logging.level)

    for flag, attribute in (
        ("min_temp", "min_temperature"),
        ("min_hum", "min_humidity"),
        ("velocity", "velocity"),
        ("update_frequency", "update_frequency"),
        ("remediation_factor", "remediation_factor"),
    ):
        value = getattr(args, flag, None)
        if value is not None:
            setattr(config.device, attribute, value)
            config.raw.set("device", attribute, str(value))


_SECRET_OPTIONS = {("broker", "password")}


def _mask(value: str, visible: int = 6) -> str:
    if len(value) <= visible:
        return value
    return "*" * 10 + value[-visible:]


def print_setup(config: FeedbackConfig) -> None:
    device = config.device
    print("Setup given:\n")
    print(f"\tiot-endpoint: {_mask(config.broker.host):>16}")
    print(f"\tdevice-id: {device.device_id:>13}")
    print(f"\tmin-temp: {device.min_temperature:11.2f} C")
    print(f"\tmin-hum: {device.min_humidity:13.2f} %")
    print(f"\tvelocity: {device.velocity:14.1f}")
    print(f"\tupdate-frequency: {device.update_frequency:5.1f}s")
    print(f"\tremediation-factor: {device.remediation_factor:4.2f}")
    print(f"\tlog-level: {config.logging.level:>13}\n")


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        config = load_config(args.config)
    except ConfigurationError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1

    apply_overrides(config, args)

    if args.command == "simulate":
        print_setup(config)
        return DeviceApp.start(config)

    if args.command == "ingest":
        return IngestApp.start(config)

    if args.command == "demo":
        configure_logging(config.logging.level, log_network=config.logging.log_network)
        summary = asyncio.run(
            run_demo(
                config,
                iterations=max(1, args.iterations),
                remediation_enabled=not args.no_remediation,
            )
        )
        print(
            f"iterations={summary.iterations} dispatched={summary.dispatched} "
            f"records={summary.stored_records} objects={summary.archived_objects} "
            f"datapoints={summary.datapoints} commands={len(summary.commands)} "
            f"mode={summary.final_mode.value}"
        )
        return 0

    if args.command == "show-config":
        print(f"Configuration loaded from {config.path!s}\n")
        for section in config.raw.sections():
            print(f"[{section}]")
            for key, value in config.raw[section].items():
                if (section, key) in _SECRET_OPTIONS and value:
                    value = "*" * 10
                print(f"{key} = {value}")
            print()
        return 0

    LOGGER.error("Unknown command: %s", args.command)
    return 1


if __name__ == "__main__":
    sys.exit(main())
