"""
Command line entry point for one-shot inverter queries.

Subcommands:

- ``discover``: broadcast a discovery request and list responding inverters.
- ``info``: read the device identification block.
- ``read``: read and decode runtime data, optionally filtered and shaped
  (``flat``, ``categorized`` or ``array``).

Connection settings come from GOODWE_* environment variables / .env and can
be overridden per call with ``--host``, ``--port``, ``--protocol``,
``--family``, ``--timeout-ms`` and ``--retries``.  Results are printed to
stdout as JSON; structured JSON logs go to stderr.  Failures print the error
envelope from ``create_error_response`` and exit with status 1.

CHANGELOG:
- 2026-03-14: Reword the discovery help text
- 2026-03-11: Print error envelope and exit 1 on configuration errors
- 2026-03-08: Add --format and --sensor options to read
- 2026-03-02: Initial creation (STORY-111)

TODO:
- None
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from datetime import UTC, datetime
from typing import Any

from pydantic import ValidationError

from goodwe_lan.src.config import ConnectionConfig
from goodwe_lan.src.discovery import DEFAULT_DISCOVERY_TIMEOUT_MS, discover_inverters
from goodwe_lan.src.errors import ConfigurationError, InverterError
from goodwe_lan.src.formatting import OUTPUT_MODES, create_error_response, format_output
from goodwe_lan.src.handler import ProtocolHandler

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Structured JSON logging setup
# ---------------------------------------------------------------------------


def configure_logging(level: int | str = logging.INFO) -> None:
    """Configure structured JSON logging.

    Sets up the root logger with a JSON-formatted handler writing to stderr
    so stdout stays reserved for command output.
    """

    class _JsonFormatter(logging.Formatter):
        """Minimal JSON log formatter."""

        def format(self, record: logging.LogRecord) -> str:
            log_entry = {
                "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
                "level": record.levelname,
                "logger": record.name,
                "msg": record.getMessage(),
            }
            if record.exc_info and record.exc_info[1] is not None:
                log_entry["exception"] = self.formatException(record.exc_info)
            return json.dumps(log_entry)

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(_JsonFormatter())
    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)


def log_config_summary(config: ConnectionConfig) -> None:
    """Log the effective connection settings at startup."""
    logger.info(
        "goodwe-lan starting with config: "
        "host=%s, port=%s, protocol=%s, family=%s, timeout_ms=%s, "
        "retries=%s, comm_addr=%s, backoff_ms=%s, max_backoff_ms=%s",
        config.host,
        config.port,
        config.protocol,
        config.family,
        config.timeout_ms,
        config.retries,
        config.comm_addr,
        config.backoff_ms,
        config.max_backoff_ms,
    )


# ---------------------------------------------------------------------------
# Argument parsing
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="goodwe-lan",
        description="Query GoodWe inverters on the local network.",
    )
    parser.add_argument("--host", help="Inverter IP address or hostname")
    parser.add_argument("--port", type=int, help="Inverter port (default 8899)")
    parser.add_argument("--protocol", help="udp, tcp or modbus")
    parser.add_argument("--family", help="Inverter family code, e.g. ET, DT, ES")
    parser.add_argument("--timeout-ms", type=int, help="Response timeout")
    parser.add_argument("--retries", type=int, help="Retries after a failed attempt")
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=("DEBUG", "INFO", "WARNING", "ERROR"),
        help="Log level for stderr output",
    )

    sub = parser.add_subparsers(dest="command", required=True)

    discover = sub.add_parser("discover", help="Find inverters by broadcast")
    discover.add_argument(
        "--broadcast-address",
        default="255.255.255.255",
        help="Destination of the discovery broadcast",
    )

    sub.add_parser("info", help="Read device identification")

    read = sub.add_parser("read", help="Read runtime data")
    read.add_argument(
        "--format",
        dest="output_format",
        default="flat",
        choices=OUTPUT_MODES,
        help="Output shape",
    )
    read.add_argument(
        "--sensor",
        dest="sensors",
        action="append",
        metavar="ID",
        help="Only report this sensor (repeatable)",
    )
    return parser


def build_config(args: argparse.Namespace) -> ConnectionConfig:
    """Merge CLI overrides onto environment-derived settings."""
    overrides = {
        "host": args.host,
        "port": args.port,
        "protocol": args.protocol,
        "family": args.family,
        "timeout_ms": args.timeout_ms,
        "retries": args.retries,
    }
    return ConnectionConfig(**{k: v for k, v in overrides.items() if v is not None})


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


async def _run_discover(args: argparse.Namespace) -> list[dict[str, Any]]:
    timeout_ms = args.timeout_ms or DEFAULT_DISCOVERY_TIMEOUT_MS
    records = await discover_inverters(
        timeout_ms=timeout_ms,
        broadcast_address=args.broadcast_address,
        port=args.port or 8899,
    )
    return [record.model_dump() for record in records]


async def _run_info(config: ConnectionConfig) -> dict[str, Any]:
    async with ProtocolHandler(config) as handler:
        info = await handler.read_device_info()
    return info.model_dump()


async def _run_read(config: ConnectionConfig, args: argparse.Namespace) -> Any:
    async with ProtocolHandler(config) as handler:
        data = await handler.read_runtime_data(sensors=args.sensors)
    return format_output(data, args.output_format, family=config.family)


async def async_main(argv: list[str] | None = None) -> int:
    """Async entrypoint: parse arguments, run one command, print JSON.

    Returns:
        Process exit status (0 success, 1 failure).
    """
    args = build_parser().parse_args(argv)
    configure_logging(args.log_level)

    try:
        if args.command == "discover":
            result: Any = await _run_discover(args)
        else:
            try:
                config = build_config(args)
            except ValidationError as err:
                raise ConfigurationError(
                    f"Invalid configuration: {err.errors()[0]['msg']}"
                ) from err
            log_config_summary(config)
            if args.command == "info":
                result = await _run_info(config)
            else:
                result = await _run_read(config, args)
    except InverterError as err:
        logger.error("Command '%s' failed: %s", args.command, err)
        print(json.dumps(create_error_response(err, args.command), indent=2))
        return 1

    print(json.dumps(result, indent=2, default=str))
    return 0


def main() -> None:
    """Synchronous entrypoint for the goodwe-lan CLI."""
    sys.exit(asyncio.run(async_main()))


if __name__ == "__main__":
    main()
