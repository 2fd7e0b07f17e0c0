"""Application entry point and CLI for disk-probe.

This module parses command-line arguments, loads configuration, sets up
logging, and runs the coordinator until SIGINT or SIGTERM requests a
graceful shutdown.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys
from collections.abc import Mapping, Sequence
from pathlib import Path
from typing import NoReturn

from disk_probe.core.config import (
    ConfigurationError,
    EnvironmentVariableError,
    ProbeConfig,
    load_config,
)
from disk_probe.core.coordinator import Coordinator
from disk_probe.utils.logging import configure_logging

__all__ = ["main"]

# Exit codes
EXIT_SUCCESS = 0
EXIT_CONFIG_ERROR = 1
EXIT_RUNTIME_ERROR = 1


def parse_arguments(argv: Sequence[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments for disk-probe.

    Args:
        argv: Argument list, defaults to ``sys.argv[1:]``

    Returns:
        Parsed arguments namespace; unset options are None so the
        configuration file value (or default) applies
    """
    parser = argparse.ArgumentParser(
        prog="disk-probe",
        description="Serve an HTTP health check reporting whether a path's disk usage is under a threshold",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  disk-probe --path /mnt/storage --threshold 107400000000
  disk-probe --config /etc/disk-probe.yaml
  disk-probe --addr 127.0.0.1:9000 --override --log-level DEBUG
        """,
    )

    _ = parser.add_argument(
        "--config",
        "-c",
        type=Path,
        default=None,
        help="Path to YAML configuration file (default: built-in defaults)",
        metavar="PATH",
    )

    _ = parser.add_argument(
        "--path",
        type=str,
        help="The path to query for disk usage",
        metavar="PATH",
    )

    _ = parser.add_argument(
        "--threshold",
        type=int,
        help="Threshold in bytes to start serving 500s over HTTP",
        metavar="BYTES",
    )

    _ = parser.add_argument(
        "--addr",
        type=str,
        help="Listen address for HTTP (default: :8080)",
        metavar="HOST:PORT",
    )

    _ = parser.add_argument(
        "--override",
        action="store_const",
        const=True,
        default=None,
        help="Answer 200 even when usage exceeds the threshold",
    )

    _ = parser.add_argument(
        "--pollers",
        type=int,
        help="Number of concurrent poller workers",
        metavar="N",
    )

    _ = parser.add_argument(
        "--backend",
        type=str,
        choices=["du", "walk"],
        help="Measurement backend (default: du)",
    )

    _ = parser.add_argument(
        "--log-level",
        type=str,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Override log level from configuration",
        metavar="LEVEL",
    )

    _ = parser.add_argument(
        "--no-syslog",
        action="store_true",
        help="Disable syslog integration (useful for development)",
    )

    return parser.parse_args(argv)


def build_overrides(args: argparse.Namespace) -> dict[str, Mapping[str, object]]:
    """Map parsed CLI arguments onto configuration sections.

    Options left unset map to None and are ignored by ``load_config``.
    """
    # Extract with explicit annotations at the argparse boundary
    path: str | None = args.path  # pyright: ignore[reportAny]  # argparse boundary
    threshold: int | None = args.threshold  # pyright: ignore[reportAny]  # argparse boundary
    addr: str | None = args.addr  # pyright: ignore[reportAny]  # argparse boundary
    override: bool | None = args.override  # pyright: ignore[reportAny]  # argparse boundary
    pollers: int | None = args.pollers  # pyright: ignore[reportAny]  # argparse boundary
    backend: str | None = args.backend  # pyright: ignore[reportAny]  # argparse boundary
    log_level: str | None = args.log_level  # pyright: ignore[reportAny]  # argparse boundary
    no_syslog: bool = args.no_syslog  # pyright: ignore[reportAny]  # argparse boundary

    return {
        "probe": {"path": path, "threshold_bytes": threshold, "override": override},
        "monitoring": {"pollers": pollers, "backend": backend},
        "http": {"listen_address": addr},
        "application": {"log_level": log_level, "syslog_enabled": False if no_syslog else None},
    }


async def async_main(config: ProbeConfig) -> None:
    """Run the coordinator until a shutdown signal arrives.

    Args:
        config: Validated application configuration

    Raises:
        RuntimeError: If the pipeline fails (for example the HTTP bind)
    """
    logger = logging.getLogger(__name__)
    logger.info("Disk-probe starting")

    coordinator = Coordinator(config=config)

    def request_shutdown() -> None:
        logger.info("Shutdown signal received, requesting graceful shutdown")
        coordinator.request_shutdown()

    loop = asyncio.get_running_loop()

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, request_shutdown)

    try:
        await coordinator.start()

    except Exception as exc:
        logger.exception(
            "Coordinator failed during execution",
            extra={"error": str(exc)},
        )
        raise

    finally:
        for sig in (signal.SIGINT, signal.SIGTERM):
            _ = loop.remove_signal_handler(sig)

        logger.info("Disk-probe shutdown complete")


def main(argv: Sequence[str] | None = None) -> NoReturn:
    """Main entry point for disk-probe.

    Exit Codes:
        0: Clean shutdown
        1: Configuration error or runtime error
    """
    args = parse_arguments(argv)
    config_path: Path | None = args.config  # pyright: ignore[reportAny]  # argparse boundary

    try:
        config = load_config(config_path, overrides=build_overrides(args))

        configure_logging(
            log_level=config.application.log_level,
            enable_syslog=config.application.syslog_enabled,
            enable_console=True,
        )

        asyncio.run(async_main(config))

    except ConfigurationError as exc:
        print(f"Configuration error:\n{exc}", file=sys.stderr)
        sys.exit(EXIT_CONFIG_ERROR)

    except EnvironmentVariableError as exc:
        print(f"Environment variable error:\n{exc}", file=sys.stderr)
        sys.exit(EXIT_CONFIG_ERROR)

    except RuntimeError as exc:
        print(f"Runtime error: {exc}", file=sys.stderr)
        sys.exit(EXIT_RUNTIME_ERROR)

    except KeyboardInterrupt:
        print("\nShutdown complete", file=sys.stderr)
        sys.exit(EXIT_SUCCESS)

    except Exception as exc:
        print(f"Unexpected error: {exc}", file=sys.stderr)
        logging.exception("Unexpected error during application execution")
        sys.exit(EXIT_RUNTIME_ERROR)

    sys.exit(EXIT_SUCCESS)


if __name__ == "__main__":
    main()
