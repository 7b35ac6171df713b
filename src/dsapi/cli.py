"""Dataset API command-line interface.

Usage:
    python -m dsapi serve [--config PATH]
    python -m dsapi check-config [--config PATH]

Exit codes:
    0: Server exited cleanly / configuration is valid
    1: Configuration error or unexpected failure
"""

from __future__ import annotations

import argparse
import logging
import sys
import threading

import uvicorn

from dsapi.config import DEFAULT_CONFIG_PATH, DSAPI_CONFIG_ENV, Config, ConfigError, load_config

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

#: Idle keep-alive timeout for client connections (seconds).
KEEP_ALIVE_TIMEOUT = 15


def configure_logging(level: str = "info") -> None:
    """Install the root log handler at the configured level.

    Unknown level names fall back to INFO.
    """
    numeric = logging.getLevelName(level.upper())
    if not isinstance(numeric, int):
        numeric = logging.INFO
    logging.basicConfig(level=numeric, format=LOG_FORMAT, force=True)


def cmd_serve(args: argparse.Namespace) -> int:
    """Load the configuration, build the tenants and run the HTTP server."""
    from dsapi.api.main import create_app
    from dsapi.dataset.service import build_services

    config = _load(args)
    if config is None:
        return 1

    configure_logging(config.log_level)
    logger.info(
        "starting dataset api version %s%s (%s)",
        config.version.version,
        config.version.prerelease,
        config.version.git_hash,
    )

    try:
        host, port = config.listen_host_port()
    except ConfigError as e:
        logger.error("%s", e)
        return 1

    shutdown = threading.Event()
    try:
        services = build_services(config, cancel=shutdown)
    except ConfigError as e:
        logger.error("failed to create services: %s", e)
        return 1

    app = create_app(services=services, config=config, shutdown=shutdown)

    logger.info("listening on %s:%d", host, port)
    try:
        uvicorn.run(app, host=host, port=port, timeout_keep_alive=KEEP_ALIVE_TIMEOUT)
    finally:
        shutdown.set()
    return 0


def cmd_check_config(args: argparse.Namespace) -> int:
    """Validate the configuration file and report the configured tenants."""
    config = _load(args)
    if config is None:
        return 1

    print(f"configuration ok: org={config.org} accounts={','.join(sorted(config.accounts))}")
    return 0


def _load(args: argparse.Namespace) -> Config | None:
    try:
        return load_config(args.config)
    except ConfigError as e:
        print(f"unable to load configuration: {e}", file=sys.stderr)
        return None


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog="dsapi",
        description="Dataset API - multi-tenant dataset control plane",
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    for name, help_text in [
        ("serve", "Run the HTTP API server"),
        ("check-config", "Validate the configuration file and exit"),
    ]:
        sub = subparsers.add_parser(name, help=help_text)
        sub.add_argument(
            "--config",
            default=None,
            metavar="PATH",
            help=f"Configuration file (default: ${DSAPI_CONFIG_ENV} or {DEFAULT_CONFIG_PATH})",
        )

    return parser


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    parser = create_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    try:
        if args.command == "serve":
            return cmd_serve(args)
        if args.command == "check-config":
            return cmd_check_config(args)
    except Exception as e:
        logger.exception("unexpected failure: %s", e)
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
