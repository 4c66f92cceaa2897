"""Entry point for running FixPilot.

This module provides the ``fixpilot`` command with two subcommands:
- ``daemon``: watch a project directory and serve the event channel
- ``dashboard``: run the dashboard backend (REST API + change stream)

It handles configuration loading, logging setup with secret sanitization
and server startup. Signal handling for graceful shutdown is left to
uvicorn, which runs each app's lifespan on SIGINT/SIGTERM.
"""

import argparse
import sys
from pathlib import Path

import structlog
import uvicorn

from fixpilot._version import __version__

log = structlog.get_logger()


def setup_logging(
    debug: bool = False,
    log_format: str = "console",
    file_path: Path | None = None,
    file_enabled: bool = False,
) -> None:
    """Configure structured logging with secret sanitization.

    Args:
        debug: Enable debug logging if True
        log_format: Output format ("json" or "console")
        file_path: Path to log file (if file logging enabled)
        file_enabled: Whether to enable file logging
    """
    from fixpilot.utils.logging import LogFormat, LogLevel, configure_logging

    level = LogLevel.DEBUG if debug else LogLevel.INFO
    fmt = LogFormat(log_format.lower()) if isinstance(log_format, str) else log_format

    configure_logging(
        level=level,
        log_format=fmt,
        file_path=file_path,
        file_enabled=file_enabled,
    )


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command line arguments.

    Returns:
        Parsed argument namespace
    """
    parser = argparse.ArgumentParser(
        prog="fixpilot",
        description="FixPilot - detect, explain and patch code errors",
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )

    parser.add_argument(
        "-c",
        "--config",
        type=Path,
        default=None,
        help="Path to configuration file (default: built-in defaults + FIXPILOT_* env)",
    )

    parser.add_argument(
        "-d",
        "--debug",
        action="store_true",
        help="Enable debug logging",
    )

    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Parse config and validate without starting a server",
    )

    parser.add_argument(
        "--format",
        choices=["json", "console"],
        default="console",
        help="Log output format (default: console)",
    )

    commands = parser.add_subparsers(dest="command", required=True)

    daemon = commands.add_parser("daemon", help="Watch a project and serve the event channel")
    daemon.add_argument(
        "root",
        type=Path,
        nargs="?",
        default=None,
        help="Directory to watch (default: daemon.root from config)",
    )
    daemon.add_argument("--port", type=int, default=None, help="Override daemon.port")

    dashboard = commands.add_parser("dashboard", help="Run the dashboard backend")
    dashboard.add_argument("--port", type=int, default=None, help="Override dashboard.port")
    dashboard.add_argument(
        "--no-persist",
        action="store_true",
        help="Keep state in memory only",
    )

    return parser.parse_args(argv)


def run(args: argparse.Namespace) -> int:
    """Load configuration and run the selected server.

    Returns:
        Exit code (0 for success, non-zero for error)
    """
    log.info(
        "starting_fixpilot",
        version=__version__,
        command=args.command,
        config_path=str(args.config) if args.config else None,
    )

    try:
        from fixpilot.config.loader import load_config

        config = load_config(args.config)
        log.info("configuration_loaded")

        # Config file settings win over CLI defaults, except --debug
        if args.config is not None:
            from fixpilot.utils.logging import configure_logging

            configure_logging(
                level="DEBUG" if args.debug else config.logging.level,
                log_format=config.logging.format,
                file_path=config.logging.file.path if config.logging.file.enabled else None,
                file_enabled=config.logging.file.enabled,
            )

        if args.command == "daemon":
            if args.root is not None:
                config.daemon.root = args.root
            if not config.daemon.root.is_dir():
                log.error("daemon_root_not_found", root=str(config.daemon.root))
                return 1
            if args.port is not None:
                config.daemon.port = args.port
        elif args.port is not None:
            config.dashboard.port = args.port

        if args.dry_run:
            log.info("dry_run_mode_config_valid")
            return 0

        if args.command == "daemon":
            from fixpilot.service.daemon_app import create_daemon_app

            app = create_daemon_app(config)
            host, port = config.daemon.host, config.daemon.port
        else:
            from fixpilot.service.dashboard_app import build_dashboard, create_dashboard_app

            app = create_dashboard_app(
                config, build_dashboard(config, persist=not args.no_persist)
            )
            host, port = config.dashboard.host, config.dashboard.port

        log.info("serving", command=args.command, host=host, port=port)
        # log_config=None keeps uvicorn from replacing our logging setup
        uvicorn.run(app, host=host, port=port, log_config=None)
        return 0

    except FileNotFoundError as e:
        log.error("configuration_file_not_found", path=str(args.config), error=str(e))
        return 1
    except ValueError as e:
        log.error("configuration_invalid", error=str(e))
        return 1
    except Exception as e:
        log.exception("fatal_error", error=str(e))
        return 1


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    args = parse_args(argv)

    # Setup logging with CLI options
    setup_logging(
        debug=args.debug,
        log_format=args.format,
    )

    try:
        return run(args)
    except KeyboardInterrupt:
        log.info("shutting_down_gracefully")
        return 0


if __name__ == "__main__":
    sys.exit(main())
