"""CLI entry point: ``python -m autoconnect_agent [--dry-run] [--once] ...``."""

from __future__ import annotations

import argparse
import asyncio
import sys

import structlog


def _configure_logging(level: str, fmt: str) -> None:
    """Set up structlog with console or JSON rendering."""
    import logging

    logging.basicConfig(
        format="%(message)s",
        level=getattr(logging, level.upper(), logging.INFO),
        stream=sys.stderr,
    )

    processors: list = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if fmt == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="autoconnect_agent",
        description="Vehicle telemetry and tunnel agent for the AutoConnect API",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        default=None,
        help="Log API payloads locally; never POST them",
    )
    parser.add_argument(
        "--once",
        action="store_true",
        default=False,
        help="Take and emit a single sample then exit",
    )
    parser.add_argument(
        "--no-tunnel",
        action="store_true",
        default=False,
        help="Do not start the tunnel supervisor",
    )
    parser.add_argument(
        "--simulate",
        action="store_true",
        default=False,
        help="Skip adapter discovery and use the simulated vehicle",
    )
    return parser


def main() -> None:
    args = build_parser().parse_args()

    # Load settings from env / .env file first, then override with CLI flags.
    from autoconnect_agent.config import AgentSettings

    settings = AgentSettings()
    if args.dry_run is True:
        settings.dry_run = True
    if args.no_tunnel:
        settings.tunnel_enabled = False
    if args.simulate:
        settings.obd_port = "sim"

    _configure_logging(settings.log_level, settings.log_format)

    logger = structlog.get_logger("autoconnect_agent")
    logger.info(
        "agent_starting",
        version=__import__("autoconnect_agent").__version__,
        mode="simulation" if settings.is_simulation else "discovery",
        dry_run=settings.dry_run,
        once=args.once,
        port=settings.obd_port,
        tunnel=settings.tunnel_enabled,
        client_id=settings.resolved_client_id,
    )

    from autoconnect_agent.agent_loop import run_agent

    try:
        asyncio.run(run_agent(settings, once=args.once))
    except KeyboardInterrupt:
        logger.info("agent_interrupted")
        sys.exit(0)


if __name__ == "__main__":
    main()
