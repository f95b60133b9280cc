from __future__ import annotations

import argparse
import asyncio
import contextlib
import logging
import sys

from hrp_server.common.logging_config import TRACE, configure_logging, enable_trace
from hrp_server.config import ServerConfig
from hrp_server.console import LocalConsole
from hrp_server.constants import LOG_LEVEL
from hrp_server.server import HrpServer


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Bind controllers to HRP robots and publish their joints"
    )
    parser.add_argument(
        "--no-console",
        action="store_true",
        help="Run without the interactive local console",
    )
    parser.add_argument(
        "--no-remote",
        action="store_true",
        help="Do not open the remote (ZeroMQ PAIR) console",
    )
    parser.add_argument("--remote-endpoint", help="Remote console bind endpoint")
    parser.add_argument("--publish-host", help="Host the joint publishers bind to")
    parser.add_argument(
        "--publish-port", type=int, help="First port used by joint publishers"
    )
    parser.add_argument(
        "--period", type=float, help="Control loop period in seconds (default 0.25)"
    )
    parser.add_argument("--robot-protocol", help="Module implementing the HRP protocol")
    parser.add_argument("--driver-package", help="Package holding controller drivers")
    parser.add_argument(
        "--log-level",
        choices=["TRACE", "DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Set log level",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="count",
        default=0,
        help="Increase verbosity; -v=INFO, -vv=DEBUG, -vvv=TRACE",
    )
    parser.add_argument(
        "-q", "--quiet", action="store_true", help="Enable WARNING logging"
    )
    return parser


def resolve_config(args: argparse.Namespace) -> ServerConfig:
    """Environment defaults, overridden by explicit CLI flags."""
    config = ServerConfig.from_env()
    if args.no_console:
        config.with_console = False
    if args.no_remote:
        config.with_remote = False
    if args.remote_endpoint:
        config.remote_endpoint = args.remote_endpoint
    if args.publish_host:
        config.publish_host = args.publish_host
    if args.publish_port is not None:
        config.publish_port = int(args.publish_port)
    if args.period is not None:
        if args.period <= 0:
            raise SystemExit("--period must be > 0")
        config.loop_period_s = float(args.period)
    if args.robot_protocol:
        config.robot_protocol = args.robot_protocol
    if args.driver_package:
        config.driver_package = args.driver_package
    return config


def resolve_log_level(args: argparse.Namespace) -> int:
    # Priority: explicit --log-level > -v/-q > env default from constants
    if args.log_level:
        if args.log_level == "TRACE":
            enable_trace()
            return TRACE
        return getattr(logging, args.log_level)
    if args.verbose >= 3:
        enable_trace()
        return TRACE
    if args.verbose >= 2:
        return logging.DEBUG
    if args.verbose == 1:
        return logging.INFO
    if args.quiet:
        return logging.WARNING
    return LOG_LEVEL


async def run(config: ServerConfig) -> None:
    server = HrpServer(config)
    serve_task = asyncio.create_task(server.serve_forever(), name="hrp-server")
    console_task: asyncio.Task | None = None
    try:
        if config.with_console:
            console = LocalConsole(server)
            console_task = asyncio.create_task(console.run(), name="local-console")
        await serve_task
    finally:
        if console_task is not None and not console_task.done():
            console_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await console_task
        if not serve_task.done():
            serve_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await serve_task


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    level = resolve_log_level(args)
    configure_logging(level)
    config = resolve_config(args)
    logging.info("Remote console: %s", config.remote_endpoint if config.with_remote else "off")
    logging.info(
        "Joint publishers from tcp://%s:%d", config.publish_host, config.publish_port
    )

    try:
        if sys.platform != "win32":
            import uvloop

            uvloop.run(run(config))
        else:
            asyncio.run(run(config))
    except KeyboardInterrupt:
        pass
    return 0


if __name__ == "__main__":
    sys.exit(main())
