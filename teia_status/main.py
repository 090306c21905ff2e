from __future__ import annotations

import argparse
import asyncio
import logging
import os

import structlog

from teia_status.config import load_config
from teia_status.scheduler import StatusChecker


def configure_logging(level_name: str) -> None:
    level = getattr(logging, str(level_name).upper(), logging.INFO)
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s %(message)s")
    structlog.configure(
        processors=[
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="ISO"),
            structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )
    # Keep bearer tokens and API keys out of request logs.
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


async def run_once(config_path: str | None) -> int:
    checker = StatusChecker(load_config(config_path))
    try:
        snapshot = await checker.run_cycle()
    finally:
        await checker.stop()
    print(snapshot.text)
    return 0 if all(r.ok for r in snapshot.results) else 1


async def run_forever(config_path: str | None) -> int:
    checker = StatusChecker(load_config(config_path))
    await checker.start_checking()
    try:
        await asyncio.Event().wait()
    finally:
        await checker.stop()
    return 0


def serve(host: str, port: int) -> int:
    import uvicorn

    uvicorn.run("teia_status.app:app", host=host, port=port, log_level="info")
    return 0


def main() -> int:
    parser = argparse.ArgumentParser(description="Teia service status checker")
    parser.add_argument("--config", default=None, help="Path to YAML config (default: packaged config.yaml)")
    parser.add_argument(
        "--log-level",
        default=os.getenv("LOG_LEVEL", "INFO"),
        help="Logging level (INFO, WARNING, ...)",
    )
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument("--once", action="store_true", help="Run one check cycle, print the report and exit")
    mode.add_argument("--serve", action="store_true", help="Serve the report over HTTP at /status")
    parser.add_argument("--host", default="0.0.0.0", help="Bind address for --serve")
    parser.add_argument("--port", type=int, default=int(os.getenv("PORT", "8000")), help="Port for --serve")
    args = parser.parse_args()

    configure_logging(args.log_level)

    if args.serve:
        if args.config:
            os.environ["TEIA_STATUS_CONFIG"] = args.config
        return serve(args.host, args.port)
    if args.once:
        return asyncio.run(run_once(args.config))
    return asyncio.run(run_forever(args.config))


if __name__ == "__main__":
    raise SystemExit(main())
