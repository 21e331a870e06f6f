#!/usr/bin/env python3
"""
Triage Worker — run stage consumers without the HTTP layer.

Usage:
    # All stages plus the scheduler:
    python scripts/run_worker.py

    # Only the expensive stages, in a separate process:
    python scripts/run_worker.py --stages analysis response --no-scheduler

    # Alternate config:
    python scripts/run_worker.py --config /etc/triage/settings.yaml

Processes sharing the same Redis consumer group split the work between them.
Exactly one process per deployment should run the scheduler.
"""
import asyncio
import os
import signal
import sys
import argparse

# Ensure app root is on path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import structlog

logger = structlog.get_logger()


async def run(stages: list[str], run_scheduler: bool, config_path: str = None):
    from dotenv import load_dotenv
    load_dotenv()

    from config.settings import load_settings
    from utils.logging import configure_logging
    from api.main import build_coordinator

    settings = load_settings(config_path)
    configure_logging(settings.debug)

    coordinator = build_coordinator(settings)
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)

    await coordinator.start(stages=stages, run_scheduler=run_scheduler)
    logger.info("worker_running", stages=stages, scheduler=run_scheduler)
    try:
        await stop.wait()
    finally:
        await coordinator.stop()


def main(argv: list[str] = None):
    parser = argparse.ArgumentParser(description="Run email triage stage workers")
    parser.add_argument("--stages", nargs="+", default=["fetch", "analysis", "response"],
                        choices=["fetch", "analysis", "response"],
                        help="Stages to consume (default: all)")
    parser.add_argument("--no-scheduler", action="store_true",
                        help="Do not fire repeat registrations or promote delayed jobs")
    parser.add_argument("--config", default=None, help="Path to settings YAML")
    args = parser.parse_args(argv)

    asyncio.run(run(args.stages, not args.no_scheduler, args.config))


if __name__ == "__main__":
    main()
