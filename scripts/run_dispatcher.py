#!/usr/bin/env python3
"""
Run the Stream Scene publish dispatcher outside the API process
================================================================
Use this when the API runs with DISPATCHER_ENABLED=false and dispatch is
driven by cron or a separate worker container.

Usage:
    python scripts/run_dispatcher.py --once
    python scripts/run_dispatcher.py [--interval 60] [--batch-size 20]
"""

import argparse
import json
import signal
import threading

from streamscene import models  # noqa: F401  registers tables on Base.metadata
from streamscene.database import Base, engine
from streamscene.logging_config import get_logger
from streamscene.worker.dispatcher import PublishDispatcher

logger = get_logger("dispatcher.cli")


def main():
    parser = argparse.ArgumentParser(description="Publish due Stream Scene posts")
    parser.add_argument(
        "--once",
        action="store_true",
        help="Run a single dispatch cycle and exit"
    )
    parser.add_argument(
        "--interval",
        type=int,
        default=None,
        help="Seconds between cycles (default: DISPATCH_INTERVAL_SECONDS)"
    )
    parser.add_argument(
        "--batch-size",
        type=int,
        default=None,
        help="Max posts per cycle (default: DISPATCH_BATCH_SIZE)"
    )
    args = parser.parse_args()

    Base.metadata.create_all(bind=engine)
    dispatcher = PublishDispatcher(interval_seconds=args.interval, batch_size=args.batch_size)

    if args.once:
        summary = dispatcher.run_once()
        print(json.dumps(summary.to_dict(), indent=2))
        return

    stopped = threading.Event()

    def _signal_handler(signum, frame):
        logger.info("Shutting down dispatcher", signal=signum)
        stopped.set()

    signal.signal(signal.SIGINT, _signal_handler)
    signal.signal(signal.SIGTERM, _signal_handler)

    dispatcher.start_background()
    stopped.wait()
    dispatcher.stop()


if __name__ == "__main__":
    main()
