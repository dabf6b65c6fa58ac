#!/usr/bin/env python3
"""
compl.io Notification Worker

Runs the scheduled notification jobs outside the HTTP cron endpoints,
for deployments without an external scheduler.

Usage:
    python worker.py [--job=deadline-reminders|weekly-digest|all] [--loop] [--interval=S]

Features:
- Runs once by default, or on a fixed interval with --loop
- Jobs run in a thread so the event loop stays responsive to signals
- Graceful shutdown on SIGINT/SIGTERM
"""

import asyncio
import logging
import os
import signal
import sys
import argparse
from datetime import datetime, timezone
from typing import Callable, Dict, List

from complio.notification_jobs import run_deadline_reminders, run_weekly_digest
from complio.supabase_client import get_supabase

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger("complio.worker")

JOBS: Dict[str, Callable] = {
    "deadline-reminders": run_deadline_reminders,
    "weekly-digest": run_weekly_digest,
}


class NotificationWorker:
    """
    Worker that runs notification jobs once or on an interval.
    """

    def __init__(self, job_names: List[str], interval: float = 3600.0, loop: bool = False):
        self.job_names = job_names
        self.interval = interval
        self.loop = loop

        self.supabase = get_supabase()
        self._shutdown_event = asyncio.Event()

        logger.info(f"Worker initialized with jobs={job_names} loop={loop} interval={interval}s")

    async def start(self) -> bool:
        """Run the jobs. Returns False when any run reported an error."""
        if not self.supabase:
            logger.error("Supabase is not configured; set SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY")
            return False

        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self._handle_shutdown)
            except NotImplementedError:
                # Windows doesn't support add_signal_handler
                pass

        ok = True
        while not self._shutdown_event.is_set():
            ok = await self.run_once() and ok
            if not self.loop:
                break

            try:
                await asyncio.wait_for(self._shutdown_event.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                pass

        return ok

    def _handle_shutdown(self):
        logger.info("Worker received shutdown signal")
        self._shutdown_event.set()

    async def run_once(self) -> bool:
        ok = True
        for name in self.job_names:
            if self._shutdown_event.is_set():
                break

            started = datetime.now(timezone.utc)
            logger.info(f"Running job {name}")
            try:
                result = await asyncio.to_thread(JOBS[name], self.supabase)
            except Exception as e:
                logger.error(f"Job {name} failed: {e}")
                ok = False
                continue

            elapsed = (datetime.now(timezone.utc) - started).total_seconds()
            logger.info(f"Job {name} finished in {elapsed:.1f}s: sent={result.get('totalSent', 0)}")
            for error in result.get("errors") or []:
                logger.warning(f"[{name}] {error}")
                ok = False
        return ok


def main():
    """Main entry point for the worker."""
    parser = argparse.ArgumentParser(description="compl.io Notification Worker")
    parser.add_argument(
        "--job", "-j",
        choices=sorted(JOBS) + ["all"],
        default=os.environ.get("WORKER_JOB", "all"),
        help="Job to run (default: all)"
    )
    parser.add_argument(
        "--loop",
        action="store_true",
        help="Keep running the jobs on an interval"
    )
    parser.add_argument(
        "--interval", "-i",
        type=float,
        default=float(os.environ.get("WORKER_INTERVAL", "3600")),
        help="Seconds between runs with --loop (default: 3600)"
    )

    args = parser.parse_args()
    job_names = sorted(JOBS) if args.job == "all" else [args.job]

    worker = NotificationWorker(job_names, interval=args.interval, loop=args.loop)

    try:
        ok = asyncio.run(worker.start())
    except KeyboardInterrupt:
        logger.info("Worker interrupted")
        ok = True

    logger.info("Worker stopped")
    sys.exit(0 if ok else 1)


if __name__ == "__main__":
    main()
