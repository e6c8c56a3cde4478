#!/usr/bin/env python3
"""CAMS Scheduler Daemon -- runs due connection-test schedules.

Polls on a fixed interval, picks every enabled schedule whose
``next_run_time`` has passed and executes it.  One failing schedule never
stops the others, and one failing cycle never stops the loop.

Usage:
    python -m cams.scheduling.scheduler_daemon              # Run as daemon
    python -m cams.scheduling.scheduler_daemon --once       # Single pass then exit
    python -m cams.scheduling.scheduler_daemon --status     # Schedules and last results
"""

import argparse
import json
import logging
import signal
import time
from typing import Any, List, Optional

from cams.config import get_config
from cams.db.cams_db import to_iso, utcnow
from cams.scheduling import schedule_service

logger = logging.getLogger("cams.scheduler")

# ---------------------------------------------------------------------------
# Shutdown flag (module-level for signal handler)
# ---------------------------------------------------------------------------
_shutdown_requested = False


def _signal_handler(signum: int, frame: Any) -> None:
    """Handle shutdown signals gracefully."""
    global _shutdown_requested
    logger.info("Received signal %s, initiating graceful shutdown", signum)
    _shutdown_requested = True


def request_shutdown() -> None:
    global _shutdown_requested
    _shutdown_requested = True


# ---------------------------------------------------------------------------
# Scheduling pass
# ---------------------------------------------------------------------------
def run_due_schedules(now=None, db_path=None) -> dict:
    """Execute every enabled schedule that is due at ``now``."""
    now = now or utcnow()
    due = schedule_service.get_due_schedules(now=now, db_path=db_path)
    results = []
    for schedule in due:
        try:
            results.append(schedule_service.execute_schedule(schedule, db_path=db_path))
        except Exception as exc:
            logger.error("Schedule %s failed: %s", schedule["id"], exc)
            results.append({
                "schedule_id": schedule["id"],
                "status": "error",
                "message": str(exc),
            })
    if due:
        logger.info("Scheduler pass: %d schedule(s) run", len(due))
    return {
        "timestamp": to_iso(now),
        "schedules_run": len(due),
        "results": results,
    }


def daemon_loop(interval: Optional[int] = None, db_path=None) -> None:
    """Main polling loop."""
    global _shutdown_requested
    _shutdown_requested = False

    if interval is None:
        interval = int(get_config()["scheduler"]["interval_seconds"])

    signal.signal(signal.SIGINT, _signal_handler)
    try:
        signal.signal(signal.SIGTERM, _signal_handler)
    except (OSError, AttributeError):
        pass  # SIGTERM unavailable on some Windows builds

    logger.info("Scheduler daemon started. Checking every %ss.", interval)

    while not _shutdown_requested:
        try:
            run_due_schedules(db_path=db_path)
        except Exception as exc:
            logger.error("Scheduler cycle failed: %s", exc)

        # Sleep in 1-second increments for responsive shutdown
        for _ in range(interval):
            if _shutdown_requested:
                break
            time.sleep(1)

    logger.info("Scheduler daemon stopped.")


# ---------------------------------------------------------------------------
# Output formatting
# ---------------------------------------------------------------------------
def _format_result(result: dict) -> str:
    status = (result.get("status") or "?").upper()
    return f"[SCHEDULER] {result.get('schedule_id')}: {status} {result.get('message', '')}"


def _format_status_human(schedules: List[dict]) -> str:
    if not schedules:
        return "[SCHEDULER] No schedules configured."
    lines = ["[SCHEDULER] Schedules:", ""]
    for s in schedules:
        enabled = "on " if s["is_enabled"] else "off"
        last = (s.get("last_run_status") or "never").upper()
        lines.append(
            f"  {s['application_name'][:25]:25s} {s['cron_expression']:15s} {enabled} "
            f"last={last:8s} at={s.get('last_run_time') or '-'}  "
            f"next={s.get('next_run_time') or '-'}")
    return "\n".join(lines)


# ---------------------------------------------------------------------------
# CLI entry point
# ---------------------------------------------------------------------------
def main() -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    parser = argparse.ArgumentParser(description="CAMS connection-test scheduler")
    parser.add_argument("--once", action="store_true", help="Single pass, then exit")
    parser.add_argument("--status", action="store_true",
                        help="List schedules and their last result")
    parser.add_argument("--interval", type=int, help="Polling interval in seconds")
    parser.add_argument("--json", action="store_true", dest="json_output", help="JSON output")
    parser.add_argument("--db-path", help="Override DB path")
    args = parser.parse_args()

    if args.status:
        schedules = schedule_service.list_all_schedules(db_path=args.db_path)
        if args.json_output:
            print(json.dumps(schedules, indent=2, default=str))
        else:
            print(_format_status_human(schedules))
        return

    if args.once:
        summary = run_due_schedules(db_path=args.db_path)
        if args.json_output:
            print(json.dumps(summary, indent=2, default=str))
        else:
            for result in summary["results"]:
                print(_format_result(result))
            print(f"\n[SCHEDULER] {summary['schedules_run']} schedule(s) run")
        return

    daemon_loop(interval=args.interval, db_path=args.db_path)


if __name__ == "__main__":
    main()
