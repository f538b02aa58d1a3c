#!/usr/bin/env python3
"""
Ward Calendar Sync - Main Entry Point

Refreshes published ward calendar feeds, drains the change outbox into the
notification queue and runs the webhook delivery worker.

    python main.py refresh <unit_id> [--actor ID] [--reason manual|login|scheduled]
    python main.py refresh-all
    python main.py dispatch <unit_id>
    python main.py worker
    python main.py outbox <unit_id> [--after N]
    python main.py status [unit_id]
"""

import argparse
import json
import signal
import sys
import threading

import redis

from config.unit_config import get_all_unit_ids
from feeds.reconcile import FeedReconciler
from feeds.store import EventStore
from feeds.trigger import refresh_unit
from notifications.dispatcher import OutboxDispatcher
from notifications.job_queue import RedisJobQueue
from notifications.worker import NotificationWorker
from utils.environ import NOTIFICATION_QUEUE_NAME, REDIS_URL
from utils.logging import get_log_file_location, logger


def build_queue() -> RedisJobQueue:
    client = redis.Redis.from_url(REDIS_URL, decode_responses=True)
    return RedisJobQueue(client, NOTIFICATION_QUEUE_NAME)


def cmd_refresh(args, store: EventStore) -> int:
    dispatcher = OutboxDispatcher(store, build_queue()) if args.dispatch else None
    summary = refresh_unit(
        args.unit_id,
        args.actor,
        reason=args.reason,
        reconciler=FeedReconciler(store),
        dispatcher=dispatcher,
    )
    print(json.dumps(summary.to_dict(), indent=2))
    return 2 if summary.rate_limited else 0


def cmd_refresh_all(args, store: EventStore) -> int:
    reconciler = FeedReconciler(store)
    dispatcher = OutboxDispatcher(store, build_queue()) if args.dispatch else None
    for unit_id in get_all_unit_ids():
        summary = refresh_unit(
            unit_id, "scheduler", reason="scheduled", reconciler=reconciler, dispatcher=dispatcher
        )
        print(json.dumps(summary.to_dict()))
    return 0


def cmd_dispatch(args, store: EventStore) -> int:
    dispatched = OutboxDispatcher(store, build_queue()).dispatch_pending(args.unit_id)
    print(f"Dispatched {dispatched} outbox records")
    return 0


def cmd_worker(args, store: EventStore) -> int:
    stop_event = threading.Event()

    def signal_handler(signum, frame):
        logger.info(f"Received signal {signum}, initiating shutdown...")
        stop_event.set()

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    NotificationWorker(store, build_queue()).run_forever(stop_event)
    return 0


def cmd_outbox(args, store: EventStore) -> int:
    for record in store.list_outbox(args.unit_id, after_id=args.after):
        print(json.dumps(record.to_dict()))
    return 0


# --- cmd_status ---
# Prints queue depth, dead-lettered jobs and the log file; with a unit id also
# that unit's dispatch cursor, undispatched outbox records and feed statuses.
def cmd_status(args, store: EventStore) -> int:
    queue = build_queue()
    status = queue.get_stats()
    status["dead_letters"] = queue.dead_letters()
    status["log_file"] = get_log_file_location()

    if args.unit_id:
        cursor = store.get_dispatch_cursor(args.unit_id)
        status["unit"] = {
            "unit_id": args.unit_id,
            "dispatch_cursor": cursor,
            "pending_outbox": len(store.list_outbox(args.unit_id, after_id=cursor)),
            "feeds": {
                feed_id: store.get_feed_status(args.unit_id, feed_id)
                for feed_id in store.list_feed_ids(args.unit_id)
            },
        }

    print(json.dumps(status, indent=2))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Ward calendar feed sync")
    sub = parser.add_subparsers(dest="command", required=True)

    refresh = sub.add_parser("refresh", help="Refresh one unit's feeds")
    refresh.add_argument("unit_id")
    refresh.add_argument("--actor", default="cli", help="Who is asking (rate limit key)")
    refresh.add_argument("--reason", default="manual", choices=["manual", "login", "scheduled"])
    refresh.add_argument("--no-dispatch", dest="dispatch", action="store_false",
                         help="Leave new outbox records for a later dispatch run")
    refresh.set_defaults(func=cmd_refresh)

    refresh_all = sub.add_parser("refresh-all", help="Scheduled refresh of every configured unit")
    refresh_all.add_argument("--no-dispatch", dest="dispatch", action="store_false")
    refresh_all.set_defaults(func=cmd_refresh_all)

    dispatch = sub.add_parser("dispatch", help="Submit pending outbox records to the queue")
    dispatch.add_argument("unit_id")
    dispatch.set_defaults(func=cmd_dispatch)

    worker = sub.add_parser("worker", help="Deliver queued notifications until stopped")
    worker.set_defaults(func=cmd_worker)

    outbox = sub.add_parser("outbox", help="Print outbox records after an id")
    outbox.add_argument("unit_id")
    outbox.add_argument("--after", type=int, default=0)
    outbox.set_defaults(func=cmd_outbox)

    status = sub.add_parser("status", help="Show queue depth, dead letters and unit dispatch state")
    status.add_argument("unit_id", nargs="?")
    status.set_defaults(func=cmd_status)

    return parser


def main(argv=None) -> int:
    """Main application entry point."""
    args = build_parser().parse_args(argv)
    try:
        return args.func(args, EventStore())
    except KeyboardInterrupt:
        logger.info("Stopped by user")
        return 0
    except Exception as e:
        logger.exception(f"Fatal error running {args.command}: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
