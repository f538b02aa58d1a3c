# ╔════════════════════════════════════════════════════════════════════════════╗
# ║                         NOTIFICATION WORKER                                ║
# ║    Claims due delivery jobs and posts change notices to the webhook.       ║
# ╚════════════════════════════════════════════════════════════════════════════╝

"""
worker.py: Executes queued delivery jobs.

Every job carries ``{"unit_id", "event_outbox_id"}``; the worker resolves the
outbox record and posts it downstream with the job's idempotency key so the
receiver can drop repeats.
"""
import threading
from typing import Any, Dict, Optional

import redis
import requests

from feeds.models import OutboxRecord
from feeds.store import EventStore
from utils.environ import (
    DELIVERY_TIMEOUT_SECONDS,
    NOTIFICATION_WEBHOOK_URL,
    WORKER_POLL_INTERVAL_SECONDS,
)
from utils.error_handling import DeliveryError, StoreError
from utils.logging import logger
from .job_queue import DeliveryJob, RedisJobQueue


def build_webhook_payload(record: OutboxRecord) -> Dict[str, Any]:
    return {
        "eventOutboxId": record.id,
        "unitId": record.unit_id,
        "eventId": record.event_id,
        "kind": record.kind.value,
        "createdAt": record.created_at.isoformat(),
    }


class NotificationWorker:

    def __init__(
        self,
        store: EventStore,
        queue: RedisJobQueue,
        webhook_url: str = NOTIFICATION_WEBHOOK_URL,
        timeout: float = DELIVERY_TIMEOUT_SECONDS,
        session: Optional[requests.Session] = None
    ):
        self.store = store
        self.queue = queue
        self.webhook_url = webhook_url
        self.timeout = timeout
        self.session = session or requests.Session()

    # --- deliver ---
    # Posts one job's outbox record to the webhook.
    # Raises: DeliveryError if the record is gone or the webhook call fails.
    def deliver(self, job: DeliveryJob) -> None:
        unit_id = job.payload.get("unit_id")
        outbox_id = job.payload.get("event_outbox_id")
        if not unit_id or outbox_id is None:
            raise DeliveryError(f"Malformed job payload: {job.payload}")
        try:
            outbox_id = int(outbox_id)
        except (TypeError, ValueError) as e:
            raise DeliveryError(f"Malformed outbox id in job payload: {job.payload}") from e

        try:
            record = self.store.get_outbox_record(unit_id, outbox_id)
        except StoreError as e:
            raise DeliveryError(f"Could not read outbox of unit {unit_id}: {e}") from e
        if record is None:
            raise DeliveryError(f"Outbox record {outbox_id} of unit {unit_id} not found")

        try:
            response = self.session.post(
                self.webhook_url,
                json=build_webhook_payload(record),
                headers={"Idempotency-Key": job.idempotency_key},
                timeout=self.timeout,
            )
            response.raise_for_status()
        except requests.exceptions.RequestException as e:
            raise DeliveryError(f"Webhook delivery failed: {e}") from e

    # --- run_once ---
    # Claims and runs at most one due job.
    # Returns: None if nothing was due, True if delivered, False if it failed.
    def run_once(self, now: Optional[float] = None) -> Optional[bool]:
        job = self.queue.claim_due(now)
        if job is None:
            return None

        try:
            self.deliver(job)
        except DeliveryError as e:
            self.queue.retry_later(job, str(e))
            return False

        self.queue.complete(job)
        logger.info(f"Delivered notification {job.idempotency_key}")
        return True

    # --- run_forever ---
    # Polls the queue until stop_event is set. Sleeps only when nothing was due.
    def run_forever(self, stop_event: Optional[threading.Event] = None,
                    poll_interval: float = WORKER_POLL_INTERVAL_SECONDS) -> None:
        stop_event = stop_event or threading.Event()
        logger.info(f"Notification worker started on queue {self.queue.queue_name}")
        while not stop_event.is_set():
            try:
                if self.run_once() is not None:
                    continue
            except redis.exceptions.RedisError as e:
                logger.error(f"Queue error in notification worker: {e}")
            except Exception as e:
                logger.exception(f"Unexpected error in notification worker, continuing: {e}")
            stop_event.wait(poll_interval)
        logger.info("Notification worker stopped")
