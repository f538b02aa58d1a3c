"""
dispatcher.py: Hands committed outbox records to the durable queue.

Records are submitted in id order. The unit's dispatch cursor moves past a
record only after the queue accepted it (or already knew its key), so a crash
or an unreachable queue leaves everything after the cursor pending.
"""
import time
from typing import Callable, Optional

from feeds.models import OutboxRecord
from feeds.store import EventStore
from utils.environ import (
    DISPATCH_BASE_DELAY_SECONDS,
    DISPATCH_MAX_ATTEMPTS,
    DISPATCH_MAX_DELAY_SECONDS,
)
from utils.error_handling import QueueSubmissionError, retry_with_backoff
from utils.logging import logger
from .job_queue import RedisJobQueue, RetryPolicy, build_idempotency_key


def build_job_payload(record: OutboxRecord) -> dict:
    return {"unit_id": record.unit_id, "event_outbox_id": record.id}


class OutboxDispatcher:

    def __init__(
        self,
        store: EventStore,
        queue: RedisJobQueue,
        retry_policy: Optional[RetryPolicy] = None,
        max_submit_attempts: int = DISPATCH_MAX_ATTEMPTS,
        base_delay: float = DISPATCH_BASE_DELAY_SECONDS,
        max_delay: float = DISPATCH_MAX_DELAY_SECONDS,
        sleep: Callable[[float], None] = time.sleep
    ):
        self.store = store
        self.queue = queue
        self.retry_policy = retry_policy or RetryPolicy()
        self.max_submit_attempts = max_submit_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.sleep = sleep

    # --- dispatch_pending ---
    # Submits every outbox record after the unit's cursor.
    # Args:
    #     unit_id: The unit whose outbox is drained.
    # Returns: Number of records the cursor moved past in this pass.
    def dispatch_pending(self, unit_id: str) -> int:
        cursor = self.store.get_dispatch_cursor(unit_id)
        pending = self.store.list_outbox(unit_id, after_id=cursor)
        if not pending:
            return 0

        dispatched = 0
        for record in pending:
            if not self._submit(record):
                logger.error(
                    f"Queue unavailable, {len(pending) - dispatched} outbox records of unit {unit_id} "
                    f"stay pending after id {cursor}"
                )
                break
            cursor = self.store.set_dispatch_cursor(unit_id, record.id)
            dispatched += 1

        logger.info(f"Dispatched {dispatched}/{len(pending)} outbox records for unit {unit_id}")
        return dispatched

    def _submit(self, record: OutboxRecord) -> bool:
        key = build_idempotency_key(record.unit_id, record.id)
        try:
            accepted = retry_with_backoff(
                lambda: self.queue.submit(key, build_job_payload(record), self.retry_policy),
                max_attempts=self.max_submit_attempts,
                base_delay=self.base_delay,
                max_delay=self.max_delay,
                retry_on=(QueueSubmissionError,),
                sleep=self.sleep,
                description=f"Submitting outbox record {key}",
            )
        except QueueSubmissionError:
            return False

        if not accepted:
            logger.debug(f"Outbox record {key} was already queued")
        return True
