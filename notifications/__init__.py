# ╔════════════════════════════════════════════════════════════════════════════╗
# ║                    NOTIFICATIONS PACKAGE INITIALIZER                       ║
# ║                                                                            ║
# ║  Moves outbox records into a durable Redis queue and delivers them to a    ║
# ║  downstream webhook with bounded, idempotent retries.                      ║
# ╚════════════════════════════════════════════════════════════════════════════╝

from .job_queue import (
    RetryPolicy,                # Execution retry policy stored with each job
    DeliveryJob,                # One queued notification
    RedisJobQueue,              # Deduplicating scheduled queue on Redis, with leases
    build_idempotency_key,      # "<unit_id>:<outbox_id>"
)
from .dispatcher import OutboxDispatcher        # Outbox -> queue
from .worker import NotificationWorker          # Queue -> webhook
