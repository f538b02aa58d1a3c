# ╔════════════════════════════════════════════════════════════════════════════╗
# ║                       DURABLE NOTIFICATION QUEUE                           ║
# ║    Redis-backed delivery jobs, deduplicated by idempotency key, with       ║
# ║    scheduled retries and a dead-letter list for exhausted jobs.            ║
# ╚════════════════════════════════════════════════════════════════════════════╝

"""
job_queue.py: Durable job queue for outbox notifications.

Redis layout for a queue named ``<name>``:

* ``<name>:job:<idempotency_key>``  JSON job record, kept for ``job_ttl`` seconds
* ``<name>:scheduled``              sorted set of idempotency keys by due time
* ``<name>:processing``             sorted set of claimed keys by lease deadline
* ``<name>:dead``                   list of idempotency keys that ran out of attempts

The job record doubles as the idempotency marker: a key that exists is never
scheduled a second time, even after the job has completed.

A claimed job sits in the processing set until the worker completes or
reschedules it. When its lease runs out first (the worker died), the next
claim moves it back to the schedule, so a job is delivered at least once.
"""
import json
import time
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

import redis

from utils.environ import (
    DELIVERY_BACKOFF_SECONDS,
    DELIVERY_MAX_ATTEMPTS,
    DELIVERY_MAX_BACKOFF_SECONDS,
    JOB_LEASE_SECONDS,
    JOB_TTL_SECONDS,
)
from utils.error_handling import QueueSubmissionError, compute_backoff
from utils.logging import logger

JOB_SCHEDULED = "scheduled"
JOB_RUNNING = "running"
JOB_COMPLETED = "completed"
JOB_FAILED = "failed"

# KEYS[1] job record, KEYS[2] schedule
# ARGV[1] job json, ARGV[2] ttl, ARGV[3] due score, ARGV[4] idempotency key
SUBMIT_SCRIPT = """
if redis.call('SET', KEYS[1], ARGV[1], 'NX', 'EX', ARGV[2]) then
    redis.call('ZADD', KEYS[2], ARGV[3], ARGV[4])
    return 1
end
return 0
"""

# KEYS[1] processing, KEYS[2] schedule
# ARGV[1] now
# Returns the number of expired leases put back on the schedule.
REQUEUE_EXPIRED_SCRIPT = """
local expired = redis.call('ZRANGEBYSCORE', KEYS[1], '-inf', ARGV[1])
for _, member in ipairs(expired) do
    redis.call('ZREM', KEYS[1], member)
    redis.call('ZADD', KEYS[2], ARGV[1], member)
end
return #expired
"""

# KEYS[1] schedule, KEYS[2] processing
# ARGV[1] now, ARGV[2] lease deadline
# Returns the claimed idempotency key, or nil when nothing is due.
CLAIM_SCRIPT = """
local due = redis.call('ZRANGEBYSCORE', KEYS[1], '-inf', ARGV[1], 'LIMIT', 0, 1)
if #due == 0 then
    return false
end
redis.call('ZREM', KEYS[1], due[1])
redis.call('ZADD', KEYS[2], ARGV[2], due[1])
return due[1]
"""


def build_idempotency_key(unit_id: str, outbox_id: int) -> str:
    return f"{unit_id}:{outbox_id}"


def _utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _decode(value: Any) -> Any:
    if isinstance(value, bytes):
        return value.decode("utf-8")
    return value

# ╔════════════════════════════════════════════════════════════════════════════╗
# ║ JOB RECORDS                                                                ║
# ╚════════════════════════════════════════════════════════════════════════════╝

@dataclass(frozen=True)
class RetryPolicy:
    """How often and how patiently the queue re-runs a failed job."""
    max_attempts: int = DELIVERY_MAX_ATTEMPTS
    backoff_seconds: float = DELIVERY_BACKOFF_SECONDS
    max_backoff_seconds: float = DELIVERY_MAX_BACKOFF_SECONDS

    def delay_for(self, attempts: int) -> float:
        # attempts already made, so the first retry waits backoff_seconds
        return compute_backoff(attempts - 1, self.backoff_seconds, self.max_backoff_seconds)


@dataclass
class DeliveryJob:
    idempotency_key: str
    payload: Dict[str, Any]
    retry_policy: RetryPolicy = field(default_factory=RetryPolicy)
    attempts: int = 0
    status: str = JOB_SCHEDULED
    last_error: Optional[str] = None
    created_at: str = field(default_factory=_utcnow_iso)
    updated_at: str = field(default_factory=_utcnow_iso)

    def to_json(self) -> str:
        return json.dumps(asdict(self), ensure_ascii=False)

    @classmethod
    def from_json(cls, raw: Any) -> "DeliveryJob":
        data = json.loads(_decode(raw))
        data["retry_policy"] = RetryPolicy(**data.get("retry_policy", {}))
        return cls(**data)

# ╔════════════════════════════════════════════════════════════════════════════╗
# ║ REDIS QUEUE                                                                ║
# ╚════════════════════════════════════════════════════════════════════════════╝

class RedisJobQueue:

    def __init__(
        self,
        redis_client: "redis.Redis",
        queue_name: str,
        job_ttl: int = JOB_TTL_SECONDS,
        lease_seconds: int = JOB_LEASE_SECONDS,
        clock: Callable[[], float] = time.time
    ):
        self.redis = redis_client
        self.queue_name = queue_name
        self.job_ttl = job_ttl
        self.lease_seconds = lease_seconds
        self.clock = clock
        self._submit_script = redis_client.register_script(SUBMIT_SCRIPT)
        self._requeue_script = redis_client.register_script(REQUEUE_EXPIRED_SCRIPT)
        self._claim_script = redis_client.register_script(CLAIM_SCRIPT)

    @property
    def schedule_key(self) -> str:
        return f"{self.queue_name}:scheduled"

    @property
    def processing_key(self) -> str:
        return f"{self.queue_name}:processing"

    @property
    def dead_letter_key(self) -> str:
        return f"{self.queue_name}:dead"

    def job_key(self, idempotency_key: str) -> str:
        return f"{self.queue_name}:job:{idempotency_key}"

    # --- submit ---
    # Stores and schedules a job unless its idempotency key is already known.
    # Args:
    #     idempotency_key: Unique key of the job, e.g. "<unit_id>:<outbox_id>".
    #     payload: JSON-serializable job payload.
    #     retry_policy: Execution retry policy the queue applies to the job.
    # Returns: True if the job was accepted, False if the key already existed.
    # Raises: QueueSubmissionError when Redis cannot be reached.
    def submit(self, idempotency_key: str, payload: Dict[str, Any],
               retry_policy: Optional[RetryPolicy] = None) -> bool:
        job = DeliveryJob(idempotency_key, payload, retry_policy or RetryPolicy())
        try:
            created = self._submit_script(
                keys=[self.job_key(idempotency_key), self.schedule_key],
                args=[job.to_json(), self.job_ttl, self.clock(), idempotency_key],
            )
        except redis.exceptions.RedisError as e:
            raise QueueSubmissionError(f"Queue {self.queue_name} rejected job {idempotency_key}: {e}") from e

        if not created:
            logger.debug(f"Job {idempotency_key} already known to queue {self.queue_name}")
            return False
        logger.debug(f"Queued job {idempotency_key} on {self.queue_name}")
        return True

    def get_job(self, idempotency_key: str) -> Optional[DeliveryJob]:
        raw = self.redis.get(self.job_key(idempotency_key))
        if raw is None:
            return None
        return DeliveryJob.from_json(raw)

    def _save(self, job: DeliveryJob) -> None:
        job.updated_at = _utcnow_iso()
        self.redis.set(self.job_key(job.idempotency_key), job.to_json(), ex=self.job_ttl)

    def _release(self, job: DeliveryJob) -> None:
        self.redis.zrem(self.processing_key, job.idempotency_key)

    # --- requeue_expired ---
    # Puts jobs whose lease ran out back on the schedule, due immediately.
    # Returns: Number of jobs requeued.
    def requeue_expired(self, now: Optional[float] = None) -> int:
        now = self.clock() if now is None else now
        requeued = int(self._requeue_script(keys=[self.processing_key, self.schedule_key], args=[now]) or 0)
        if requeued:
            logger.warning(f"Requeued {requeued} jobs on {self.queue_name} whose lease expired")
        return requeued

    # --- claim_due ---
    # Takes ownership of one job whose due time has passed. The key moves from
    # the schedule to the processing set in one script, so only one worker gets
    # it, and it stays recoverable until complete() or retry_later() runs.
    # Returns: The claimed job (attempts already incremented), or None.
    def claim_due(self, now: Optional[float] = None) -> Optional[DeliveryJob]:
        now = self.clock() if now is None else now
        self.requeue_expired(now)

        while True:
            member = self._claim_script(
                keys=[self.schedule_key, self.processing_key],
                args=[now, now + self.lease_seconds],
            )
            if member is None:
                return None
            key = _decode(member)
            job = self.get_job(key)
            if job is None:
                logger.warning(f"Job {key} expired before it could run, dropping it")
                self.redis.zrem(self.processing_key, key)
                continue
            if job.status in (JOB_COMPLETED, JOB_FAILED):
                # finished, but the worker stopped before releasing its lease
                self._release(job)
                continue
            job.attempts += 1
            job.status = JOB_RUNNING
            self._save(job)
            return job

    def complete(self, job: DeliveryJob) -> None:
        job.status = JOB_COMPLETED
        job.last_error = None
        self._save(job)
        self._release(job)
        logger.debug(f"Job {job.idempotency_key} completed after {job.attempts} attempts")

    # --- retry_later ---
    # Records a failed execution and either reschedules the job with backoff
    # or, once its attempts are used up, moves it to the dead-letter list.
    # Returns: True if the job will run again, False if it was dead-lettered.
    def retry_later(self, job: DeliveryJob, error: str) -> bool:
        job.last_error = error[:500]
        policy = job.retry_policy
        if job.attempts >= policy.max_attempts:
            job.status = JOB_FAILED
            self._save(job)
            self.redis.rpush(self.dead_letter_key, job.idempotency_key)
            self._release(job)
            logger.error(
                f"Job {job.idempotency_key} failed permanently after {job.attempts} attempts: {error}"
            )
            return False

        delay = policy.delay_for(job.attempts)
        job.status = JOB_SCHEDULED
        self._save(job)
        # schedule before release: a crash in between leaves the job in both sets, never in neither
        self.redis.zadd(self.schedule_key, {job.idempotency_key: self.clock() + delay})
        self._release(job)
        logger.warning(
            f"Job {job.idempotency_key} attempt {job.attempts}/{policy.max_attempts} failed, "
            f"retrying in {delay:.1f}s: {error}"
        )
        return True

    # --- get_stats ---
    # Returns: Counts of scheduled, claimed and dead-lettered jobs.
    def get_stats(self) -> Dict[str, Any]:
        return {
            "queue": self.queue_name,
            "scheduled": int(self.redis.zcard(self.schedule_key)),
            "processing": int(self.redis.zcard(self.processing_key)),
            "dead": int(self.redis.llen(self.dead_letter_key)),
        }

    def dead_letters(self) -> List[str]:
        return [_decode(key) for key in self.redis.lrange(self.dead_letter_key, 0, -1)]
