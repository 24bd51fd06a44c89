# services/progress.py
import logging
from typing import List, Optional

from paycollect.core.config import settings
from paycollect.models.progress_model import BatchProgress

logger = logging.getLogger("paycollect.progress")

# Owner-checked lease operations run server-side so the check and the act are atomic
_LUA_REFRESH_IF_OWNER = r"""
local key = KEYS[1]
local owner = ARGV[1]
local ttl = tonumber(ARGV[2])

if redis.call("GET", key) == owner then
  redis.call("EXPIRE", key, ttl)
  return 1
end
return 0
"""

_LUA_DELETE_IF_OWNER = r"""
local key = KEYS[1]
local owner = ARGV[1]

if redis.call("GET", key) == owner then
  return redis.call("DEL", key)
end
return 0
"""


class ProgressStore:
    """
    Batch progress and per-operation leases in Redis.

    Progress entries are overwritten whole on every put and expire after the
    TTL as a safety net; an absent key means nothing is in flight. A lease
    names the task that owns an operation so a second trigger cannot clobber
    a running batch's counter.
    """

    def __init__(self, redis_client, ttl: int = None):
        self._redis = redis_client
        self._ttl = ttl or settings.PROGRESS_TTL_SECONDS

    # ---------------------------
    # Keys
    # ---------------------------
    @staticmethod
    def _progress_key(op: str) -> str:
        return f"progress:{op}"

    @staticmethod
    def _lease_key(op: str) -> str:
        return f"lease:{op}"

    @staticmethod
    def _queued_key(op: str) -> str:
        return f"queued:{op}"

    @staticmethod
    def _cancelled_key(op: str) -> str:
        return f"cancelled:{op}"

    # ---------------------------
    # Progress snapshots
    # ---------------------------
    def get(self, op: str) -> Optional[BatchProgress]:
        raw = self._redis.get(self._progress_key(op))
        if not raw:
            return None
        return BatchProgress.model_validate_json(raw)

    def put(self, progress: BatchProgress) -> None:
        self._redis.set(
            self._progress_key(progress.operation_key),
            progress.model_dump_json(),
            ex=self._ttl,
        )

    def delete(self, op: str) -> None:
        self._redis.delete(self._progress_key(op))

    # ---------------------------
    # Leases
    # ---------------------------
    def acquire(self, op: str, owner: str, ttl: int = None) -> bool:
        """
        Take the lease, or renew it if we already hold it (Celery retries
        reuse the task id). Renewal restarts the TTL.
        """
        if self._redis.set(self._lease_key(op), owner, nx=True, ex=ttl or self._ttl):
            return True
        return self.refresh(op, owner, ttl)

    def refresh(self, op: str, owner: str, ttl: int = None) -> bool:
        """Restart the lease TTL; False when `owner` no longer holds it."""
        refreshed = self._redis.eval(
            _LUA_REFRESH_IF_OWNER, 1, self._lease_key(op), owner, str(ttl or self._ttl)
        )
        return bool(refreshed)

    def release(self, op: str, owner: str) -> bool:
        deleted = self._redis.eval(_LUA_DELETE_IF_OWNER, 1, self._lease_key(op), owner)
        return bool(deleted)

    def holder(self, op: str) -> Optional[str]:
        value = self._redis.get(self._lease_key(op))
        if isinstance(value, bytes):
            value = value.decode("utf-8")
        return value

    # ---------------------------
    # Job-side helpers
    # ---------------------------
    def checkpoint(self, progress: BatchProgress, owner: str, lease_ttl: int) -> bool:
        """
        Renew (or retake, if it lapsed) the lease, then publish the snapshot.
        Nothing is written when another run has taken the operation over.
        """
        op = progress.operation_key
        if not self.acquire(op, owner, ttl=lease_ttl):
            logger.warning(f"{op}: lease now held by {self.holder(op)}, {owner} stops publishing progress")
            return False
        self.put(progress)
        return True

    def finish(self, op: str, owner: str) -> None:
        """Clear progress and drop the lease, leaving another run's entry alone."""
        if self.holder(op) in (None, owner):
            self.delete(op)
        self.release(op, owner)

    # ---------------------------
    # Queued task bookkeeping for cancellation
    # ---------------------------
    def register_task(self, op: str, task_id: str) -> None:
        key = self._queued_key(op)
        self._redis.sadd(key, task_id)
        self._redis.expire(key, self._ttl)

    def mark_started(self, op: str, task_id: str) -> None:
        self._redis.srem(self._queued_key(op), task_id)

    def queued_tasks(self, op: str) -> List[str]:
        members = self._redis.smembers(self._queued_key(op)) or set()
        return sorted(m.decode("utf-8") if isinstance(m, bytes) else m for m in members)

    def cancel_queued(self, op: str) -> List[str]:
        """Move every queued task id into the cancelled set and return them."""
        task_ids = self.queued_tasks(op)
        if task_ids:
            key = self._cancelled_key(op)
            self._redis.sadd(key, *task_ids)
            self._redis.expire(key, self._ttl)
        self._redis.delete(self._queued_key(op))
        return task_ids

    def was_cancelled(self, op: str, task_id: str) -> bool:
        return bool(self._redis.sismember(self._cancelled_key(op), task_id))
