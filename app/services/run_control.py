"""
Redis-backed coordination for the Phase 2 worker.

PauseFlag is the cooperative cancellation token: the API sets it, the worker
checks it between records and stops at the next boundary. The worker lock
guarantees a single live worker per run, which is what makes requeueing
orphaned `processing` rows on resume safe.
"""
import logging

from redis.exceptions import LockError

from app import extensions
from app.config import WORKER_LOCK_TIMEOUT

logger = logging.getLogger('services.run_control')


class PauseFlag:
    """Pause request for one run. Survives worker restarts, cleared on resume."""

    def __init__(self, run_id, redis_client=None):
        self.run_id = run_id
        self._redis = redis_client

    @property
    def redis(self):
        return self._redis or extensions.redis_client

    @property
    def key(self):
        return f'ranking:{self.run_id}:pause'

    def set(self):
        self.redis.set(self.key, '1', ex=86400 * 7)

    def clear(self):
        self.redis.delete(self.key)

    def is_set(self) -> bool:
        return bool(self.redis.exists(self.key))


def worker_lock_key(run_id) -> str:
    return f'ranking:{run_id}:worker'


def worker_lock(run_id, redis_client=None):
    """Non-reentrant Redis lock owned by whichever worker is processing the run."""
    r = redis_client or extensions.redis_client
    return r.lock(worker_lock_key(run_id), timeout=WORKER_LOCK_TIMEOUT)


def is_worker_active(run_id, redis_client=None) -> bool:
    r = redis_client or extensions.redis_client
    return bool(r.exists(worker_lock_key(run_id)))


def release_quietly(lock, run_id):
    """Release a worker lock that may already have expired."""
    try:
        lock.release()
    except LockError:
        logger.warning("Worker lock for run %s expired before release", run_id)


def clear_run_state(run_id, redis_client=None):
    """Drop all Redis keys belonging to a deleted run."""
    r = redis_client or extensions.redis_client
    r.delete(f'ranking:{run_id}:pause', worker_lock_key(run_id))
