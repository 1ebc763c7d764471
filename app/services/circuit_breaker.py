"""
Circuit breaker with Redis-backed state, shared by every web and worker process.

One Redis hash per service (cb:{name}) holds both the breaker state and its
health counters. States:
  - CLOSED    → calls pass through
  - OPEN      → too many consecutive failures, calls raise CircuitOpenError
  - HALF_OPEN → reset_timeout elapsed, the next call is a probe

Redis errors never block a call: the breaker reports CLOSED and lets it through.
"""
import logging
import time

from redis.exceptions import RedisError

logger = logging.getLogger('services.circuit_breaker')

CLOSED = 'closed'
OPEN = 'open'
HALF_OPEN = 'half_open'


class CircuitOpenError(Exception):
    """Raised when calling through an open circuit breaker."""
    def __init__(self, name, retry_after=None):
        self.name = name
        self.retry_after = retry_after
        super().__init__(f"Circuit breaker '{name}' is OPEN — service unavailable")


class CircuitBreaker:
    """
    Usage:
        cb = CircuitBreaker('openai', redis_client, failure_threshold=5, reset_timeout=60)
        result = cb.call(client.chat.completions.create, model=..., messages=...)
    """

    PREFIX = 'cb'

    def __init__(self, name, redis_client, failure_threshold=5, reset_timeout=60):
        self.name = name
        self.redis = redis_client
        self.failure_threshold = failure_threshold
        self.reset_timeout = reset_timeout

    @property
    def key(self):
        return f'{self.PREFIX}:{self.name}'

    def _read(self) -> dict:
        try:
            data = self.redis.hgetall(self.key)
        except RedisError:
            return {}
        return data if isinstance(data, dict) else {}

    def _write(self, **fields):
        try:
            self.redis.hset(self.key, mapping={k: str(v) for k, v in fields.items()})
        except RedisError:
            logger.warning("Circuit '%s': could not write state to Redis", self.name)

    @property
    def state(self):
        data = self._read()
        current = data.get('state', CLOSED)
        if current == OPEN and self._seconds_since_open(data) > self.reset_timeout:
            self._write(state=HALF_OPEN)
            return HALF_OPEN
        return current

    @property
    def failure_count(self) -> int:
        return int(self._read().get('failures', 0))

    def _seconds_since_open(self, data) -> float:
        opened_at = data.get('opened_at')
        return time.time() - float(opened_at) if opened_at else float('inf')

    def call(self, func, *args, **kwargs):
        """Execute func through the breaker."""
        data = self._read()
        if data.get('state') == OPEN:
            elapsed = self._seconds_since_open(data)
            if elapsed <= self.reset_timeout:
                raise CircuitOpenError(self.name, retry_after=self.reset_timeout - elapsed)
            self._write(state=HALF_OPEN)

        try:
            result = func(*args, **kwargs)
        except Exception as e:
            self._on_failure(e)
            raise
        self._on_success()
        return result

    def _on_success(self):
        try:
            pipe = self.redis.pipeline()
            pipe.hset(self.key, mapping={'state': CLOSED, 'failures': '0', 'last_success': str(time.time())})
            pipe.hincrby(self.key, 'total_success', 1)
            pipe.execute()
        except RedisError as e:
            logger.warning("Circuit '%s' could not record success: %s", self.name, e)

    def _on_failure(self, error):
        try:
            failures = int(self.redis.hincrby(self.key, 'failures', 1))
            self.redis.hincrby(self.key, 'total_failure', 1)
        except RedisError as e:
            logger.warning("Circuit '%s' could not record failure: %s", self.name, e)
            return
        fields = {'last_failure': time.time(), 'last_error': str(error)[:200]}
        if failures >= self.failure_threshold:
            fields.update(state=OPEN, opened_at=time.time())
            logger.warning("Circuit '%s' OPENED after %d failures: %s", self.name, failures, error)
        else:
            logger.info("Circuit '%s' failure %d/%d: %s", self.name, failures, self.failure_threshold, error)
        self._write(**fields)

    def get_health(self) -> dict:
        data = self._read()
        return {
            'name': self.name,
            'state': self.state,
            'failure_count': int(data.get('failures', 0)),
            'failure_threshold': self.failure_threshold,
            'reset_timeout': self.reset_timeout,
            'total_success': int(data.get('total_success', 0)),
            'total_failure': int(data.get('total_failure', 0)),
            'last_success': float(data['last_success']) if data.get('last_success') else None,
            'last_failure': float(data['last_failure']) if data.get('last_failure') else None,
            'last_error': data.get('last_error', ''),
        }


# ── Global registry ───────────────────────────────────────────────────────

_registry = {}

BREAKER_SETTINGS = {
    'openai': {'failure_threshold': 5, 'reset_timeout': 60},
    'anthropic': {'failure_threshold': 5, 'reset_timeout': 60},
}


def get_breaker(name, redis_client=None):
    """Get or create a named circuit breaker (singleton per name)."""
    if name not in _registry:
        if redis_client is None:
            from app.extensions import redis_client as rc
            redis_client = rc
        _registry[name] = CircuitBreaker(name, redis_client, **BREAKER_SETTINGS.get(name, {}))
    return _registry[name]


def init_breakers(redis_client):
    """Register breakers for every external service the pipeline calls."""
    breakers = {
        name: CircuitBreaker(name, redis_client, **settings)
        for name, settings in BREAKER_SETTINGS.items()
    }
    _registry.update(breakers)
    return breakers


def health_snapshot() -> dict:
    return {name: cb.get_health() for name, cb in sorted(_registry.items())}
