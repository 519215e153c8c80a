import time, threading, logging
import redis
from flask import current_app, request
from .errors import RateLimited

logger = logging.getLogger(__name__)

_r = None
_lock = threading.Lock()

class _MemStore:
    def __init__(self):
        self._data = {}
        self._exp = {}
        self._lock = threading.Lock()

    def _cleanup(self):
        now = time.time()
        expired = [k for k, ts in self._exp.items() if ts <= now]
        for k in expired:
            self._data.pop(k, None)
            self._exp.pop(k, None)

    def incr(self, key):
        with self._lock:
            self._cleanup()
            v = int(self._data.get(key, '0')) + 1
            self._data[key] = str(v)
            return v

    def expire(self, key, ttl):
        with self._lock:
            self._cleanup()
            self._exp[key] = time.time() + ttl

def r():
    global _r
    if _r is not None:
        return _r
    with _lock:
        if _r is not None:
            return _r
        # Decide whether to use Redis or memory store
        use_redis = current_app.config.get('USE_REDIS', True)
        url = current_app.config.get('REDIS_URL')
        if use_redis and url:
            try:
                client = redis.from_url(url, decode_responses=True)
                # Test connection once; fallback to memory on failure
                client.ping()
                _set(client)
                return _r
            except redis.RedisError as exc:
                logger.warning('redis unavailable (%s); using in-process rate limit store', exc.__class__.__name__)
        _set(_MemStore())
        return _r

def _set(store):
    global _r
    _r = store

def reset():
    _set(None)

def check_rate_ip(ip: str, scope: str, limit: int, window: int = 60):
    k = f"rl:{scope}:{ip}:{int(time.time()//window)}"
    v = r().incr(k)
    r().expire(k, window)
    if v > limit:
        logger.warning('rate limit exceeded scope=%s', scope)
        raise RateLimited()

def limit_request(scope: str):
    """Apply the per-minute client IP limit to the current request."""
    limit = current_app.config.get('RATE_LIMIT_PER_MINUTE', 30)
    if limit <= 0:
        return
    check_rate_ip(request.remote_addr or '0.0.0.0', scope, limit)
