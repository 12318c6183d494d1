"""
Redis cache for read-side reports.

Cache-aside: readers go through ``memoize`` and settlement drops the whole
``sales`` module with ``invalidate_module``. Every Redis failure degrades to a
cache miss, so reports keep working (uncached) when Redis is down.
"""
import json
import logging
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Callable, Optional

import redis
from redis.exceptions import RedisError
from flask import Flask, current_app

logger = logging.getLogger(__name__)


def _encode(obj: Any) -> Any:
    """json.dumps default: Decimals keep their exact value."""
    if isinstance(obj, Decimal):
        return {'__decimal__': str(obj)}
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    raise TypeError(f"{type(obj).__name__} is not JSON serializable")


def _decode(dct: dict) -> Any:
    if '__decimal__' in dct:
        return Decimal(dct['__decimal__'])
    return dct


class CacheService:
    """
    Redis-backed cache.

    Keys pattern: {prefix}:{module}:{key}
    """

    def __init__(self, app: Optional[Flask] = None, client: Optional[redis.Redis] = None):
        self.client = client
        self.prefix = 'pdv'
        if app is not None:
            self.init_app(app)

    def init_app(self, app: Flask) -> None:
        self.prefix = app.config.get('CACHE_KEY_PREFIX', 'pdv')
        if not app.config.get('CACHE_ENABLED', True):
            logger.info("[CACHE] Disabled via config")
            return

        redis_url = app.config.get('REDIS_URL', 'redis://redis:6379/0')
        client = redis.from_url(
            redis_url,
            decode_responses=True,
            socket_connect_timeout=3,
            socket_timeout=3,
            health_check_interval=30
        )
        try:
            client.ping()
        except RedisError as e:
            logger.warning(f"[CACHE] Redis unavailable at {redis_url}: {e}. Running without cache.")
            return

        self.client = client
        logger.info(f"[CACHE] Redis connected: {redis_url}")

    def is_available(self) -> bool:
        if self.client is None:
            return False
        try:
            return bool(self.client.ping())
        except RedisError:
            return False

    def build_key(self, module: str, key: str) -> str:
        return f"{self.prefix}:{module}:{key}"

    def get(self, module: str, key: str) -> Optional[Any]:
        if self.client is None:
            return None
        try:
            raw = self.client.get(self.build_key(module, key))
            return None if raw is None else json.loads(raw, object_hook=_decode)
        except (RedisError, ValueError) as e:
            logger.warning(f"[CACHE] Get {module}:{key} failed: {e}")
            return None

    def set(self, module: str, key: str, value: Any, ttl: Optional[int] = None) -> bool:
        if self.client is None:
            return False
        if ttl is None:
            ttl = current_app.config.get('CACHE_DEFAULT_TTL', 60)
        try:
            self.client.setex(self.build_key(module, key), ttl, json.dumps(value, default=_encode))
        except (RedisError, TypeError) as e:
            logger.warning(f"[CACHE] Set {module}:{key} failed: {e}")
            return False
        return True

    def memoize(self, module: str, key: str, loader: Callable[[], Any], ttl: Optional[int] = None) -> Any:
        """Cached value, or ``loader()`` stored for ``ttl`` seconds. Loader errors propagate."""
        cached = self.get(module, key)
        if cached is not None:
            logger.debug(f"[CACHE] HIT {module}:{key}")
            return cached

        value = loader()
        self.set(module, key, value, ttl)
        return value

    def invalidate_module(self, module: str) -> int:
        """Delete every key of ``module``. Returns how many were removed."""
        if self.client is None:
            return 0
        pattern = self.build_key(module, '*')
        try:
            keys = list(self.client.scan_iter(match=pattern, count=100))
            if keys:
                self.client.delete(*keys)
        except RedisError as e:
            logger.warning(f"[CACHE] Invalidate {pattern} failed: {e}")
            return 0

        if keys:
            logger.info(f"[CACHE] INVALIDATE {pattern} ({len(keys)} keys)")
        return len(keys)


_cache_service: Optional[CacheService] = None


def init_cache(app: Flask) -> None:
    """Create the process-wide cache and register it on the app."""
    global _cache_service
    _cache_service = CacheService(app)
    app.extensions['cache'] = _cache_service


def get_cache() -> CacheService:
    if _cache_service is None:
        raise RuntimeError("Cache not initialized.")
    return _cache_service
