"""
Limitador de peticiones.

Dos implementaciones con la misma interfaz:
- InMemoryRateLimiter: ventana deslizante por key (las keys inactivas se
  purgan cada SWEEP_EVERY llamadas), para una sola instancia
  y para los tests.
- RedisRateLimiter: ventana fija con INCR/EXPIRE, compartida entre
  instancias.

La instancia se elige al arrancar (build_rate_limiter) y se guarda en
app.state, así los tests pueden sustituirla.
"""

import asyncio
import logging
import time
from collections import deque
from collections.abc import Callable

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from app.config import Settings, get_settings

logger = logging.getLogger(__name__)

# Cliente Redis async (singleton)
_redis_client: aioredis.Redis | None = None


def get_redis() -> aioredis.Redis:
    """Obtiene el cliente Redis (lo crea si no existe)."""
    global _redis_client
    if _redis_client is None:
        _redis_client = aioredis.from_url(get_settings().redis_url, decode_responses=True)
    return _redis_client


async def close_redis() -> None:
    global _redis_client
    if _redis_client is not None:
        await _redis_client.aclose()
        _redis_client = None


class RateLimiter:
    """Interfaz común. hit() devuelve 0 si se permite, o los segundos de espera."""

    async def hit(self, key: str, limit: int, window: int) -> int:
        raise NotImplementedError

    async def allow(self, key: str, limit: int, window: int) -> bool:
        return await self.hit(key, limit, window) == 0


class InMemoryRateLimiter(RateLimiter):
    # Cada cuántas llamadas se purgan las keys sin actividad en su ventana
    SWEEP_EVERY = 256

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._hits: dict[str, deque[float]] = {}
        self._windows: dict[str, int] = {}
        self._calls = 0
        self._lock = asyncio.Lock()

    async def hit(self, key: str, limit: int, window: int) -> int:
        now = self._clock()
        async with self._lock:
            self._calls += 1
            if self._calls % self.SWEEP_EVERY == 0:
                self._sweep(now)

            hits = self._hits.setdefault(key, deque())
            self._windows[key] = window
            while hits and hits[0] <= now - window:
                hits.popleft()
            if len(hits) >= limit:
                return max(1, int(hits[0] + window - now) + 1)
            hits.append(now)
            return 0

    def _sweep(self, now: float) -> None:
        stale = [key for key, hits in self._hits.items() if not hits or hits[-1] <= now - self._windows[key]]
        for key in stale:
            del self._hits[key], self._windows[key]
        if stale:
            logger.debug("Rate limit: %s keys inactivas descartadas", len(stale))

    @property
    def tracked_keys(self) -> int:
        return len(self._hits)

    def reset(self) -> None:
        self._hits.clear()
        self._windows.clear()
        self._calls = 0


class RedisRateLimiter(RateLimiter):
    PREFIX = "ventascrm:ratelimit"

    def __init__(self, redis: aioredis.Redis) -> None:
        self.redis = redis

    async def hit(self, key: str, limit: int, window: int) -> int:
        redis_key = f"{self.PREFIX}:{key}"
        try:
            count = await self.redis.incr(redis_key)
            if count == 1:
                await self.redis.expire(redis_key, window)
            if count > limit:
                ttl = await self.redis.ttl(redis_key)
                return ttl if ttl > 0 else window
        except RedisError as e:
            # Sin Redis no se bloquea a nadie
            logger.error("Error en rate limit %s: %s", redis_key, e)
        return 0


def build_rate_limiter(settings: Settings) -> RateLimiter:
    if settings.RATE_LIMIT_BACKEND == "redis":
        logger.info("Rate limit con Redis en %s:%s", settings.REDIS_HOST, settings.REDIS_PORT)
        return RedisRateLimiter(get_redis())
    return InMemoryRateLimiter()
