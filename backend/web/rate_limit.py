"""
Sliding-window rate limiting for API routes.

Named limiters mirror the platform tiers (auth, write, external, general,
form_submit). Two backends share one interface:

- `InMemoryRateLimiter`: per-process, for dev/tests.
- `RedisRateLimiter`: sorted-set sliding window on redis (shared across
  instances). Required in prod-like environments.

Failures fail closed: when the limiter backend errors, `check_rate_limit`
denies the request and logs the cause.
"""
from __future__ import annotations

from collections import deque
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Deque, Dict, Optional, Protocol
from uuid import uuid4
import logging
import math
import time

from fastapi import Request

logger = logging.getLogger("buildflow.rate_limit")


@dataclass(frozen=True)
class LimitRule:
    limit: int
    window_seconds: int
    prefix: str


LIMITS: Dict[str, LimitRule] = {
    "auth": LimitRule(5, 15 * 60, "ratelimit:auth"),
    "write": LimitRule(30, 60, "ratelimit:write"),
    "external": LimitRule(10, 10 * 60, "ratelimit:external"),
    "general": LimitRule(100, 60, "ratelimit:general"),
    "form_submit": LimitRule(5, 60, "ratelimit:formsubmit"),
}


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    limit: int
    remaining: int
    reset_at: float  # epoch seconds

    def retry_after(self, now: float | None = None) -> int:
        now = time.time() if now is None else now
        return max(0, math.ceil(self.reset_at - now))

    def headers(self, now: float | None = None) -> Dict[str, str]:
        reset_iso = datetime.fromtimestamp(self.reset_at, tz=timezone.utc).isoformat().replace("+00:00", "Z")
        return {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": reset_iso,
            "Retry-After": str(self.retry_after(now)),
        }


class RateLimiter(Protocol):
    async def check(self, name: str, identifier: str) -> RateLimitDecision: ...

    async def ping(self) -> None: ...


def _rule(name: str) -> LimitRule:
    try:
        return LIMITS[name]
    except KeyError:
        raise ValueError(f"unknown limiter: {name}") from None


class InMemoryRateLimiter:
    """Per-process sliding-window log. Drained keys are swept every `sweep_interval` seconds."""

    def __init__(self, clock: Callable[[], float] = time.time, sweep_interval: float = 60.0) -> None:
        self._clock = clock
        self._hits: Dict[str, Deque[float]] = {}
        # key -> moment its newest hit leaves the window
        self._expires: Dict[str, float] = {}
        self._sweep_interval = sweep_interval
        self._next_sweep = 0.0

    def _sweep(self, now: float) -> None:
        for key in [k for k, expires_at in self._expires.items() if expires_at <= now]:
            del self._expires[key]
            self._hits.pop(key, None)
        self._next_sweep = now + self._sweep_interval

    async def check(self, name: str, identifier: str) -> RateLimitDecision:
        rule = _rule(name)
        now = self._clock()
        if now >= self._next_sweep:
            self._sweep(now)
        key = f"{rule.prefix}:{identifier}"
        hits = self._hits.setdefault(key, deque())
        while hits and hits[0] <= now - rule.window_seconds:
            hits.popleft()
        if len(hits) >= rule.limit:
            return RateLimitDecision(False, rule.limit, 0, hits[0] + rule.window_seconds)
        hits.append(now)
        self._expires[key] = now + rule.window_seconds
        return RateLimitDecision(True, rule.limit, rule.limit - len(hits), hits[0] + rule.window_seconds)

    def tracked_keys(self) -> int:
        return len(self._hits)

    async def ping(self) -> None:
        return None

    def reset(self) -> None:
        self._hits.clear()
        self._expires.clear()


class RedisRateLimiter:
    """Sliding-window log on a redis sorted set (one member per request)."""

    def __init__(self, client, clock: Callable[[], float] = time.time) -> None:
        self._redis = client
        self._clock = clock

    async def check(self, name: str, identifier: str) -> RateLimitDecision:
        rule = _rule(name)
        now = self._clock()
        key = f"{rule.prefix}:{identifier}"
        member = f"{now:.6f}:{uuid4().hex}"
        async with self._redis.pipeline(transaction=True) as pipe:
            pipe.zremrangebyscore(key, 0, now - rule.window_seconds)
            pipe.zadd(key, {member: now})
            pipe.zcard(key)
            pipe.zrange(key, 0, 0, withscores=True)
            pipe.expire(key, rule.window_seconds)
            _, _, count, oldest, _ = await pipe.execute()
        oldest_score = float(oldest[0][1]) if oldest else now
        reset_at = oldest_score + rule.window_seconds
        if int(count) > rule.limit:
            # Rejected hits do not consume window capacity.
            await self._redis.zrem(key, member)
            return RateLimitDecision(False, rule.limit, 0, reset_at)
        return RateLimitDecision(True, rule.limit, rule.limit - int(count), reset_at)

    async def ping(self) -> None:
        await self._redis.ping()


async def check_rate_limit(limiter: RateLimiter, name: str, identifier: str) -> RateLimitDecision:
    """Check a limiter; backend errors deny the request."""
    try:
        return await limiter.check(name, identifier)
    except Exception as exc:
        logger.error("Rate limit check failed (%s): %s", name, exc.__class__.__name__)
        rule = LIMITS.get(name)
        return RateLimitDecision(False, rule.limit if rule else 0, 0, time.time())


def client_identifier(request: Request, explicit: Optional[str] = None) -> str:
    """Identity id when known, else first X-Forwarded-For hop, X-Real-IP or peer."""
    if explicit:
        return explicit
    fwd = request.headers.get("x-forwarded-for") or ""
    first = fwd.split(",")[0].strip()
    if first:
        return first
    real = (request.headers.get("x-real-ip") or "").strip()
    if real:
        return real
    if request.client and request.client.host:
        return request.client.host
    return "anonymous"
