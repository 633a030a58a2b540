"""Sliding-window rate limiter over cache sorted sets.

Each rule keeps one sorted set per sender whose scores are request
timestamps. The check and the record are separate calls, so bursts within
one event-loop tick may be slightly over- or under-counted.
"""

import re
import time
import uuid
from dataclasses import dataclass
from typing import Callable, Optional, Sequence

from switchboard.logging_config import get_logger
from switchboard.services.cache_store import CacheStore
from switchboard.services.firewall.types import RateLimitRule

logger = get_logger("firewall.rate_limiter")

_GLOB_CHARS = re.compile(r"([*?\[])")


@dataclass
class RateLimitCheck:
    allowed: bool
    remaining_requests: int
    reset_in_seconds: float
    rule: Optional[RateLimitRule] = None
    request_count: int = 0


class SlidingWindowRateLimiter:
    def __init__(
        self,
        cache: CacheStore,
        rules: Sequence[RateLimitRule],
        clock: Callable[[], float] = time.time,
    ):
        self.cache = cache
        self.rules = list(rules)
        self._clock = clock

    @staticmethod
    def window_key(sender_id: str, window_seconds: int) -> str:
        return f"ratelimit:user:{sender_id}:window:{window_seconds}s"

    async def check_limit(self, sender_id: str) -> RateLimitCheck:
        """Stops at the first violated rule; otherwise reports the tightest one."""
        now = self._clock()
        most_restrictive: Optional[RateLimitCheck] = None

        for rule in self.rules:
            check = await self._check_rule(sender_id, rule, now)
            if not check.allowed:
                logger.info(
                    "Rate limit exceeded",
                    extra={
                        "context": {
                            "sender_id": sender_id,
                            "window_seconds": rule.window_seconds,
                            "count": check.request_count,
                        }
                    },
                )
                return check
            if most_restrictive is None or check.remaining_requests < most_restrictive.remaining_requests:
                most_restrictive = check

        if most_restrictive is None:
            return RateLimitCheck(allowed=True, remaining_requests=0, reset_in_seconds=0.0)
        return most_restrictive

    async def _check_rule(self, sender_id: str, rule: RateLimitRule, now: float) -> RateLimitCheck:
        key = self.window_key(sender_id, rule.window_seconds)
        entries = await self.cache.zrangebyscore(key, now - rule.window_seconds, now)
        count = len(entries)
        if entries:
            oldest = entries[0][1]
            reset_in = max(0.0, oldest + rule.window_seconds - now)
        else:
            reset_in = float(rule.window_seconds)
        return RateLimitCheck(
            allowed=count < rule.max_requests,
            remaining_requests=max(0, rule.max_requests - count),
            reset_in_seconds=reset_in,
            rule=rule,
            request_count=count,
        )

    async def record_request(self, sender_id: str) -> None:
        now = self._clock()
        member = f"{now:.6f}:{uuid.uuid4().hex[:8]}"
        for rule in self.rules:
            key = self.window_key(sender_id, rule.window_seconds)
            await self.cache.zadd(key, now, member)
            await self.cache.zremrangebyscore(key, float("-inf"), now - rule.window_seconds)
            await self.cache.expire(key, rule.window_seconds * 2)

    async def get_sender_usage(self, sender_id: str) -> list[dict]:
        now = self._clock()
        usage = []
        for rule in self.rules:
            check = await self._check_rule(sender_id, rule, now)
            usage.append(
                {
                    "window_seconds": rule.window_seconds,
                    "max_requests": rule.max_requests,
                    "request_count": check.request_count,
                    "remaining_requests": check.remaining_requests,
                    "reset_in_seconds": round(check.reset_in_seconds, 3),
                }
            )
        return usage

    async def clear_sender_data(self, sender_id: str) -> None:
        """Drop every window for the sender, including ones from rules no longer configured."""
        keys = {self.window_key(sender_id, rule.window_seconds) for rule in self.rules}
        prefix = f"ratelimit:user:{sender_id}:window:"
        pattern = _GLOB_CHARS.sub(r"[\1]", prefix) + "*"
        keys.update(key for key in await self.cache.scan_keys(pattern) if key.startswith(prefix))
        await self.cache.delete(*sorted(keys))
