"""Escalating penalties and block bookkeeping per sender."""

import math
import time
from dataclasses import dataclass
from typing import Callable, Optional

from switchboard.logging_config import get_logger
from switchboard.services.cache_store import CacheStore
from switchboard.services.firewall.types import RiskLevel, Severity

logger = get_logger("firewall.penalties")

BASE_BLOCK_SECONDS = {
    Severity.LOW: 30,
    Severity.MEDIUM: 120,
    Severity.HIGH: 600,
    Severity.CRITICAL: 1800,
}

MAX_ESCALATION_MULTIPLIER = 5
VIOLATION_TTL_SECONDS = 30 * 24 * 3600


def calculate_block_duration(severity: Severity, violation_count: int) -> int:
    multiplier = min(max(violation_count, 1), MAX_ESCALATION_MULTIPLIER)
    duration = BASE_BLOCK_SECONDS[severity] * multiplier
    if severity == Severity.CRITICAL and violation_count > 2:
        duration *= 2
    return duration


def should_auto_block(severity: Severity, violation_count: int) -> bool:
    if severity in (Severity.CRITICAL, Severity.HIGH):
        return True
    if severity == Severity.MEDIUM:
        return violation_count >= 2
    return violation_count >= 5


def risk_level_for(violation_count: int) -> RiskLevel:
    if violation_count >= 10:
        return RiskLevel.HIGH
    if violation_count >= 5:
        return RiskLevel.MEDIUM
    return RiskLevel.LOW


@dataclass
class PenaltyResult:
    blocked: bool
    block_duration_seconds: int
    violation_count: int
    blocked_until: Optional[float] = None
    next_block_duration_seconds: int = 0


@dataclass
class BlockStatus:
    is_blocked: bool
    blocked_until: Optional[float]
    remaining_seconds: int
    violation_count: int
    risk_level: RiskLevel

    def to_dict(self) -> dict:
        return {
            "is_blocked": self.is_blocked,
            "blocked_until": self.blocked_until,
            "remaining_seconds": self.remaining_seconds,
            "violation_count": self.violation_count,
            "risk_level": self.risk_level.value,
        }


class PenaltySystem:
    def __init__(self, cache: CacheStore, clock: Callable[[], float] = time.time):
        self.cache = cache
        self._clock = clock

    @staticmethod
    def blocked_key(sender_id: str) -> str:
        return f"firewall:user:{sender_id}:blocked_until"

    @staticmethod
    def violations_key(sender_id: str) -> str:
        return f"firewall:user:{sender_id}:violation_count"

    async def apply_penalty(self, sender_id: str, severity: Severity, violation_count: int) -> PenaltyResult:
        duration = calculate_block_duration(severity, violation_count)
        result = PenaltyResult(
            blocked=False,
            block_duration_seconds=0,
            violation_count=violation_count,
            next_block_duration_seconds=calculate_block_duration(severity, violation_count + 1),
        )
        if not should_auto_block(severity, violation_count):
            return result

        result.blocked = True
        result.block_duration_seconds = duration
        result.blocked_until = await self.block_sender(sender_id, duration)
        logger.warning(
            "Sender blocked",
            extra={
                "context": {
                    "sender_id": sender_id,
                    "severity": severity.value,
                    "violation_count": violation_count,
                    "duration_seconds": duration,
                }
            },
        )
        return result

    async def block_sender(self, sender_id: str, duration_seconds: int) -> float:
        """Extend the block; never shortens an existing one."""
        now = self._clock()
        blocked_until = now + duration_seconds
        existing = await self._read_blocked_until(sender_id)
        if existing is not None and existing > blocked_until:
            blocked_until = existing
        await self.cache.set(
            self.blocked_key(sender_id),
            f"{blocked_until:.3f}",
            ttl_seconds=max(blocked_until - now, 1),
        )
        return blocked_until

    async def _read_blocked_until(self, sender_id: str) -> Optional[float]:
        raw = await self.cache.get(self.blocked_key(sender_id))
        if raw is None:
            return None
        try:
            return float(raw)
        except ValueError:
            return None

    async def get_violation_count(self, sender_id: str) -> int:
        raw = await self.cache.get(self.violations_key(sender_id))
        return int(raw) if raw else 0

    async def increment_violation_count(self, sender_id: str) -> int:
        key = self.violations_key(sender_id)
        count = await self.cache.incr(key)
        await self.cache.expire(key, VIOLATION_TTL_SECONDS)
        return count

    async def get_block_status(self, sender_id: str) -> BlockStatus:
        now = self._clock()
        blocked_until = await self._read_blocked_until(sender_id)
        violation_count = await self.get_violation_count(sender_id)
        is_blocked = blocked_until is not None and blocked_until > now
        return BlockStatus(
            is_blocked=is_blocked,
            blocked_until=blocked_until if is_blocked else None,
            remaining_seconds=math.ceil(blocked_until - now) if is_blocked else 0,
            violation_count=violation_count,
            risk_level=risk_level_for(violation_count),
        )

    async def unblock_sender(self, sender_id: str) -> None:
        await self.cache.delete(self.blocked_key(sender_id))
        logger.info(f"Sender unblocked: {sender_id}")

    async def reset_low_risk_violations(self, sender_id: str) -> bool:
        """Clear the counter for senders that are neither blocked nor risky."""
        status = await self.get_block_status(sender_id)
        if status.is_blocked or status.risk_level != RiskLevel.LOW:
            return False
        await self.cache.delete(self.violations_key(sender_id))
        return True

    async def clear_sender_data(self, sender_id: str) -> None:
        await self.cache.delete(self.blocked_key(sender_id), self.violations_key(sender_id))
