"""Conversational firewall: per-sender abuse gate in front of the pipeline."""

import math
import re
import time
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional, Sequence

from switchboard.logging_config import get_logger
from switchboard.services.cache_store import CacheStore
from switchboard.services.firewall.penalties import PenaltySystem
from switchboard.services.firewall.rate_limiter import RateLimitCheck, SlidingWindowRateLimiter
from switchboard.services.firewall.types import (
    SEVERITY_RANK,
    SEVERITY_SCORES,
    FirewallAction,
    FirewallResult,
    RateLimitRule,
    Severity,
    Violation,
    ViolationType,
)

logger = get_logger("firewall")

URL_PATTERN = re.compile(r"https?://[^\s]+", re.IGNORECASE)
RECENT_MESSAGES_TTL_SECONDS = 300

DEFAULT_RATE_LIMIT_RULES = (
    RateLimitRule(window_seconds=10, max_requests=3, block_duration_seconds=30, severity=Severity.MEDIUM),
    RateLimitRule(window_seconds=60, max_requests=8, block_duration_seconds=120, severity=Severity.HIGH),
    RateLimitRule(window_seconds=3600, max_requests=30, block_duration_seconds=300, severity=Severity.HIGH),
    RateLimitRule(window_seconds=86400, max_requests=100, block_duration_seconds=900, severity=Severity.CRITICAL),
)

DEFAULT_SUSPICIOUS_URL_PATTERNS = (
    r"bit\.ly",
    r"tinyurl\.com",
    r"short\.ly",
    r"t\.co/",
    r"\.ru/",
    r"\.cn/",
)

DEFAULT_DENYLIST = (
    "spam",
    "scam",
    "hack",
    "exploit",
    "malware",
    "virus",
    "porn",
    "nude",
    "nsfw",
)

BehaviorCheck = Callable[[str, str], Awaitable[list[Violation]]]


@dataclass
class FirewallConfig:
    enabled: bool = True
    rate_limit_rules: Sequence[RateLimitRule] = DEFAULT_RATE_LIMIT_RULES
    max_repeated_messages: int = 3
    suspicious_url_patterns: Sequence[str] = DEFAULT_SUSPICIOUS_URL_PATTERNS
    denylist: Sequence[str] = DEFAULT_DENYLIST
    min_message_length: int = 1
    max_message_length: int = 2000
    max_risk_score: int = 100

    @classmethod
    def from_settings(cls, settings) -> "FirewallConfig":
        return cls(
            enabled=settings.firewall_enabled,
            max_repeated_messages=settings.firewall_max_repeated_messages,
            min_message_length=settings.firewall_min_message_length,
            max_message_length=settings.firewall_max_message_length,
            max_risk_score=settings.firewall_max_risk_score,
        )


@dataclass
class FirewallStats:
    started_at: float
    total_checked: int = 0
    total_allowed: int = 0
    total_warned: int = 0
    total_blocked: int = 0
    degraded: int = 0
    violations_by_type: dict[str, int] = field(default_factory=dict)


class ConversationalFirewall:
    def __init__(
        self,
        cache: CacheStore,
        config: Optional[FirewallConfig] = None,
        *,
        rate_limiter: Optional[SlidingWindowRateLimiter] = None,
        penalties: Optional[PenaltySystem] = None,
        behavior_checks: Sequence[BehaviorCheck] = (),
        clock: Callable[[], float] = time.time,
    ):
        self.cache = cache
        self.config = config or FirewallConfig()
        self._clock = clock
        self.rate_limiter = rate_limiter or SlidingWindowRateLimiter(cache, self.config.rate_limit_rules, clock=clock)
        self.penalties = penalties or PenaltySystem(cache, clock=clock)
        self.behavior_checks = list(behavior_checks)
        self._url_patterns = [re.compile(p, re.IGNORECASE) for p in self.config.suspicious_url_patterns]
        self.stats = FirewallStats(started_at=clock())

    @staticmethod
    def recent_messages_key(sender_id: str) -> str:
        return f"firewall:user:{sender_id}:recent_messages"

    async def check_message(self, sender_id: str, text: str) -> FirewallResult:
        started = time.perf_counter()
        try:
            result = await self._evaluate(sender_id, text or "")
        except Exception as exc:
            self.stats.degraded += 1
            logger.warning(
                "Firewall degraded, allowing message",
                extra={"context": {"sender_id": sender_id, "error": str(exc)}},
            )
            return FirewallResult(action=FirewallAction.ALLOW, metadata={"sender_id": sender_id, "degraded": True})

        result.metadata.update(
            {
                "sender_id": sender_id,
                "message_length": len(text or ""),
                "processing_time_ms": round((time.perf_counter() - started) * 1000, 2),
                "rules_checked": len(self.rate_limiter.rules),
            }
        )
        self._record_stats(result)
        return result

    async def _evaluate(self, sender_id: str, text: str) -> FirewallResult:
        status = await self.penalties.get_block_status(sender_id)
        if status.is_blocked:
            return FirewallResult(
                action=FirewallAction.BLOCK,
                risk_score=100,
                cooldown_seconds=status.remaining_seconds,
                blocked_reason="Sender is temporarily blocked",
            )

        if not self.config.enabled:
            return FirewallResult(action=FirewallAction.ALLOW)

        violations: list[Violation] = []
        rate_check = await self.rate_limiter.check_limit(sender_id)
        if not rate_check.allowed and rate_check.rule is not None:
            violations.append(
                Violation(
                    type=ViolationType.RATE_LIMIT_EXCEEDED,
                    severity=rate_check.rule.severity,
                    description=(
                        f"{rate_check.request_count} requests in {rate_check.rule.window_seconds}s "
                        f"(limit {rate_check.rule.max_requests})"
                    ),
                )
            )

        violations.extend(await self._check_content(sender_id, text))
        for check in self.behavior_checks:
            violations.extend(await check(sender_id, text))

        risk_score = sum(SEVERITY_SCORES[v.severity] for v in violations)
        action = self._decide(violations, risk_score)
        result = FirewallResult(action=action, violations=violations, risk_score=risk_score)

        if violations:
            violation_count = await self.penalties.increment_violation_count(sender_id)
        else:
            violation_count = 0

        if action == FirewallAction.BLOCK:
            worst = max(violations, key=lambda v: SEVERITY_RANK[v.severity]).severity
            penalty = await self.penalties.apply_penalty(sender_id, worst, violation_count)
            result.cooldown_seconds = self._cooldown(penalty.block_duration_seconds, rate_check)
            result.blocked_reason = violations[0].description
        elif action == FirewallAction.WARN:
            result.warning_message = "Please slow down; further violations will block this conversation"
        else:
            await self.rate_limiter.record_request(sender_id)
        return result

    def _decide(self, violations: list[Violation], risk_score: int) -> FirewallAction:
        if not violations:
            return FirewallAction.ALLOW
        severities = {v.severity for v in violations}
        if Severity.CRITICAL in severities:
            return FirewallAction.BLOCK
        if risk_score >= self.config.max_risk_score:
            return FirewallAction.BLOCK
        if Severity.HIGH in severities:
            return FirewallAction.BLOCK
        if any(v.type == ViolationType.RATE_LIMIT_EXCEEDED for v in violations):
            return FirewallAction.BLOCK
        if Severity.MEDIUM in severities:
            return FirewallAction.WARN
        return FirewallAction.ALLOW

    @staticmethod
    def _cooldown(penalty_seconds: int, rate_check: RateLimitCheck) -> int:
        if penalty_seconds:
            return penalty_seconds
        if not rate_check.allowed:
            return max(1, math.ceil(rate_check.reset_in_seconds))
        return 0

    async def _check_content(self, sender_id: str, text: str) -> list[Violation]:
        violations = []
        length = len(text)
        if length < self.config.min_message_length or length > self.config.max_message_length:
            violations.append(
                Violation(
                    type=ViolationType.ABNORMAL_LENGTH,
                    severity=Severity.MEDIUM,
                    description=f"Message length {length} outside allowed bounds",
                )
            )

        repeated = await self._count_repeats(sender_id, text)
        if repeated >= self.config.max_repeated_messages:
            violations.append(
                Violation(
                    type=ViolationType.REPEATED_MESSAGES,
                    severity=Severity.HIGH,
                    description=f"Same message sent {repeated} times in a row",
                    evidence=text[:100],
                )
            )

        for url in URL_PATTERN.findall(text):
            if any(pattern.search(url) for pattern in self._url_patterns):
                violations.append(
                    Violation(
                        type=ViolationType.SUSPICIOUS_URL,
                        severity=Severity.CRITICAL,
                        description="Suspicious link detected",
                        evidence=url,
                    )
                )
                break

        lowered = text.lower()
        hits = [term for term in self.config.denylist if term in lowered]
        if hits:
            violations.append(
                Violation(
                    type=ViolationType.OFFENSIVE_CONTENT,
                    severity=Severity.HIGH,
                    description="Denylisted terms detected",
                    evidence=", ".join(hits),
                )
            )
        return violations

    async def _count_repeats(self, sender_id: str, text: str) -> int:
        """Length of the run of identical messages ending with this one."""
        key = self.recent_messages_key(sender_id)
        normalized = text.strip().lower()
        limit = max(self.config.max_repeated_messages, 1)
        recent = await self.cache.lrange(key, 0, limit - 1)
        run = 1
        for previous in recent:
            if previous != normalized:
                break
            run += 1
        await self.cache.lpush(key, normalized)
        await self.cache.ltrim(key, 0, limit - 1)
        await self.cache.expire(key, RECENT_MESSAGES_TTL_SECONDS)
        return run

    def _record_stats(self, result: FirewallResult) -> None:
        self.stats.total_checked += 1
        if result.action == FirewallAction.ALLOW:
            self.stats.total_allowed += 1
        elif result.action == FirewallAction.WARN:
            self.stats.total_warned += 1
        else:
            self.stats.total_blocked += 1
        for violation in result.violations:
            key = violation.type.value
            self.stats.violations_by_type[key] = self.stats.violations_by_type.get(key, 0) + 1

    def get_stats(self) -> dict:
        return {
            "total_checked": self.stats.total_checked,
            "total_allowed": self.stats.total_allowed,
            "total_warned": self.stats.total_warned,
            "total_blocked": self.stats.total_blocked,
            "degraded": self.stats.degraded,
            "violations_by_type": dict(self.stats.violations_by_type),
            "uptime_seconds": round(self._clock() - self.stats.started_at, 3),
        }

    async def get_sender_report(self, sender_id: str) -> dict:
        status = await self.penalties.get_block_status(sender_id)
        return {
            "sender_id": sender_id,
            "block": status.to_dict(),
            "rate_limits": await self.rate_limiter.get_sender_usage(sender_id),
        }

    async def unblock_sender(self, sender_id: str) -> None:
        await self.penalties.unblock_sender(sender_id)

    async def reset_low_risk_violations(self, sender_id: str) -> bool:
        return await self.penalties.reset_low_risk_violations(sender_id)

    async def clear_sender_data(self, sender_id: str) -> None:
        await self.penalties.clear_sender_data(sender_id)
        await self.rate_limiter.clear_sender_data(sender_id)
        await self.cache.delete(self.recent_messages_key(sender_id))
