from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


SEVERITY_SCORES = {
    Severity.LOW: 10,
    Severity.MEDIUM: 25,
    Severity.HIGH: 50,
    Severity.CRITICAL: 100,
}

SEVERITY_RANK = {
    Severity.LOW: 0,
    Severity.MEDIUM: 1,
    Severity.HIGH: 2,
    Severity.CRITICAL: 3,
}


class FirewallAction(str, Enum):
    ALLOW = "allow"
    WARN = "warn"
    BLOCK = "block"


class ViolationType(str, Enum):
    RATE_LIMIT_EXCEEDED = "rate_limit_exceeded"
    REPEATED_MESSAGES = "repeated_messages"
    SUSPICIOUS_URL = "suspicious_url"
    OFFENSIVE_CONTENT = "offensive_content"
    ABNORMAL_LENGTH = "abnormal_length"
    SUSPICIOUS_BEHAVIOR = "suspicious_behavior"


class RiskLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


@dataclass(frozen=True)
class RateLimitRule:
    window_seconds: int
    max_requests: int
    block_duration_seconds: int
    severity: Severity


@dataclass
class Violation:
    type: ViolationType
    severity: Severity
    description: str
    evidence: Optional[str] = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type.value,
            "severity": self.severity.value,
            "description": self.description,
            "evidence": self.evidence,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass
class FirewallResult:
    action: FirewallAction
    violations: list[Violation] = field(default_factory=list)
    risk_score: int = 0
    cooldown_seconds: Optional[int] = None
    blocked_reason: Optional[str] = None
    warning_message: Optional[str] = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def allowed(self) -> bool:
        return self.action != FirewallAction.BLOCK

    def to_dict(self) -> dict[str, Any]:
        return {
            "action": self.action.value,
            "violations": [v.to_dict() for v in self.violations],
            "risk_score": self.risk_score,
            "cooldown_seconds": self.cooldown_seconds,
            "blocked_reason": self.blocked_reason,
            "warning_message": self.warning_message,
            "metadata": self.metadata,
        }
