from switchboard.services.firewall.firewall import ConversationalFirewall, FirewallConfig
from switchboard.services.firewall.penalties import PenaltySystem, calculate_block_duration, should_auto_block
from switchboard.services.firewall.rate_limiter import RateLimitCheck, SlidingWindowRateLimiter
from switchboard.services.firewall.types import (
    FirewallAction,
    FirewallResult,
    RateLimitRule,
    Severity,
    Violation,
    ViolationType,
)

__all__ = [
    "ConversationalFirewall",
    "FirewallAction",
    "FirewallConfig",
    "FirewallResult",
    "PenaltySystem",
    "RateLimitCheck",
    "RateLimitRule",
    "Severity",
    "SlidingWindowRateLimiter",
    "Violation",
    "ViolationType",
    "calculate_block_duration",
    "should_auto_block",
]
