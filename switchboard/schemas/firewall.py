from typing import Optional

from pydantic import BaseModel


class SenderReportResponse(BaseModel):
    sender_id: str
    block: dict
    rate_limits: list[dict]


class FirewallStatsResponse(BaseModel):
    total_checked: int
    total_allowed: int
    total_warned: int
    total_blocked: int
    degraded: int
    violations_by_type: dict[str, int]
    uptime_seconds: float


class SenderActionResponse(BaseModel):
    success: bool
    sender_id: str
    message: Optional[str] = None
