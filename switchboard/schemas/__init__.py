from switchboard.schemas.channel import (
    ActiveChannelsResponse,
    ChannelActionResponse,
    ChannelStatusResponse,
    QRCodeResponse,
    SendMessageRequest,
    SendMessageResponse,
    WebhookAck,
)
from switchboard.schemas.firewall import FirewallStatsResponse, SenderActionResponse, SenderReportResponse

__all__ = [
    "ActiveChannelsResponse",
    "ChannelActionResponse",
    "ChannelStatusResponse",
    "FirewallStatsResponse",
    "QRCodeResponse",
    "SendMessageRequest",
    "SendMessageResponse",
    "SenderActionResponse",
    "SenderReportResponse",
    "WebhookAck",
]
