from typing import Any

from switchboard.entities import Channel, ChannelProvider
from switchboard.errors import ChannelUnsupportedError
from switchboard.services.drivers.base import (
    ChannelDriver,
    DriverEvent,
    DriverResponse,
    InboundMessage,
    OutboundMessage,
)
from switchboard.services.drivers.cloud_api import CloudApiDriver
from switchboard.services.drivers.whatsapp_web import WhatsAppWebDriver

PROVIDER_ALIASES = {
    "whatsapp_web": ChannelProvider.WHATSAPP_WEB,
    "whatsapp": ChannelProvider.WHATSAPP_WEB,
    "custom": ChannelProvider.WHATSAPP_WEB,
    "default": ChannelProvider.WHATSAPP_WEB,
    "meta": ChannelProvider.META,
}


def normalize_provider(provider: str) -> ChannelProvider:
    try:
        return PROVIDER_ALIASES[(provider or "").strip().lower()]
    except KeyError:
        raise ChannelUnsupportedError(f"Provider not supported: {provider}") from None


def build_driver(channel: Channel, settings, **kwargs: Any) -> ChannelDriver:
    """Construct the driver for a channel's provider with handlers wired in."""
    provider = normalize_provider(channel.provider)
    if provider == ChannelProvider.WHATSAPP_WEB:
        return WhatsAppWebDriver(
            channel,
            bridge_url=channel.config.get("bridge_url") or settings.whatsapp_bridge_url,
            api_key=settings.whatsapp_bridge_api_key,
            qr_timeout_seconds=settings.whatsapp_qr_timeout_seconds,
            **kwargs,
        )
    return CloudApiDriver(channel, graph_api_url=settings.meta_graph_api_url, **kwargs)


__all__ = [
    "ChannelDriver",
    "CloudApiDriver",
    "DriverEvent",
    "DriverResponse",
    "InboundMessage",
    "OutboundMessage",
    "WhatsAppWebDriver",
    "build_driver",
    "normalize_provider",
]
