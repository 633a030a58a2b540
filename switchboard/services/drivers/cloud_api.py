"""Meta WhatsApp Cloud API driver (token based, no pairing)."""

from datetime import datetime, timezone
from typing import Optional

import httpx

from switchboard.entities import Channel, ChannelProvider, Contact
from switchboard.errors import AuthFailedError, AuthRequiredError, TransientDriverError
from switchboard.logging_config import get_logger
from switchboard.services.drivers.base import (
    ChannelDriver,
    DriverResponse,
    InboundMessage,
    OutboundMessage,
    WebhookItem,
)

logger = get_logger("drivers.cloud_api")


class CloudApiDriver(ChannelDriver):
    provider = ChannelProvider.META.value

    def __init__(
        self,
        channel: Channel,
        *,
        graph_api_url: str = "https://graph.facebook.com/v19.0",
        client: Optional[httpx.AsyncClient] = None,
        **kwargs,
    ):
        super().__init__(channel, **kwargs)
        self.access_token = channel.config.get("access_token")
        self.phone_number_id = channel.config.get("phone_number_id")
        self._authenticated = False
        self._client = client or httpx.AsyncClient(base_url=graph_api_url.rstrip("/"), timeout=15.0)

    def _headers(self) -> dict:
        return {"Authorization": f"Bearer {self.access_token}"}

    async def initialize(self, session_payload: Optional[dict] = None) -> None:
        if not self.access_token or not self.phone_number_id:
            raise AuthRequiredError("Cloud API channel needs access_token and phone_number_id")
        if not await self.validate_credentials():
            raise AuthFailedError(f"Cloud API credentials rejected for channel {self.channel_id}")
        self._authenticated = True

    async def is_authenticated(self) -> bool:
        return self._authenticated

    async def validate_credentials(self) -> bool:
        if not self.access_token or not self.phone_number_id:
            return False
        try:
            response = await self._client.get(
                f"/{self.phone_number_id}",
                params={"fields": "id,display_phone_number"},
                headers=self._headers(),
            )
        except httpx.TransportError as e:
            raise TransientDriverError(f"Graph API unreachable: {e}") from e
        return response.status_code == 200

    async def send_message(self, message: OutboundMessage) -> DriverResponse:
        if not self._authenticated:
            return DriverResponse(success=False, error="Cloud API channel is not initialized")
        payload = {
            "messaging_product": "whatsapp",
            "to": message.to,
            "type": "text",
            "text": {"body": message.text},
        }
        try:
            response = await self._client.post(
                f"/{self.phone_number_id}/messages", json=payload, headers=self._headers()
            )
        except httpx.TransportError as e:
            raise TransientDriverError(f"Graph API unreachable: {e}") from e

        if response.status_code == 429:
            raise TransientDriverError("Graph API rate limited")
        if response.status_code != 200:
            logger.error(f"Cloud API send failed: status={response.status_code}, body={response.text[:200]}")
            return DriverResponse(success=False, error=f"Graph API error {response.status_code}")
        messages = response.json().get("messages") or [{}]
        return DriverResponse(success=True, message_id=messages[0].get("id"), metadata={"to": message.to})

    def parse_webhook(self, payload: dict) -> list[WebhookItem]:
        items: list[WebhookItem] = []
        for entry in payload.get("entry") or []:
            for change in entry.get("changes") or []:
                value = change.get("value") or {}
                names = {
                    c.get("wa_id"): (c.get("profile") or {}).get("name") for c in value.get("contacts") or []
                }
                for msg in value.get("messages") or []:
                    if msg.get("type") != "text":
                        continue
                    sender = msg.get("from") or ""
                    items.append(
                        InboundMessage(
                            provider_message_id=msg.get("id") or "",
                            sender_id=sender,
                            text=(msg.get("text") or {}).get("body") or "",
                            contact=Contact(
                                id=sender,
                                company_id=self.channel.company_id,
                                name=names.get(sender),
                                phone=sender,
                            ),
                            timestamp=datetime.fromtimestamp(int(msg.get("timestamp") or 0), tz=timezone.utc),
                        )
                    )
        return items

    async def destroy(self) -> None:
        await super().destroy()
        self._authenticated = False
        await self._client.aclose()
