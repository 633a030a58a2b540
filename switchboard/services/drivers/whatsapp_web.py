"""WhatsApp Web session driver.

Talks to a WhatsApp Web session bridge over HTTP. The bridge owns the
browser session; this driver starts and stops it, polls it for pairing
codes, sends messages and parses the webhooks the bridge posts back.
"""

import asyncio
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Optional

import httpx

from switchboard.entities import Channel, ChannelProvider, Contact
from switchboard.errors import AuthFailedError, AuthRequiredError, DriverError, TransientDriverError
from switchboard.logging_config import get_logger
from switchboard.services.drivers.base import (
    ChannelDriver,
    DriverEvent,
    DriverResponse,
    InboundMessage,
    OutboundMessage,
    WebhookItem,
)

logger = get_logger("drivers.whatsapp_web")

TRANSIENT_STATUS_CODES = {409, 423, 429, 503}
LIFECYCLE_EVENTS = {"qr", "authenticated", "ready", "auth_failure", "disconnected"}


class WhatsAppWebDriver(ChannelDriver):
    provider = ChannelProvider.WHATSAPP_WEB.value
    requires_pairing = True

    def __init__(
        self,
        channel: Channel,
        *,
        bridge_url: str,
        api_key: str = "",
        qr_timeout_seconds: float = 30.0,
        poll_interval_seconds: float = 1.0,
        request_timeout_seconds: float = 15.0,
        client: Optional[httpx.AsyncClient] = None,
        sleep_func: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        **kwargs,
    ):
        super().__init__(channel, sleep_func=sleep_func, **kwargs)
        self.session_name = channel.config.get("session_id") or channel.id
        self.qr_timeout_seconds = qr_timeout_seconds
        self.poll_interval_seconds = poll_interval_seconds
        self._sleep = sleep_func
        self._authenticated = False
        self._connected = False
        headers = {"x-api-key": api_key} if api_key else {}
        self._client = client or httpx.AsyncClient(
            base_url=bridge_url.rstrip("/"),
            headers=headers,
            timeout=request_timeout_seconds,
        )

    async def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        url = f"/sessions/{self.session_name}{path}"
        try:
            response = await self._client.request(method, url, **kwargs)
        except httpx.TransportError as e:
            raise TransientDriverError(f"Bridge unreachable: {e}") from e

        if response.status_code in TRANSIENT_STATUS_CODES:
            raise TransientDriverError(f"Bridge busy ({response.status_code}): {response.text[:200]}")
        if response.status_code in (401, 403):
            raise AuthRequiredError(f"Bridge rejected session {self.session_name}")
        if response.status_code >= 400 and response.status_code != 404:
            raise DriverError(f"Bridge error {response.status_code}: {response.text[:200]}")
        return response

    async def initialize(self, session_payload: Optional[dict] = None) -> None:
        body: dict[str, Any] = {}
        if session_payload:
            body["restore"] = session_payload
        await self._request("POST", "/start", json=body)
        await self._refresh_status()
        logger.info(
            "WhatsApp Web session started",
            extra={
                "context": {
                    "channel_id": self.channel_id,
                    "session": self.session_name,
                    "authenticated": self._authenticated,
                    "restored": bool(session_payload),
                }
            },
        )

    async def _refresh_status(self) -> dict:
        response = await self._request("GET", "/status")
        if response.status_code == 404:
            self._authenticated = False
            self._connected = False
            return {"state": "MISSING"}
        data = response.json()
        self._authenticated = bool(data.get("authenticated"))
        self._connected = data.get("state") == "CONNECTED"
        return data

    async def is_authenticated(self) -> bool:
        return self._authenticated

    async def is_connected(self) -> bool:
        return self._authenticated and self._connected

    async def generate_qr(self, force: bool = False) -> str:
        """Pairing code for the session, or "" when it is already paired."""
        status = await self._refresh_status()
        if self._authenticated and self._connected and not force:
            return ""
        if force or (self._authenticated and not self._connected):
            logger.info(f"Recreating stale WhatsApp Web session {self.session_name}")
            await self._request("POST", "/logout")
            await self._request("POST", "/start", json={})
            self._authenticated = False

        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.qr_timeout_seconds
        while True:
            response = await self._request("GET", "/qr")
            if response.status_code != 404:
                qr = (response.json() or {}).get("qr")
                if qr:
                    return qr
            status = await self._refresh_status()
            if self._authenticated:
                return ""
            if status.get("state") == "AUTH_FAILURE":
                raise AuthFailedError(f"Pairing rejected for session {self.session_name}")
            if loop.time() >= deadline:
                raise DriverError("QR generation timeout")
            await self._sleep(self.poll_interval_seconds)

    async def send_message(self, message: OutboundMessage) -> DriverResponse:
        if not self._authenticated:
            return DriverResponse(success=False, error="WhatsApp session is not authenticated")
        try:
            response = await self._request("POST", "/messages", json={"chatId": message.to, "text": message.text})
        except (AuthRequiredError, TransientDriverError):
            raise
        except DriverError as e:
            logger.error(f"WhatsApp Web send failed: channel={self.channel_id}, to={message.to}, error={e}")
            return DriverResponse(success=False, error=str(e))
        data = response.json() if response.content else {}
        return DriverResponse(success=True, message_id=data.get("id"), metadata={"to": message.to})

    async def send_typing(self, to: str, active: bool) -> None:
        await self._request("POST", "/typing", json={"chatId": to, "active": active})

    async def validate_credentials(self) -> bool:
        try:
            await self._refresh_status()
        except DriverError as e:
            logger.warning(f"Bridge validation failed for {self.session_name}: {e}")
            return False
        return True

    async def test_connection(self) -> bool:
        try:
            await self._refresh_status()
        except DriverError:
            return False
        return await self.is_connected()

    def parse_webhook(self, payload: dict) -> list[WebhookItem]:
        event = payload.get("event")
        data = payload.get("data") or {}
        if event in LIFECYCLE_EVENTS:
            self._apply_lifecycle(event)
            return [DriverEvent(type=event, data=data)]
        if event != "message":
            return []

        sender = data.get("from") or ""
        if data.get("isStatus") or sender == "status@broadcast" or sender.endswith("@g.us"):
            return []
        if data.get("fromMe"):
            return []
        text = data.get("body") or ""
        timestamp = data.get("timestamp")
        return [
            InboundMessage(
                provider_message_id=str(data.get("id") or ""),
                sender_id=sender,
                text=text,
                contact=Contact(
                    id=sender,
                    company_id=self.channel.company_id,
                    name=data.get("notifyName"),
                    phone=sender.split("@", 1)[0],
                ),
                timestamp=(
                    datetime.fromtimestamp(timestamp, tz=timezone.utc)
                    if timestamp
                    else datetime.now(timezone.utc)
                ),
                metadata={"type": data.get("type", "chat"), "hasMedia": bool(data.get("hasMedia"))},
            )
        ]

    def _apply_lifecycle(self, event: str) -> None:
        if event in ("authenticated", "ready"):
            self._authenticated = True
            self._connected = event == "ready" or self._connected
        elif event in ("auth_failure", "disconnected"):
            self._authenticated = False
            self._connected = False

    async def destroy(self) -> None:
        await super().destroy()
        try:
            await self._request("POST", "/stop")
        finally:
            self._authenticated = False
            self._connected = False
            await self._client.aclose()
