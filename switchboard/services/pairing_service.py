from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from switchboard.errors import NotFoundError
from switchboard.logging_config import get_logger
from switchboard.repositories.base import ChannelRepository
from switchboard.services.auth_session_service import AuthSessionManager
from switchboard.services.channel_runtime import ChannelRuntime
from switchboard.services.qr_service import QRCodeStorage

logger = get_logger("pairing_service")


@dataclass
class PairingResult:
    qr_code: str
    qr_code_url: Optional[str] = None
    session_id: Optional[str] = None
    expires_at: Optional[datetime] = None
    already_authenticated: bool = False


class PairingService:
    """QR pairing for channels: code from the driver, SVG on disk, tracked auth session."""

    def __init__(
        self,
        runtime: ChannelRuntime,
        auth_sessions: AuthSessionManager,
        qr_storage: QRCodeStorage,
        channel_repository: ChannelRepository,
    ):
        self.runtime = runtime
        self.auth_sessions = auth_sessions
        self.qr_storage = qr_storage
        self.channels = channel_repository

    async def get_channel_qr(self, channel_id: str) -> PairingResult:
        channel = await self.channels.find_by_id(channel_id)
        if channel is None:
            raise NotFoundError("channel", channel_id)

        code = await self.runtime.generate_qr(channel_id)
        if not code:
            return PairingResult(qr_code="", already_authenticated=True)

        url = self.qr_storage.render_svg(code, channel_id)
        session = await self.auth_sessions.get_active_session_by_channel(channel_id)
        if session is not None:
            # None when the session expired after the lookup.
            session = await self.auth_sessions.update_session(session.id, qr_code=code, qr_code_url=url)
        if session is None:
            provider = self.runtime.get_session(channel_id).driver.provider
            session = await self.auth_sessions.create_session(channel_id, provider, qr_code=code, qr_code_url=url)

        logger.info(
            "Pairing code issued",
            extra={"context": {"channel_id": channel_id, "session_id": session.id}},
        )
        return PairingResult(
            qr_code=code,
            qr_code_url=url,
            session_id=session.id,
            expires_at=session.expires_at,
        )
