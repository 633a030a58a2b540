import json
import uuid
from datetime import datetime, timezone
from typing import Any, Optional

from switchboard.entities import Conversation, Message, MessageDirection
from switchboard.logging_config import get_logger
from switchboard.repositories.base import ConversationRepository, MessageRepository
from switchboard.services.cache_store import CacheStore
from switchboard.services.result import Result

logger = get_logger("message_service")

IDEMPOTENCY_TTL_SECONDS = 15 * 60
MAX_METADATA_BYTES = 32 * 1024


def limit_metadata(metadata: Optional[dict[str, Any]]) -> dict[str, Any]:
    """Replace oversized metadata with a truncated preview."""
    if not metadata:
        return {}
    serialized = json.dumps(metadata, default=str, ensure_ascii=False)
    if len(serialized.encode("utf-8")) <= MAX_METADATA_BYTES:
        return metadata
    return {"truncated": True, "original_bytes": len(serialized.encode("utf-8")), "preview": serialized[:1024]}


class MessageIngestion:
    def __init__(
        self,
        message_repository: MessageRepository,
        conversation_repository: ConversationRepository,
        cache: CacheStore,
    ):
        self.messages = message_repository
        self.conversations = conversation_repository
        self.cache = cache

    @staticmethod
    def idempotency_key(channel_id: str, provider_message_id: str) -> str:
        return f"msg:idem:{channel_id}:{provider_message_id}"

    async def _seen_before(self, channel_id: str, provider_message_id: Optional[str]) -> bool:
        if not provider_message_id:
            return False
        key = self.idempotency_key(channel_id, provider_message_id)
        try:
            return bool(await self.cache.exists(key))
        except Exception as e:
            logger.warning(f"Idempotency check unavailable for {key}: {e}")
        return False

    async def _remember(self, channel_id: str, provider_message_id: Optional[str]) -> None:
        if not provider_message_id:
            return
        key = self.idempotency_key(channel_id, provider_message_id)
        try:
            await self.cache.set(key, "1", ttl_seconds=IDEMPOTENCY_TTL_SECONDS)
        except Exception as e:
            logger.warning(f"Could not record idempotency key {key}: {e}")

    async def ingest(
        self,
        conversation: Conversation,
        direction: MessageDirection,
        content: str,
        provider_message_id: Optional[str] = None,
        metadata: Optional[dict[str, Any]] = None,
    ) -> Result[Message]:
        """Persist a message once per provider message id."""
        if await self._seen_before(conversation.channel_id, provider_message_id):
            logger.info(f"Duplicate message ignored: {provider_message_id}")
            return Result.failure("Message already ingested", code="duplicate")

        message = Message(
            id=str(uuid.uuid4()),
            conversation_id=conversation.id,
            direction=direction,
            content=content or "",
            provider_message_id=provider_message_id,
            metadata=limit_metadata(metadata),
            created_at=datetime.now(timezone.utc),
        )
        message = await self.messages.create(message)
        await self._remember(conversation.channel_id, provider_message_id)
        await self.conversations.update(conversation.id, last_message_at=message.created_at)
        conversation.last_message_at = message.created_at
        return Result.success(message)
