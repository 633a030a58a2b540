import uuid

from switchboard.entities import Channel, Contact, Conversation
from switchboard.logging_config import get_logger
from switchboard.repositories.base import ConversationRepository
from switchboard.services.cache_store import CacheStore

logger = get_logger("conversation_service")

CONVERSATION_MAP_TTL_SECONDS = 24 * 3600


class ConversationResolver:
    """Maps (channel, contact) to the open conversation, creating one if needed."""

    def __init__(self, conversation_repository: ConversationRepository, cache: CacheStore):
        self.conversations = conversation_repository
        self.cache = cache

    @staticmethod
    def map_key(channel_id: str, contact_id: str) -> str:
        return f"conv:map:{channel_id}:{contact_id}"

    async def get(self, conversation_id: str):
        return await self.conversations.find_by_id(conversation_id)

    async def resolve(self, channel: Channel, contact: Contact) -> Conversation:
        key = self.map_key(channel.id, contact.id)
        try:
            cached_id = await self.cache.get(key)
        except Exception as e:
            logger.warning(f"Conversation map lookup failed for {key}: {e}")
            cached_id = None

        if cached_id:
            conversation = await self.conversations.find_by_id(cached_id)
            if conversation is not None and conversation.status == "open":
                return conversation

        conversation = await self.conversations.find_by_contact(channel.id, contact.id)
        if conversation is None:
            conversation = await self.conversations.create(
                Conversation(
                    id=str(uuid.uuid4()),
                    company_id=channel.company_id,
                    channel_id=channel.id,
                    contact_id=contact.id,
                )
            )
            logger.info(
                "Conversation created",
                extra={"context": {"conversation_id": conversation.id, "channel_id": channel.id}},
            )

        try:
            await self.cache.set(key, conversation.id, ttl_seconds=CONVERSATION_MAP_TTL_SECONDS)
        except Exception as e:
            logger.warning(f"Conversation map write failed for {key}: {e}")
        return conversation
