import asyncio
from unittest.mock import AsyncMock

from switchboard.entities import Contact, MessageDirection
from switchboard.services.conversation_service import ConversationResolver
from switchboard.services.message_service import MAX_METADATA_BYTES, MessageIngestion, limit_metadata


class TestLimitMetadata:
    def test_small_metadata_kept(self):
        assert limit_metadata({"source": "webhook"}) == {"source": "webhook"}

    def test_oversized_metadata_truncated(self):
        result = limit_metadata({"raw": "x" * (MAX_METADATA_BYTES + 1)})

        assert result["truncated"] is True
        assert result["original_bytes"] > MAX_METADATA_BYTES
        assert len(result["preview"]) == 1024


class TestIngest:
    def test_updates_conversation_activity(self, repositories, cache, conversation):
        ingestion = MessageIngestion(repositories.messages, repositories.conversations, cache)

        result = asyncio.run(ingestion.ingest(conversation, MessageDirection.INCOMING, "hi", "wamid.1"))

        assert result.ok
        assert conversation.last_message_at == result.value.created_at

    def test_messages_without_provider_id_are_never_duplicates(self, repositories, cache, conversation):
        ingestion = MessageIngestion(repositories.messages, repositories.conversations, cache)

        async def run():
            first = await ingestion.ingest(conversation, MessageDirection.OUTGOING, "hi")
            second = await ingestion.ingest(conversation, MessageDirection.OUTGOING, "hi")
            return first.ok, second.ok

        assert asyncio.run(run()) == (True, True)

    def test_cache_outage_does_not_block_ingestion(self, repositories, cache, conversation):
        cache.exists = AsyncMock(side_effect=ConnectionError("redis down"))
        ingestion = MessageIngestion(repositories.messages, repositories.conversations, cache)

        result = asyncio.run(ingestion.ingest(conversation, MessageDirection.INCOMING, "hi", "wamid.1"))

        assert result.ok

    def test_redelivered_message_is_stored_once(self, repositories, cache, conversation):
        ingestion = MessageIngestion(repositories.messages, repositories.conversations, cache)

        async def run():
            first = await ingestion.ingest(conversation, MessageDirection.INCOMING, "hi", "wamid.7")
            second = await ingestion.ingest(conversation, MessageDirection.INCOMING, "hi", "wamid.7")
            return first, second

        first, second = asyncio.run(run())

        assert first.ok
        assert second.failed_with("duplicate")
        assert len(repositories.messages.messages) == 1

    def test_failed_write_does_not_mark_message_seen(self, repositories, cache, conversation):
        create = repositories.messages.create
        attempts = []

        async def flaky_create(message):
            attempts.append(message)
            if len(attempts) == 1:
                raise ConnectionError("db down")
            return await create(message)

        repositories.messages.create = flaky_create
        ingestion = MessageIngestion(repositories.messages, repositories.conversations, cache)

        async def run():
            try:
                await ingestion.ingest(conversation, MessageDirection.INCOMING, "hi", "wamid.7")
            except ConnectionError:
                pass
            return await ingestion.ingest(conversation, MessageDirection.INCOMING, "hi", "wamid.7")

        retry = asyncio.run(run())

        assert retry.ok
        assert retry.value.provider_message_id == "wamid.7"


class TestResolve:
    def test_cached_mapping_is_reused(self, repositories, cache, channel):
        resolver = ConversationResolver(repositories.conversations, cache)
        contact = Contact(id="77059998877@c.us", company_id=channel.company_id)

        async def run():
            first = await resolver.resolve(channel, contact)
            second = await resolver.resolve(channel, contact)
            return first, second, await cache.get(resolver.map_key(channel.id, contact.id))

        first, second, cached = asyncio.run(run())

        assert first.id == second.id
        assert cached == first.id

    def test_closed_conversation_is_not_reused(self, repositories, cache, channel, conversation):
        resolver = ConversationResolver(repositories.conversations, cache)
        contact = Contact(id=conversation.contact_id, company_id=channel.company_id)

        async def run():
            first = await resolver.resolve(channel, contact)
            first.status = "closed"
            return first, await resolver.resolve(channel, contact)

        first, second = asyncio.run(run())

        assert first.id == "conv-1"
        assert second.id != "conv-1"
