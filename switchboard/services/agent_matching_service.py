"""Least-loaded agent selection.

Agent load is an approximate, cached counter. Concurrent pipelines may race
on it; assignments stay correct, only the balance gets less precise.
"""

from dataclasses import dataclass
from typing import Optional, Sequence

from switchboard.entities import Agent, Conversation
from switchboard.errors import NotFoundError
from switchboard.logging_config import get_logger
from switchboard.repositories.base import AgentRepository, ChannelRepository, ConversationRepository
from switchboard.services.cache_store import CacheStore

logger = get_logger("agent_matching_service")


@dataclass
class MatchOptions:
    required_skills: Sequence[str] = ()
    alive_only: bool = True
    use_channel_default: bool = True


class AgentMatcher:
    def __init__(
        self,
        agent_repository: AgentRepository,
        conversation_repository: ConversationRepository,
        channel_repository: ChannelRepository,
        cache: CacheStore,
        *,
        load_ttl_seconds: int = 60,
        max_candidates: int = 50,
    ):
        self.agents = agent_repository
        self.conversations = conversation_repository
        self.channels = channel_repository
        self.cache = cache
        self.load_ttl_seconds = load_ttl_seconds
        self.max_candidates = max_candidates

    @staticmethod
    def load_key(agent_id: int) -> str:
        return f"agent:load:{agent_id}"

    async def get_agent_load(self, agent_id: int) -> int:
        key = self.load_key(agent_id)
        try:
            cached = await self.cache.get(key)
            if cached is not None:
                return int(cached)
        except Exception as e:
            logger.warning(f"Agent load cache read failed for {agent_id}: {e}")

        load = len(await self.conversations.find_active_by_agent(agent_id))
        try:
            await self.cache.set(key, str(load), ttl_seconds=self.load_ttl_seconds)
        except Exception as e:
            logger.warning(f"Agent load cache write failed for {agent_id}: {e}")
        return load

    async def choose_least_loaded(self, candidates: Sequence[Agent]) -> Optional[int]:
        """Lowest load wins; equal loads go to the lowest agent id."""
        best: Optional[tuple[int, int]] = None
        for agent in candidates:
            load = await self.get_agent_load(agent.id)
            rank = (load, agent.id)
            if best is None or rank < best:
                best = rank
        return best[1] if best else None

    async def match_agent_for_conversation(
        self,
        conversation: Conversation,
        intention_id: Optional[int],
        options: Optional[MatchOptions] = None,
    ) -> Optional[int]:
        options = options or MatchOptions()
        channel = await self.channels.find_by_id(conversation.channel_id)
        if channel is None:
            logger.warning(f"Channel {conversation.channel_id} missing, cannot match agent")
            return None

        candidates = await self.agents.find_candidates(
            conversation.company_id,
            intention_id=intention_id,
            skills=list(options.required_skills) or None,
            alive_only=options.alive_only,
            limit=self.max_candidates,
        )
        if not candidates:
            if options.use_channel_default and channel.default_agent_id is not None:
                logger.info(
                    f"No candidates for conversation {conversation.id}, using channel default agent "
                    f"{channel.default_agent_id}"
                )
                return channel.default_agent_id
            return None
        return await self.choose_least_loaded(candidates)

    async def assign_if_needed(
        self,
        conversation: Conversation,
        intention_id: Optional[int],
        options: Optional[MatchOptions] = None,
    ) -> Optional[int]:
        """Assign and persist an agent unless one is already set."""
        if conversation.assigned_agent_id is not None:
            return conversation.assigned_agent_id

        agent_id = await self.match_agent_for_conversation(conversation, intention_id, options)
        if agent_id is None:
            return None

        updated = await self.conversations.update(conversation.id, assigned_agent_id=agent_id)
        if updated is None:
            raise NotFoundError("conversation", conversation.id)
        conversation.assigned_agent_id = agent_id
        await self._bump_load(agent_id)
        logger.info(
            "Agent assigned",
            extra={"context": {"conversation_id": conversation.id, "agent_id": agent_id}},
        )
        return agent_id

    async def _bump_load(self, agent_id: int) -> None:
        """Advisory: a failed increment only makes balancing less precise."""
        key = self.load_key(agent_id)
        try:
            if await self.cache.exists(key):
                await self.cache.incr(key)
                await self.cache.expire(key, self.load_ttl_seconds)
        except Exception as e:
            logger.warning(f"Agent load increment failed for {agent_id}: {e}")
