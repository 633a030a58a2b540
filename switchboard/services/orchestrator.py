"""Per-message pipeline: classify, assign, advance the workflow."""

from typing import Optional

from switchboard.entities import Contact, Conversation, Message
from switchboard.logging_config import get_logger
from switchboard.repositories.base import ConversationRepository
from switchboard.services import events
from switchboard.services.agent_matching_service import AgentMatcher
from switchboard.services.events import EventSink, RealtimeEvent
from switchboard.services.intent_service import IntentionClassifier
from switchboard.services.workflow.engine import WorkflowEngine

logger = get_logger("orchestrator")


class ConversationOrchestrator:
    def __init__(
        self,
        classifier: IntentionClassifier,
        matcher: AgentMatcher,
        workflow: WorkflowEngine,
        conversation_repository: ConversationRepository,
        event_sink: EventSink,
        typing=None,
    ):
        self.classifier = classifier
        self.matcher = matcher
        self.workflow = workflow
        self.conversations = conversation_repository
        self.event_sink = event_sink
        self.typing = typing

    async def _set_typing(self, conversation: Conversation, active: bool) -> None:
        if self.typing is None:
            return
        try:
            await self.typing.set_typing(conversation.channel_id, conversation.contact_id, active)
        except Exception as e:
            logger.debug(f"Typing indicator failed for {conversation.id}: {e}")

    def _emit(self, event: str, conversation: Conversation, data: dict) -> None:
        self.event_sink.emit(
            RealtimeEvent(
                event=event,
                channel_id=conversation.channel_id,
                company_id=conversation.company_id,
                data={"conversation_id": conversation.id, **data},
            )
        )

    async def process_incoming_message(
        self,
        conversation: Conversation,
        message: Optional[Message],
        contact: Optional[Contact] = None,
    ) -> Conversation:
        """Errors propagate after the typing indicator is cleared."""
        await self._set_typing(conversation, True)
        try:
            if conversation.intention_id is None:
                classification = await self.classifier.classify_conversation(conversation.id)
                if classification is not None:
                    await self.conversations.update(conversation.id, intention_id=classification.intention_id)
                    conversation.intention_id = classification.intention_id
                    self._emit(events.INTENT_DETECTED, conversation, classification.to_dict())

            if conversation.intention_id is not None and conversation.assigned_agent_id is None:
                agent_id = await self.matcher.assign_if_needed(conversation, conversation.intention_id)
                if agent_id is not None:
                    self._emit(events.AGENT_ASSIGNED, conversation, {"agent_id": agent_id})
                else:
                    logger.warning(f"No agent available for conversation {conversation.id}")

            if conversation.intention_id is not None and conversation.assigned_agent_id is not None:
                await self.workflow.process_message(conversation, message, contact)
            return conversation
        finally:
            await self._set_typing(conversation, False)
