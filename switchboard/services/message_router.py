"""Glue between channel drivers and the conversation pipeline."""

from typing import Optional

from switchboard.entities import Channel, Contact, Message, MessageDirection
from switchboard.logging_config import get_logger
from switchboard.services import events
from switchboard.services.conversation_service import ConversationResolver
from switchboard.services.drivers.base import DriverResponse, InboundMessage, OutboundMessage
from switchboard.services.events import EventSink, RealtimeEvent
from switchboard.services.firewall import ConversationalFirewall, FirewallAction
from switchboard.services.message_service import MessageIngestion
from switchboard.services.orchestrator import ConversationOrchestrator

logger = get_logger("message_router")

FALLBACK_REPLY = "Sorry, something went wrong on our side. An agent will get back to you shortly."


class MessageRouter:
    def __init__(
        self,
        firewall: ConversationalFirewall,
        resolver: ConversationResolver,
        ingestion: MessageIngestion,
        orchestrator: ConversationOrchestrator,
        event_sink: EventSink,
        sender=None,
        fallback_reply: str = FALLBACK_REPLY,
    ):
        self.firewall = firewall
        self.resolver = resolver
        self.ingestion = ingestion
        self.orchestrator = orchestrator
        self.event_sink = event_sink
        self.sender = sender
        self.fallback_reply = fallback_reply

    async def handle_inbound(self, channel: Channel, inbound: InboundMessage) -> Optional[Message]:
        verdict = await self.firewall.check_message(inbound.sender_id, inbound.text)
        if verdict.action == FirewallAction.BLOCK:
            logger.warning(
                "Inbound message blocked",
                extra={
                    "context": {
                        "channel_id": channel.id,
                        "sender_id": inbound.sender_id,
                        "risk_score": verdict.risk_score,
                        "cooldown_seconds": verdict.cooldown_seconds,
                        "violations": [v.type.value for v in verdict.violations],
                    }
                },
            )
            return None

        conversation = await self.resolver.resolve(channel, inbound.contact)
        metadata = dict(inbound.metadata)
        if inbound.contact.name:
            metadata["contact_name"] = inbound.contact.name
        if verdict.action == FirewallAction.WARN:
            metadata["firewall"] = {"action": verdict.action.value, "risk_score": verdict.risk_score}

        ingested = await self.ingestion.ingest(
            conversation,
            MessageDirection.INCOMING,
            inbound.text,
            provider_message_id=inbound.provider_message_id or None,
            metadata=metadata,
        )
        if not ingested.ok:
            if ingested.failed_with("duplicate"):
                logger.info(f"Redelivered message {inbound.provider_message_id} on {channel.id} skipped")
            return None
        message = ingested.value

        self.event_sink.emit(
            RealtimeEvent(
                event=events.MESSAGE_RECEIVED,
                channel_id=channel.id,
                company_id=channel.company_id,
                data={
                    "conversation_id": conversation.id,
                    "message_id": message.id,
                    "from": inbound.sender_id,
                    "text": message.content,
                },
            )
        )

        try:
            await self.orchestrator.process_incoming_message(conversation, message, inbound.contact)
        except Exception as e:
            logger.error(
                "Conversation pipeline failed",
                extra={"context": {"conversation_id": conversation.id, "error": str(e)}},
                exc_info=True,
            )
            await self._send_fallback(channel, conversation.id, inbound.sender_id)
        return message

    async def _send_fallback(self, channel: Channel, conversation_id: str, to: str) -> None:
        if self.sender is None or not self.fallback_reply:
            return
        try:
            await self.sender.emit_message(
                channel.id, OutboundMessage(to=to, text=self.fallback_reply, conversation_id=conversation_id)
            )
        except Exception as e:
            logger.error(f"Fallback reply failed for conversation {conversation_id}: {e}")

    async def handle_outbound(
        self, channel: Channel, outbound: OutboundMessage, response: DriverResponse
    ) -> Optional[Message]:
        conversation = None
        if outbound.conversation_id:
            conversation = await self.resolver.get(outbound.conversation_id)
        if conversation is None:
            conversation = await self.resolver.resolve(
                channel, Contact(id=outbound.to, company_id=channel.company_id)
            )

        ingested = await self.ingestion.ingest(
            conversation,
            MessageDirection.OUTGOING,
            outbound.text,
            provider_message_id=response.message_id,
            metadata=outbound.metadata,
        )
        if not ingested.ok:
            return None

        self.event_sink.emit(
            RealtimeEvent(
                event=events.MESSAGE_SENT,
                channel_id=channel.id,
                company_id=channel.company_id,
                data={
                    "conversation_id": conversation.id,
                    "message_id": ingested.value.id,
                    "to": outbound.to,
                    "text": outbound.text,
                },
            )
        )
        return ingested.value
