import asyncio
from unittest.mock import AsyncMock, Mock

import pytest

from switchboard.services.intent_service import IntentionClassification
from switchboard.services.orchestrator import ConversationOrchestrator


@pytest.fixture
def classifier():
    classifier = AsyncMock()
    classifier.classify_conversation.return_value = IntentionClassification(
        intention_id=2, code="booking", confidence=0.9
    )
    return classifier


@pytest.fixture
def matcher(repositories):
    matcher = AsyncMock()

    async def assign(conversation, intention_id):
        await repositories.conversations.update(conversation.id, assigned_agent_id=1)
        return 1

    matcher.assign_if_needed.side_effect = assign
    return matcher


@pytest.fixture
def workflow():
    return AsyncMock()


@pytest.fixture
def typing():
    return AsyncMock()


@pytest.fixture
def sink():
    return Mock()


@pytest.fixture
def orchestrator(classifier, matcher, workflow, repositories, sink, typing):
    return ConversationOrchestrator(classifier, matcher, workflow, repositories.conversations, sink, typing=typing)


def emitted(sink):
    return [call.args[0] for call in sink.emit.call_args_list]


class TestProcessIncomingMessage:
    def test_classifies_assigns_and_runs_workflow(self, orchestrator, conversation, workflow, sink):
        result = asyncio.run(orchestrator.process_incoming_message(conversation, None))

        assert result.intention_id == 2
        assert result.assigned_agent_id == 1
        workflow.process_message.assert_awaited_once_with(conversation, None, None)
        events = emitted(sink)
        assert [e.event for e in events] == ["intent.detected", "agent.assigned"]
        assert events[0].data["code"] == "booking"
        assert events[1].data == {"conversation_id": "conv-1", "agent_id": 1}

    def test_known_intention_is_not_reclassified(self, orchestrator, conversation, classifier):
        conversation.intention_id = 1

        asyncio.run(orchestrator.process_incoming_message(conversation, None))

        classifier.classify_conversation.assert_not_awaited()

    def test_no_agent_means_no_workflow(self, orchestrator, conversation, matcher, workflow):
        matcher.assign_if_needed.side_effect = None
        matcher.assign_if_needed.return_value = None

        asyncio.run(orchestrator.process_incoming_message(conversation, None))

        workflow.process_message.assert_not_awaited()

    def test_unclassified_conversation_stays_idle(self, orchestrator, conversation, classifier, matcher, sink):
        classifier.classify_conversation.return_value = None

        asyncio.run(orchestrator.process_incoming_message(conversation, None))

        matcher.assign_if_needed.assert_not_awaited()
        sink.emit.assert_not_called()

    def test_typing_cleared_when_pipeline_fails(self, orchestrator, conversation, workflow, typing):
        workflow.process_message.side_effect = RuntimeError("flow broke")

        with pytest.raises(RuntimeError):
            asyncio.run(orchestrator.process_incoming_message(conversation, None))

        calls = [call.args for call in typing.set_typing.await_args_list]
        assert calls == [("ch-1", "77010001122@c.us", True), ("ch-1", "77010001122@c.us", False)]

    def test_typing_failure_is_ignored(self, orchestrator, conversation, typing, workflow):
        typing.set_typing.side_effect = ConnectionError("driver gone")

        asyncio.run(orchestrator.process_incoming_message(conversation, None))

        workflow.process_message.assert_awaited_once()
