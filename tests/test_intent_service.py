import asyncio
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, Mock

import pytest

from switchboard.entities import Intention, Message, MessageDirection
from switchboard.repositories.memory import InMemoryMessageRepository, InMemoryParametersRepository
from switchboard.services.intent_service import (
    IntentionClassifier,
    build_transcript,
    heuristic_classification,
    parse_ai_classification,
)

T0 = datetime(2026, 1, 1, 9, 0, tzinfo=timezone.utc)


def make_message(message_id, content, minutes=0, direction=MessageDirection.INCOMING):
    return Message(
        id=message_id,
        conversation_id="conv-1",
        direction=direction,
        content=content,
        created_at=T0 + timedelta(minutes=minutes),
    )


@pytest.fixture
def messages():
    return InMemoryMessageRepository(
        [
            make_message("m1", "Hello there", 0),
            make_message("m2", "Hi! How can we help?", 1, MessageDirection.OUTGOING),
            make_message("m3", "I want to book a visit for tomorrow", 2),
        ]
    )


@pytest.fixture
def parameters(intentions):
    return InMemoryParametersRepository(intentions)


def llm_answering(answer):
    llm = Mock()
    llm.generate_json = AsyncMock(return_value=answer)
    return llm


class TestHeuristic:
    def test_description_match_wins(self, intentions):
        history = [make_message("m1", "what is on your price list?")]

        result = heuristic_classification(history, intentions)

        assert result.code == "pricing"
        assert result.source == "heuristic"
        assert result.confidence == 0.8

    def test_confidence_has_a_floor(self, intentions):
        history = [make_message("m1", "zzz")]

        result = heuristic_classification(history, intentions)

        assert result.confidence == 0.3

    def test_empty_inputs(self, intentions):
        assert heuristic_classification([], intentions) is None
        assert heuristic_classification([make_message("m1", "hi")], []) is None


class TestParseAiClassification:
    def test_match_by_id(self, intentions):
        result = parse_ai_classification({"intention_id": 2, "code": "x", "confidence": 0.9}, intentions)
        assert result.code == "booking"

    def test_match_by_code(self, intentions):
        result = parse_ai_classification({"code": "PRICING", "confidence": 0.7}, intentions)
        assert result.intention_id == 1

    def test_unknown_intention_rejected(self, intentions):
        assert parse_ai_classification({"intention_id": 99, "confidence": 0.9}, intentions) is None

    def test_confidence_is_clamped(self, intentions):
        result = parse_ai_classification({"intention_id": 1, "confidence": 7}, intentions)
        assert result.confidence == 1.0

    def test_non_dict_rejected(self, intentions):
        assert parse_ai_classification(["pricing"], intentions) is None


class TestTranscript:
    def test_oldest_first_with_speakers(self):
        history = [
            make_message("m2", "Hi!", 1, MessageDirection.OUTGOING),
            make_message("m1", "Hello", 0),
        ]

        assert build_transcript(history) == "CUSTOMER: Hello\nAGENT: Hi!"

    def test_lines_are_truncated(self):
        transcript = build_transcript([make_message("m1", "x" * 900)])
        assert len(transcript) == len("CUSTOMER: ") + 500


class TestClassifyConversation:
    def test_ai_answer_is_used(self, messages, parameters, cache):
        llm = llm_answering({"intention_id": 2, "code": "booking", "confidence": 0.92})
        classifier = IntentionClassifier(messages, parameters, cache, llm)

        result = asyncio.run(classifier.classify_conversation("conv-1"))

        assert result.intention_id == 2
        assert result.source == "ai"
        assert result.confidence == 0.92

    def test_hanging_ai_falls_back_to_heuristic(self, messages, parameters, cache):
        async def hang(*args, **kwargs):
            await asyncio.sleep(10)

        llm = Mock()
        llm.generate_json = hang
        classifier = IntentionClassifier(messages, parameters, cache, llm, ai_timeout_seconds=0.01)

        result = asyncio.run(classifier.classify_conversation("conv-1"))

        assert result.source == "heuristic"
        assert result.code == "booking"

    def test_failing_ai_falls_back_to_heuristic(self, messages, parameters, cache):
        llm = Mock()
        llm.generate_json = AsyncMock(side_effect=ValueError("not json"))
        classifier = IntentionClassifier(messages, parameters, cache, llm)

        result = asyncio.run(classifier.classify_conversation("conv-1"))

        assert result.source == "heuristic"

    def test_off_catalog_answer_falls_back(self, messages, parameters, cache):
        llm = llm_answering({"intention_id": 42, "code": "refund", "confidence": 0.99})
        classifier = IntentionClassifier(messages, parameters, cache, llm)

        result = asyncio.run(classifier.classify_conversation("conv-1"))

        assert result.source == "heuristic"

    def test_no_catalog_means_unclassified(self, messages, cache):
        classifier = IntentionClassifier(messages, InMemoryParametersRepository(), cache)

        assert asyncio.run(classifier.classify_conversation("conv-1")) is None

    def test_result_cached_until_next_message(self, messages, parameters, cache):
        llm = llm_answering({"intention_id": 2, "confidence": 0.9})
        classifier = IntentionClassifier(messages, parameters, cache, llm)

        async def run():
            await classifier.classify_conversation("conv-1")
            await classifier.classify_conversation("conv-1")
            calls_before = llm.generate_json.await_count
            await messages.create(make_message("m4", "also the price please", 3))
            await classifier.classify_conversation("conv-1")
            return calls_before, llm.generate_json.await_count

        assert asyncio.run(run()) == (1, 2)

    def test_history_is_limited_and_sent_oldest_first(self, messages, parameters, cache):
        llm = llm_answering({"intention_id": 2, "confidence": 0.9})
        classifier = IntentionClassifier(messages, parameters, cache, llm, history_limit=2)

        asyncio.run(classifier.classify_conversation("conv-1"))

        prompt = llm.generate_json.await_args.args[0][1]["content"]
        assert "Hello there" not in prompt
        assert prompt.index("How can we help") < prompt.index("book a visit")


class TestCacheKey:
    def test_key_embeds_last_message(self):
        assert IntentionClassifier.cache_key("conv-1", "m3") == "intent:conv:conv-1:last:m3"

    def test_bootstrap_marker(self):
        assert IntentionClassifier.cache_key("conv-1", None) == "intent:conv:conv-1:last:bootstrap"


def test_heuristic_picks_first_on_tie():
    intentions = [Intention(id=5, code="a"), Intention(id=6, code="b")]
    result = heuristic_classification([make_message("m1", "nothing relevant")], intentions)
    assert result.intention_id == 5
