"""Intention classification for conversations.

Results are cached under a key that embeds the latest message id, so a new
message always produces a fresh classification and nothing needs explicit
invalidation. The LLM call is raced against a short timeout; when it loses,
a keyword-overlap heuristic answers instead. The losing call is left to
finish in the background and its result is dropped.
"""

import asyncio
import json
import re
import time
from dataclasses import dataclass
from typing import Any, Optional, Sequence

from switchboard.entities import Intention, Message, MessageDirection
from switchboard.logging_config import get_logger
from switchboard.repositories.base import MessageRepository, ParametersRepository
from switchboard.services.cache_store import CacheStore, get_json, set_json
from switchboard.services.llm.base import LLMProvider

logger = get_logger("intent_service")

BOOTSTRAP_MARKER = "bootstrap"
MAX_LINE_CHARS = 500
MAX_CATALOG_SIZE = 100
HEURISTIC_MIN_CONFIDENCE = 0.3
HEURISTIC_MAX_CONFIDENCE = 0.8
WORD_PATTERN = re.compile(r"\w{3,}", re.UNICODE)

CLASSIFY_PROMPT = """You classify customer conversations for a business messaging inbox.
Pick exactly one intention from the catalog that best matches what the customer wants.
Respond with a JSON object only:
{"intention_id": <catalog id>, "code": "<catalog code>", "confidence": <number between 0 and 1>}"""


@dataclass
class IntentionClassification:
    intention_id: int
    code: str
    confidence: float
    source: str = "ai"  # ai, heuristic

    def to_dict(self) -> dict[str, Any]:
        return {
            "intention_id": self.intention_id,
            "code": self.code,
            "confidence": self.confidence,
            "source": self.source,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "IntentionClassification":
        return cls(
            intention_id=int(data["intention_id"]),
            code=str(data["code"]),
            confidence=float(data["confidence"]),
            source=data.get("source", "ai"),
        )


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def build_transcript(history_newest_first: Sequence[Message]) -> str:
    lines = []
    for message in reversed(history_newest_first):
        speaker = "CUSTOMER" if message.direction == MessageDirection.INCOMING else "AGENT"
        lines.append(f"{speaker}: {(message.content or '')[:MAX_LINE_CHARS]}")
    return "\n".join(lines)


def score_intention(text: str, intention: Intention) -> float:
    """Description substring hit plus a bounded share of instruction words present."""
    score = 0.0
    description = (intention.description or "").strip().lower()
    if description and description in text:
        score += 1.0
    words = set(WORD_PATTERN.findall((intention.instructions or "").lower()))
    matched = sum(1 for word in words if word in text)
    score += min(0.5, matched / 20)
    return score


def heuristic_classification(
    history_newest_first: Sequence[Message], intentions: Sequence[Intention]
) -> Optional[IntentionClassification]:
    if not history_newest_first or not intentions:
        return None
    text = (history_newest_first[0].content or "").lower()
    best: Optional[Intention] = None
    best_score = -1.0
    for intention in intentions:
        score = score_intention(text, intention)
        if score > best_score:
            best, best_score = intention, score
    return IntentionClassification(
        intention_id=best.id,
        code=best.code,
        confidence=_clamp(best_score, HEURISTIC_MIN_CONFIDENCE, HEURISTIC_MAX_CONFIDENCE),
        source="heuristic",
    )


def parse_ai_classification(data: Any, intentions: Sequence[Intention]) -> Optional[IntentionClassification]:
    """Accept the answer only if it names a catalogued intention."""
    if not isinstance(data, dict):
        return None
    raw_id = data.get("intention_id", data.get("intentionId"))
    raw_code = str(data.get("code") or "").strip().lower()
    match = None
    for intention in intentions:
        if raw_id is not None and str(intention.id) == str(raw_id):
            match = intention
            break
        if raw_code and intention.code.lower() == raw_code:
            match = intention
    if match is None:
        return None
    try:
        confidence = float(data.get("confidence") or 0)
    except (TypeError, ValueError):
        return None
    if not confidence:
        return None
    return IntentionClassification(
        intention_id=match.id,
        code=match.code,
        confidence=_clamp(confidence, 0.0, 1.0),
        source="ai",
    )


class IntentionClassifier:
    def __init__(
        self,
        message_repository: MessageRepository,
        parameters_repository: ParametersRepository,
        cache: CacheStore,
        llm: Optional[LLMProvider] = None,
        *,
        history_limit: int = 15,
        ai_timeout_seconds: float = 1.5,
        cache_ttl_seconds: int = 300,
        model: Optional[str] = None,
    ):
        self.messages = message_repository
        self.parameters = parameters_repository
        self.cache = cache
        self.llm = llm
        self.history_limit = history_limit
        self.ai_timeout_seconds = ai_timeout_seconds
        self.cache_ttl_seconds = cache_ttl_seconds
        self.model = model
        self._inflight: set[asyncio.Task] = set()

    @staticmethod
    def cache_key(conversation_id: str, last_message_id: Optional[str]) -> str:
        return f"intent:conv:{conversation_id}:last:{last_message_id or BOOTSTRAP_MARKER}"

    async def classify_conversation(self, conversation_id: str) -> Optional[IntentionClassification]:
        latest = await self.messages.find_latest_by_conversation(conversation_id)
        key = self.cache_key(conversation_id, latest.id if latest else None)

        cached = await get_json(self.cache, key)
        if cached:
            try:
                return IntentionClassification.from_dict(cached)
            except (KeyError, TypeError, ValueError):
                logger.warning(f"Ignoring malformed cached classification {key}")

        intentions = await self.parameters.find_intentions(limit=MAX_CATALOG_SIZE)
        if not intentions:
            logger.info(f"No intentions configured, conversation {conversation_id} stays unclassified")
            return None

        history = await self.messages.find_by_conversation(
            conversation_id, limit=self.history_limit, sort_by="created_at", sort_dir="desc"
        )
        result = await self._classify(conversation_id, history, intentions)
        if result is not None:
            await set_json(self.cache, key, result.to_dict(), ttl_seconds=self.cache_ttl_seconds)
            logger.info(
                "Conversation classified",
                extra={
                    "context": {
                        "conversation_id": conversation_id,
                        "intention": result.code,
                        "confidence": result.confidence,
                        "source": result.source,
                    }
                },
            )
        return result

    async def _classify(
        self, conversation_id: str, history: Sequence[Message], intentions: Sequence[Intention]
    ) -> Optional[IntentionClassification]:
        if self.llm is None or not history:
            return heuristic_classification(history, intentions)

        started = time.monotonic()
        task = asyncio.ensure_future(self._ask_llm(history, intentions))
        self._inflight.add(task)
        task.add_done_callback(self._discard)
        done, _ = await asyncio.wait({task}, timeout=self.ai_timeout_seconds)
        elapsed_ms = round((time.monotonic() - started) * 1000, 2)

        if task not in done:
            logger.info(
                "Timing",
                extra={
                    "context": {
                        "stage": "intent_llm_ms",
                        "elapsed_ms": elapsed_ms,
                        "timeout": True,
                        "timeout_seconds": self.ai_timeout_seconds,
                    }
                },
            )
            return heuristic_classification(history, intentions)

        error = task.exception()
        if error is not None:
            logger.warning(f"Intent LLM failed for {conversation_id}: {error}")
            return heuristic_classification(history, intentions)

        logger.info(
            "Timing",
            extra={"context": {"stage": "intent_llm_ms", "elapsed_ms": elapsed_ms, "timeout": False}},
        )
        parsed = parse_ai_classification(task.result(), intentions)
        if parsed is None:
            logger.warning(f"Intent LLM answer did not match the catalog for {conversation_id}")
            return heuristic_classification(history, intentions)
        return parsed

    async def _ask_llm(self, history: Sequence[Message], intentions: Sequence[Intention]) -> dict:
        catalog = [
            {
                "id": intention.id,
                "code": intention.code,
                "description": intention.description,
                "instructions": (intention.instructions or "")[:MAX_LINE_CHARS],
            }
            for intention in intentions
        ]
        messages = [
            {"role": "system", "content": CLASSIFY_PROMPT},
            {
                "role": "user",
                "content": json.dumps(
                    {"catalog": catalog, "conversation": build_transcript(history)}, ensure_ascii=False
                ),
            },
        ]
        return await self.llm.generate_json(messages, model=self.model, temperature=0.0, max_tokens=150)

    def _discard(self, task: asyncio.Task) -> None:
        self._inflight.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.debug(f"Discarded classification call failed: {task.exception()}")
