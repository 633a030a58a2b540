import json
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List, Optional


@dataclass
class LLMResponse:
    content: str
    model: str
    usage: Optional[dict] = None


class LLMProvider(ABC):
    """Abstract base class for LLM providers."""

    @abstractmethod
    async def generate(
        self,
        messages: List[dict],
        model: Optional[str] = None,
        temperature: float = 0.7,
        max_tokens: int = 1000,
        json_mode: bool = False,
    ) -> LLMResponse:
        """Generate response from LLM."""
        pass

    async def generate_json(self, messages: List[dict], **kwargs) -> dict:
        """Generate and parse a JSON object; raises ValueError on non-JSON output."""
        response = await self.generate(messages, json_mode=True, **kwargs)
        content = (response.content or "").strip()
        if content.startswith("```"):
            content = content.strip("`")
            content = content[content.find("{") :]
        data = json.loads(content)
        if not isinstance(data, dict):
            raise ValueError("LLM returned JSON that is not an object")
        return data
