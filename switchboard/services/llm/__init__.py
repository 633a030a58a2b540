from switchboard.services.llm.base import LLMProvider, LLMResponse
from switchboard.services.llm.openai_provider import OpenAIProvider, OpenAIProviderError

__all__ = ["LLMProvider", "LLMResponse", "OpenAIProvider", "OpenAIProviderError"]
