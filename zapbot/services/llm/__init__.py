from zapbot.services.llm.base import LLMProvider, LLMResponse, UpstreamFailure
from zapbot.services.llm.openai_provider import OpenAIProvider

__all__ = ["LLMProvider", "LLMResponse", "OpenAIProvider", "UpstreamFailure"]
