from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List, Optional


class UpstreamFailure(Exception):
    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


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
        max_tokens: Optional[int] = None,
    ) -> LLMResponse:
        """Generate a chat completion. Raises UpstreamFailure on any upstream problem."""
        pass
