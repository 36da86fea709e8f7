from typing import List, Optional

import httpx

from zapbot.logging_config import get_logger
from zapbot.services.llm.base import LLMProvider, LLMResponse, UpstreamFailure

logger = get_logger("llm.openai")


class OpenAIProvider(LLMProvider):
    """OpenAI chat completions over httpx."""

    def __init__(self, api_key: str, default_model: str = "gpt-4", timeout_seconds: float = 60.0):
        self.api_key = api_key
        self.default_model = default_model
        self.timeout_seconds = timeout_seconds
        self.base_url = "https://api.openai.com/v1/chat/completions"

    async def generate(
        self,
        messages: List[dict],
        model: Optional[str] = None,
        temperature: float = 0.7,
        max_tokens: Optional[int] = None,
    ) -> LLMResponse:
        model = model or self.default_model
        payload = {
            "model": model,
            "messages": messages,
            "temperature": temperature,
        }
        if max_tokens:
            payload["max_tokens"] = max_tokens

        logger.debug(f"OpenAI request: model={model}, messages_count={len(messages)}")
        try:
            async with httpx.AsyncClient(timeout=self.timeout_seconds) as client:
                response = await client.post(
                    self.base_url,
                    headers={
                        "Authorization": f"Bearer {self.api_key}",
                        "Content-Type": "application/json",
                    },
                    json=payload,
                )
        except httpx.HTTPError as e:
            raise UpstreamFailure(f"OpenAI request failed: {e}") from e

        logger.debug(f"OpenAI response status: {response.status_code}")
        if response.status_code != 200:
            logger.error(f"OpenAI error: {response.text[:500]}")
            raise UpstreamFailure(
                f"OpenAI API error: {response.status_code} - {response.text[:200]}",
                status_code=response.status_code,
            )

        try:
            data = response.json()
        except ValueError as e:
            raise UpstreamFailure(f"OpenAI returned invalid JSON: {e}") from e

        content = ""
        choices = data.get("choices") or []
        if choices:
            message = choices[0].get("message") or {}
            content = message.get("content") or ""
        if not isinstance(content, str):
            raise UpstreamFailure(f"OpenAI returned non-text content: {type(content).__name__}")
        logger.debug(f"OpenAI content: {content[:100] if content else 'EMPTY'}")

        return LLMResponse(
            content=content,
            model=data.get("model", model),
            usage=data.get("usage"),
        )
