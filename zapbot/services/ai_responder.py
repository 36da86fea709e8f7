from typing import Optional, Sequence

from zapbot.logging_config import get_logger
from zapbot.services.context_service import Turn
from zapbot.services.llm.base import LLMProvider

logger = get_logger("ai_responder")

MSG_AI_ERROR = "Desculpe, ocorreu um erro ao processar sua mensagem."
MSG_AI_EMPTY = "Desculpe, não consegui processar sua solicitação."


def build_messages(system_prompt: str, history: Sequence[Turn], user_text: str) -> list[dict]:
    return [
        {"role": "system", "content": system_prompt},
        *(turn.to_llm_message() for turn in history),
        {"role": "user", "content": user_text},
    ]


class AIResponder:
    """One completion per call. Every failure degrades to a fixed apology; nothing is raised."""

    def __init__(
        self,
        provider: LLMProvider,
        *,
        model: Optional[str] = None,
        temperature: float = 0.7,
    ):
        self.provider = provider
        self.model = model
        self.temperature = temperature

    async def respond(self, system_prompt: str, history: Sequence[Turn], user_text: str) -> str:
        messages = build_messages(system_prompt, history, user_text)
        try:
            response = await self.provider.generate(
                messages,
                model=self.model,
                temperature=self.temperature,
            )
        except Exception as e:
            logger.error(
                "AI completion failed",
                extra={"context": {"error": str(e), "history_len": len(history)}},
            )
            return MSG_AI_ERROR

        content = response.content if response else ""
        if content is not None and not isinstance(content, str):
            logger.error(
                "AI completion returned non-text content",
                extra={"context": {"content_type": type(content).__name__}},
            )
            return MSG_AI_ERROR

        content = (content or "").strip()
        if not content:
            logger.warning("AI completion returned empty content")
            return MSG_AI_EMPTY
        return content
