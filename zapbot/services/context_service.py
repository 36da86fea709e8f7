"""In-memory department contexts and per-conversation serialization."""

import asyncio
from collections import defaultdict
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import AsyncIterator, Literal, Optional

from zapbot.logging_config import get_logger

logger = get_logger("context_service")

MAX_CONVERSATION_HISTORY = 200

Role = Literal["user", "assistant"]


@dataclass(frozen=True)
class Turn:
    role: Role
    text: str

    def to_llm_message(self) -> dict:
        return {"role": self.role, "content": self.text}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class ConversationContext:
    conversation_id: str
    department_prompt: str
    department: Optional[str] = None
    history: list[Turn] = field(default_factory=list)
    bound_at: datetime = field(default_factory=_utcnow)
    last_activity_at: datetime = field(default_factory=_utcnow)


class ContextStore:
    """Conversation id -> bound context. Entries leave only via ``discard`` or ``evict_idle``."""

    def __init__(self, max_history: int = MAX_CONVERSATION_HISTORY):
        self.max_history = max_history
        self._contexts: dict[str, ConversationContext] = {}

    def get(self, conversation_id: str) -> Optional[ConversationContext]:
        return self._contexts.get(conversation_id)

    def bind(self, conversation_id: str, department_prompt: str, department: Optional[str] = None) -> ConversationContext:
        context = ConversationContext(
            conversation_id=conversation_id,
            department_prompt=department_prompt,
            department=department,
        )
        self._contexts[conversation_id] = context
        return context

    def discard(self, conversation_id: str) -> bool:
        return self._contexts.pop(conversation_id, None) is not None

    def append(self, context: ConversationContext, *turns: Turn) -> None:
        """Append turns and keep only the newest ``max_history`` entries."""
        context.history.extend(turns)
        if len(context.history) > self.max_history:
            del context.history[: len(context.history) - self.max_history]
        context.last_activity_at = _utcnow()

    def evict_idle(self, idle_timeout: timedelta, now: Optional[datetime] = None) -> list[str]:
        now = now or _utcnow()
        expired = [
            conversation_id
            for conversation_id, context in self._contexts.items()
            if now - context.last_activity_at > idle_timeout
        ]
        for conversation_id in expired:
            del self._contexts[conversation_id]
        if expired:
            logger.info(f"Evicted {len(expired)} idle conversation contexts")
        return expired

    def __contains__(self, conversation_id: str) -> bool:
        return conversation_id in self._contexts

    def __len__(self) -> int:
        return len(self._contexts)


class KeyedLocks:
    """One asyncio.Lock per key, dropped once nobody holds or waits on it.

    Waiters acquire in arrival order, so tasks created in receipt order are
    processed in receipt order for the same key.
    """

    def __init__(self):
        self._locks: dict[str, asyncio.Lock] = {}
        self._users: dict[str, int] = defaultdict(int)

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        self._users[key] += 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if self._users[key] <= 0:
                self._users.pop(key, None)
                self._locks.pop(key, None)

    def __len__(self) -> int:
        return len(self._locks)
