"""Menu-driven routing of one inbound message.

Per conversation the router derives a state (new, awaiting selection, bound to
a department, manual) and acts on it: welcome menu, department selection, AI
reply, goodbye, or silence while a human operator owns the thread.

``handle`` must be called with the conversation's lock held (see
``IngestService``); the context map is only touched under that lock.
"""

import asyncio
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, Sequence

from zapbot.logging_config import get_logger
from zapbot.services.ai_responder import AIResponder
from zapbot.services.context_service import ContextStore, ConversationContext, Turn
from zapbot.services.conversation_state import (
    ConversationPhase,
    ConversationState,
    derive_state,
    transition,
)
from zapbot.services.store_service import ContactRecord, ContactStore, MenuEntry, PersistenceFailure
from zapbot.services.transport.base import MessageReceived, is_group_jid

logger = get_logger("conversation_router")

END_COMMAND = "0"
SENDER_BOT = "bot"
KEYCAP = "\ufe0f\u20e3"

MSG_WELCOME_HEADER = "Olá! 👋 Bem-vindo ao nosso atendimento. Como posso ajudar você hoje?"
MSG_WELCOME_FOOTER = (
    "Responda com o número da opção desejada.\n"
    f"Digite 0{KEYCAP} a qualquer momento para encerrar o atendimento."
)
MSG_MENU_UNAVAILABLE = "Desculpe, não foi possível carregar o menu de opções."
MSG_INVALID_OPTION = "Opção inválida. Por favor, escolha uma das opções abaixo:"
MSG_DEPARTMENT_OPENER = "Como posso ajudar você hoje?"
MSG_GOODBYE = "Atendimento encerrado. Obrigado por utilizar nossos serviços! 👋"

_MENU_INDEX_RE = re.compile(r"\s*(\d+)")
MAX_MENU_INDEX_DIGITS = 9

Sender = Callable[[str, str], Awaitable[Any]]


class RouteAction(str, Enum):
    IGNORED_GROUP = "ignored_group"
    MANUAL = "manual"
    WELCOME = "welcome"
    EMPTY = "empty"
    GOODBYE = "goodbye"
    DEPARTMENT_BOUND = "department_bound"
    INVALID_OPTION = "invalid_option"
    AI_REPLY = "ai_reply"
    ERROR = "error"


@dataclass(frozen=True)
class RouteOutcome:
    action: RouteAction
    phase: Optional[ConversationPhase] = None
    reply: Optional[str] = None


def render_welcome(options: Sequence[MenuEntry]) -> str:
    lines = "\n".join(f"{index}{KEYCAP} - {option.title}" for index, option in enumerate(options, start=1))
    return f"{MSG_WELCOME_HEADER}\n\nEscolha uma das opções abaixo:\n\n{lines}\n\n{MSG_WELCOME_FOOTER}"


def parse_menu_index(text: str) -> Optional[int]:
    """Leading integer of the reply ("2", "2 por favor", "2️⃣"); None when there is none or it is too long."""
    match = _MENU_INDEX_RE.match(text or "")
    if not match or len(match.group(1)) > MAX_MENU_INDEX_DIGITS:
        return None
    return int(match.group(1))


def select_option(options: Sequence[MenuEntry], text: str) -> Optional[MenuEntry]:
    index = parse_menu_index(text)
    if index is None or not 1 <= index <= len(options):
        return None
    return options[index - 1]


class ConversationRouter:
    def __init__(
        self,
        store: ContactStore,
        responder: AIResponder,
        sender: Sender,
        contexts: Optional[ContextStore] = None,
    ):
        self.store = store
        self.responder = responder
        self.sender = sender
        self.contexts = contexts if contexts is not None else ContextStore()

    async def handle(self, message: MessageReceived, contact: ContactRecord) -> RouteOutcome:
        """Route one inbound message. Never raises; failures leave the turn unanswered."""
        if is_group_jid(message.conversation_id):
            return RouteOutcome(RouteAction.IGNORED_GROUP)

        try:
            return await self._route(message, contact)
        except Exception as e:
            logger.error(
                "Failed to route message",
                extra={
                    "context": {
                        "conversation_id": message.conversation_id,
                        "contact_id": str(contact.id),
                        "error": str(e),
                    }
                },
            )
            return RouteOutcome(RouteAction.ERROR)

    async def resolve_state(self, conversation_id: str, contact: ContactRecord) -> ConversationState:
        is_manual = contact.is_manual_service or await asyncio.to_thread(self.store.is_manual_service, contact.id)
        if is_manual:
            return ConversationState.manual()
        message_count = await asyncio.to_thread(self.store.count_messages, contact.id)
        return derive_state(
            is_manual_service=False,
            message_count=message_count,
            context=self.contexts.get(conversation_id),
        )

    async def _route(self, message: MessageReceived, contact: ContactRecord) -> RouteOutcome:
        conversation_id = message.conversation_id
        state = await self.resolve_state(conversation_id, contact)

        if state.phase == ConversationPhase.MANUAL:
            logger.info(
                "Contact in manual service, skipping automatic reply",
                extra={"context": {"contact_id": str(contact.id)}},
            )
            return RouteOutcome(RouteAction.MANUAL, ConversationPhase.MANUAL)

        if state.phase == ConversationPhase.NEW:
            welcome = await self._welcome_text()
            await self._reply(contact, conversation_id, welcome)
            return RouteOutcome(
                RouteAction.WELCOME,
                transition(state.phase, ConversationPhase.AWAITING_SELECTION),
                welcome,
            )

        text = (message.text or "").strip()
        if not text:
            return RouteOutcome(RouteAction.EMPTY, state.phase)

        if text == END_COMMAND:
            self.contexts.discard(conversation_id)
            await self._reply(contact, conversation_id, MSG_GOODBYE)
            return RouteOutcome(
                RouteAction.GOODBYE,
                transition(state.phase, ConversationPhase.AWAITING_SELECTION),
                MSG_GOODBYE,
            )

        if state.phase == ConversationPhase.AWAITING_SELECTION:
            return await self._select_department(contact, conversation_id, text)

        return await self._answer(state.context, contact, conversation_id, text)

    async def _select_department(self, contact: ContactRecord, conversation_id: str, text: str) -> RouteOutcome:
        # Indexes follow the live menu ordering, which may differ from the one shown earlier.
        options = await asyncio.to_thread(self.store.list_menu_options)
        option = select_option(options, text)
        prompt = None
        if option is not None:
            prompt = await asyncio.to_thread(self.store.get_prompt_for_option, option.id)

        if option is None or prompt is None:
            reply = f"{MSG_INVALID_OPTION}\n\n{render_welcome(options)}"
            await self._reply(contact, conversation_id, reply)
            return RouteOutcome(RouteAction.INVALID_OPTION, ConversationPhase.AWAITING_SELECTION, reply)

        await asyncio.to_thread(self.store.set_department_tag, contact.id, option.title)
        self.contexts.bind(conversation_id, prompt.content, department=option.title)
        logger.info(
            "Department bound",
            extra={"context": {"conversation_id": conversation_id, "department": option.title}},
        )
        await self._reply(contact, conversation_id, MSG_DEPARTMENT_OPENER)
        return RouteOutcome(
            RouteAction.DEPARTMENT_BOUND,
            transition(ConversationPhase.AWAITING_SELECTION, ConversationPhase.BOUND),
            MSG_DEPARTMENT_OPENER,
        )

    async def _answer(
        self,
        context: ConversationContext,
        contact: ContactRecord,
        conversation_id: str,
        text: str,
    ) -> RouteOutcome:
        reply = await self.responder.respond(context.department_prompt, list(context.history), text)
        self.contexts.append(context, Turn("user", text), Turn("assistant", reply))
        await self._reply(contact, conversation_id, reply)
        return RouteOutcome(RouteAction.AI_REPLY, ConversationPhase.BOUND, reply)

    async def _welcome_text(self) -> str:
        try:
            options = await asyncio.to_thread(self.store.list_menu_options)
        except PersistenceFailure:
            return MSG_MENU_UNAVAILABLE
        return render_welcome(options)

    async def _reply(self, contact: ContactRecord, conversation_id: str, text: str) -> None:
        await self.sender(conversation_id, text)
        await asyncio.to_thread(self.store.save_message, contact.id, text, SENDER_BOT)
