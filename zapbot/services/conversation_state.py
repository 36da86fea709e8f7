from dataclasses import dataclass
from enum import Enum
from typing import Optional

from zapbot.services.context_service import ConversationContext


class ConversationPhase(str, Enum):
    NEW = "new"
    AWAITING_SELECTION = "awaiting_selection"
    BOUND = "bound"
    MANUAL = "manual"


VALID_TRANSITIONS = {
    ConversationPhase.NEW: [ConversationPhase.AWAITING_SELECTION],
    ConversationPhase.AWAITING_SELECTION: [ConversationPhase.AWAITING_SELECTION, ConversationPhase.BOUND],
    ConversationPhase.BOUND: [ConversationPhase.BOUND, ConversationPhase.AWAITING_SELECTION],
    ConversationPhase.MANUAL: [],
}


class InvalidTransitionError(Exception):
    def __init__(self, from_phase: ConversationPhase, to_phase: ConversationPhase):
        self.from_phase = from_phase
        self.to_phase = to_phase
        super().__init__(f"Invalid transition: {from_phase.value} -> {to_phase.value}")


@dataclass(frozen=True)
class ConversationState:
    """Derived per turn from stored facts; never persisted."""

    phase: ConversationPhase
    context: Optional[ConversationContext] = None

    @classmethod
    def new(cls) -> "ConversationState":
        return cls(ConversationPhase.NEW)

    @classmethod
    def awaiting_selection(cls) -> "ConversationState":
        return cls(ConversationPhase.AWAITING_SELECTION)

    @classmethod
    def bound(cls, context: ConversationContext) -> "ConversationState":
        return cls(ConversationPhase.BOUND, context)

    @classmethod
    def manual(cls) -> "ConversationState":
        return cls(ConversationPhase.MANUAL)


def derive_state(
    *,
    is_manual_service: bool,
    message_count: int,
    context: Optional[ConversationContext],
) -> ConversationState:
    """Manual service wins over everything; the inbound being handled is already counted."""
    if is_manual_service:
        return ConversationState.manual()
    if message_count <= 1:
        return ConversationState.new()
    if context is not None:
        return ConversationState.bound(context)
    return ConversationState.awaiting_selection()


def can_transition(from_phase: ConversationPhase, to_phase: ConversationPhase) -> bool:
    """Check if transition is valid."""
    return to_phase in VALID_TRANSITIONS.get(from_phase, [])


def transition(from_phase: ConversationPhase, to_phase: ConversationPhase) -> ConversationPhase:
    """Perform transition. Raises InvalidTransitionError if not allowed."""
    if not can_transition(from_phase, to_phase):
        raise InvalidTransitionError(from_phase, to_phase)
    return to_phase
