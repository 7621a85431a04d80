from enum import Enum
from typing import Optional


class ConversationPhase(str, Enum):
    NONE = "none"  # no record exists for the chat
    AWAITING_ISSUER_SELECTION = "awaiting_issuer_selection"


VALID_TRANSITIONS = {
    ConversationPhase.NONE: [ConversationPhase.AWAITING_ISSUER_SELECTION],
    ConversationPhase.AWAITING_ISSUER_SELECTION: [ConversationPhase.NONE],
}


class InvalidTransitionError(Exception):
    def __init__(self, from_phase: ConversationPhase, to_phase: ConversationPhase):
        self.from_phase = from_phase
        self.to_phase = to_phase
        super().__init__(f"Invalid transition: {from_phase.value} -> {to_phase.value}")


def phase_of(record) -> ConversationPhase:
    """Phase of a stored conversation state; a missing record is NONE."""
    if record is None:
        return ConversationPhase.NONE
    try:
        return ConversationPhase(record.state)
    except ValueError:
        return ConversationPhase.NONE


def can_transition(from_phase: ConversationPhase, to_phase: ConversationPhase) -> bool:
    allowed = VALID_TRANSITIONS.get(from_phase, [])
    return to_phase in allowed


def transition(from_phase: ConversationPhase, to_phase: ConversationPhase) -> ConversationPhase:
    """Perform phase transition. Raises InvalidTransitionError if not allowed."""
    if not can_transition(from_phase, to_phase):
        raise InvalidTransitionError(from_phase, to_phase)
    return to_phase


def await_selection(current: ConversationPhase) -> ConversationPhase:
    """Extraction finished, ask the user to pick an issuer."""
    return transition(current, ConversationPhase.AWAITING_ISSUER_SELECTION)


def finish_selection(current: ConversationPhase) -> ConversationPhase:
    """Selection completed, cancelled or expired."""
    return transition(current, ConversationPhase.NONE)


def is_awaiting_selection(record: Optional[object]) -> bool:
    return phase_of(record) == ConversationPhase.AWAITING_ISSUER_SELECTION
