from invoice_bot.services.router_service import route_message
from invoice_bot.services.selection_service import (
    SelectionOutcome,
    handle_selection_reply,
    start_issuer_selection,
)
from invoice_bot.services.state_machine import (
    ConversationPhase,
    InvalidTransitionError,
    can_transition,
    transition,
)
from invoice_bot.services.timeout_service import handle_expired_conversations
