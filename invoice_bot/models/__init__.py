from invoice_bot.models.conversation_state import ConversationStateRecord
from invoice_bot.models.invoice import Invoice

__all__ = [
    "ConversationStateRecord",
    "Invoice",
]
