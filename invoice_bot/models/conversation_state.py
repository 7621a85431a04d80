import uuid

from sqlalchemy import BigInteger, Column, Index, String, Text

from invoice_bot.database import Base


def _new_id() -> str:
    return str(uuid.uuid4())


class ConversationStateRecord(Base):
    __tablename__ = "conversation_states"

    id = Column(String(36), primary_key=True, default=_new_id)
    chat_id = Column(Text, nullable=False)
    message_id = Column(Text, nullable=False)  # source message, replies are threaded to it
    state = Column(Text, nullable=False)  # awaiting_issuer_selection
    data = Column(Text, nullable=False)  # serialized draft payload
    created_at = Column(BigInteger, nullable=False)
    expires_at = Column(BigInteger, nullable=False)

    __table_args__ = (
        Index("idx_conversation_states_chat_id", "chat_id"),
        Index("idx_conversation_states_expires_at", "expires_at"),
    )
