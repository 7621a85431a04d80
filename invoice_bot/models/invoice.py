import uuid

from sqlalchemy import BigInteger, CheckConstraint, Column, Index, String, Text

from invoice_bot.database import Base


def _new_id() -> str:
    return str(uuid.uuid4())


class Invoice(Base):
    __tablename__ = "invoices"

    id = Column(String(36), primary_key=True, default=_new_id)
    user_id = Column(Text)
    chat_id = Column(Text, nullable=False)
    message_id = Column(Text)
    status = Column(Text, nullable=False, default="draft")  # draft, completed
    data = Column(Text, nullable=False)
    pdf_url = Column(Text)
    created_at = Column(BigInteger, nullable=False)
    updated_at = Column(BigInteger, nullable=False)

    __table_args__ = (
        CheckConstraint("status IN ('draft', 'completed')", name="ck_invoices_status"),
        Index("idx_invoices_chat_id", "chat_id"),
        Index("idx_invoices_status", "status"),
    )
