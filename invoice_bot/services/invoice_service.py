import json
import math
import time
from typing import Any, Optional

from sqlalchemy.orm import Session

from invoice_bot.config import settings
from invoice_bot.logging_config import get_logger
from invoice_bot.models import Invoice
from invoice_bot.schemas.invoice import InvoiceData, InvoiceResponse

logger = get_logger("invoice_service")

TAX_RATE = 0.10


def recalculate_totals(data: dict) -> dict:
    """Return a copy of `data` with subtotal, tax and total derived from its items."""
    items = data.get("items") or []
    subtotal = sum(item.get("amount") or 0 for item in items)
    tax = math.floor(subtotal * TAX_RATE)
    return {**data, "subtotal": subtotal, "tax": tax, "total": subtotal + tax}


def normalize_invoice_data(raw: Any) -> dict:
    """Validate an invoice payload and recompute its totals. Raises pydantic.ValidationError."""
    data = InvoiceData.model_validate(raw).model_dump(exclude_none=True)
    return recalculate_totals(data)


def _now() -> int:
    return int(time.time())


def create_invoice_draft(
    db: Session,
    chat_id: str,
    message_id: Optional[str],
    data: dict,
    user_id: Optional[str] = None,
) -> Invoice:
    now = _now()
    invoice = Invoice(
        user_id=user_id,
        chat_id=chat_id,
        message_id=message_id,
        status="draft",
        data=json.dumps(normalize_invoice_data(data), ensure_ascii=False),
        created_at=now,
        updated_at=now,
    )
    db.add(invoice)
    db.flush()

    logger.info("Invoice draft created", extra={"context": {"invoice_id": invoice.id, "chat_id": chat_id}})
    return invoice


def get_invoice(db: Session, invoice_id: str) -> Optional[Invoice]:
    return db.query(Invoice).filter(Invoice.id == invoice_id).first()


def load_invoice_data(invoice: Invoice) -> dict:
    return json.loads(invoice.data)


def update_invoice_data(db: Session, invoice: Invoice, data: Any) -> Invoice:
    """Replace the invoice payload; totals are recomputed from the items."""
    invoice.data = json.dumps(normalize_invoice_data(data), ensure_ascii=False)
    invoice.updated_at = _now()
    db.flush()
    return invoice


def complete_invoice(db: Session, invoice: Invoice, pdf_url: str) -> Invoice:
    invoice.status = "completed"
    invoice.pdf_url = pdf_url
    invoice.updated_at = _now()
    db.flush()

    logger.info("Invoice completed", extra={"context": {"invoice_id": invoice.id, "pdf_url": pdf_url}})
    return invoice


def build_edit_url(invoice_id: str) -> str:
    return f"{settings.app_base_url.rstrip('/')}/invoice/{invoice_id}"


def to_response(invoice: Invoice) -> InvoiceResponse:
    return InvoiceResponse(
        id=invoice.id,
        chat_id=invoice.chat_id,
        message_id=invoice.message_id,
        status=invoice.status,
        data=load_invoice_data(invoice),
        pdf_url=invoice.pdf_url,
        created_at=invoice.created_at,
        updated_at=invoice.updated_at,
    )
