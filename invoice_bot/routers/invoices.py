"""Invoice draft API used by the web editor."""

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from invoice_bot.database import get_db
from invoice_bot.logging_config import get_logger
from invoice_bot.schemas.invoice import InvoiceData, InvoiceResponse, InvoiceSendResponse, InvoiceUpdateResponse
from invoice_bot.services import bot_messages
from invoice_bot.services.invoice_service import (
    complete_invoice,
    get_invoice,
    load_invoice_data,
    to_response,
    update_invoice_data,
)
from invoice_bot.services.lark_service import LarkService, get_lark_service
from invoice_bot.services.pdf_service import build_pdf_file_name, generate_invoice_pdf

logger = get_logger("invoices")

router = APIRouter(prefix="/invoices", tags=["invoices"])


def _get_or_404(db: Session, invoice_id: str):
    invoice = get_invoice(db, invoice_id)
    if not invoice:
        raise HTTPException(status_code=404, detail="Invoice not found")
    return invoice


@router.get("/{invoice_id}", response_model=InvoiceResponse)
def read_invoice(invoice_id: str, db: Session = Depends(get_db)):
    return to_response(_get_or_404(db, invoice_id))


@router.put("/{invoice_id}", response_model=InvoiceUpdateResponse)
def update_invoice(invoice_id: str, body: InvoiceData, db: Session = Depends(get_db)):
    """Replace the draft payload; subtotal, tax and total are recomputed from the items."""
    invoice = _get_or_404(db, invoice_id)
    update_invoice_data(db, invoice, body.model_dump(exclude_none=True))
    db.commit()
    db.refresh(invoice)

    logger.info("Invoice updated", extra={"context": {"invoice_id": invoice_id}})
    return InvoiceUpdateResponse(success=True, invoice=to_response(invoice))


@router.post("/{invoice_id}/send", response_model=InvoiceSendResponse)
async def send_invoice(
    invoice_id: str,
    db: Session = Depends(get_db),
    lark: LarkService = Depends(get_lark_service),
):
    """
    Render the invoice PDF and post it to the chat the draft came from:
    - upload PDF to Lark, send it as a file message in the source thread
    - mark the invoice completed with the Lark file key
    - send a completion text
    """
    invoice = _get_or_404(db, invoice_id)
    chat_id = invoice.chat_id
    reply_to = invoice.message_id

    try:
        data = load_invoice_data(invoice)
        file_name = build_pdf_file_name(data)
        pdf_bytes = generate_invoice_pdf(data)

        file_key = await lark.upload_file(pdf_bytes, file_name, file_type="pdf")
        await lark.send_file_message(chat_id, file_key, reply_to=reply_to)

        complete_invoice(db, invoice, f"lark://file/{file_key}")
        db.commit()

        await lark.send_text_message(chat_id, bot_messages.PDF_SENT.format(file_name=file_name), reply_to=reply_to)
    except Exception as e:
        db.rollback()
        logger.error(
            f"Failed to send invoice: {e}",
            exc_info=True,
            extra={"context": {"invoice_id": invoice_id, "chat_id": chat_id}},
        )
        raise HTTPException(status_code=500, detail=f"Failed to send invoice: {e}") from e

    return InvoiceSendResponse(success=True, message="PDF sent to Lark", file_name=file_name)
