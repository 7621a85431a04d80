from invoice_bot.schemas.invoice import InvoiceData, InvoiceResponse
from invoice_bot.schemas.lark import LarkMessageEvent, LarkWebhookResponse

__all__ = ["InvoiceData", "InvoiceResponse", "LarkMessageEvent", "LarkWebhookResponse"]
