from invoice_bot.services.llm.base import ExtractionError, ExtractionPayload, InvoiceExtractor, Modality
from invoice_bot.services.llm.gemini_provider import GeminiProvider, get_extractor

__all__ = [
    "ExtractionError",
    "ExtractionPayload",
    "GeminiProvider",
    "InvoiceExtractor",
    "Modality",
    "get_extractor",
]
