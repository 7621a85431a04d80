from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Optional


class Modality(str, Enum):
    TEXT = "text"
    IMAGE = "image"
    AUDIO = "audio"


@dataclass(frozen=True)
class ExtractionPayload:
    modality: Modality
    text: Optional[str] = None
    data: Optional[bytes] = None
    mime_type: Optional[str] = None

    @classmethod
    def from_text(cls, text: str) -> "ExtractionPayload":
        return cls(modality=Modality.TEXT, text=text)

    @classmethod
    def from_media(cls, modality: Modality, data: bytes, mime_type: str) -> "ExtractionPayload":
        return cls(modality=modality, data=data, mime_type=mime_type)


class ExtractionError(Exception):
    """The model could not produce usable invoice data."""


class InvoiceExtractor(ABC):
    """Abstract base class for invoice extraction providers."""

    @abstractmethod
    async def extract_invoice_data(self, payload: ExtractionPayload) -> dict:
        """Return a normalized invoice payload or raise ExtractionError."""
        pass
