from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

Number = Union[int, float]


class InvoiceRecipient(BaseModel):
    name: str = ""
    address: Optional[str] = None
    postalCode: Optional[str] = None

    model_config = ConfigDict(extra="ignore")


class InvoiceIssuer(BaseModel):
    name: str = ""
    address: Optional[str] = None
    postalCode: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    bankInfo: Optional[str] = None

    model_config = ConfigDict(extra="ignore")


class InvoiceItem(BaseModel):
    description: str = ""
    quantity: Number = 0
    unitPrice: Number = 0
    amount: Number = 0

    @field_validator("description", mode="before")
    @classmethod
    def _none_description(cls, value: Any) -> Any:
        return "" if value is None else value

    @field_validator("quantity", "unitPrice", "amount", mode="before")
    @classmethod
    def _none_number(cls, value: Any) -> Any:
        return 0 if value is None else value


class InvoiceData(BaseModel):
    invoiceNumber: Optional[str] = None
    issueDate: Optional[str] = None
    dueDate: Optional[str] = None
    recipient: InvoiceRecipient = Field(default_factory=InvoiceRecipient)
    issuer: InvoiceIssuer = Field(default_factory=InvoiceIssuer)
    items: list[InvoiceItem] = Field(default_factory=list)
    subtotal: Number = 0
    tax: Number = 0
    total: Number = 0
    notes: Optional[str] = None

    model_config = ConfigDict(extra="ignore")

    @field_validator("recipient", "issuer", mode="before")
    @classmethod
    def _none_party(cls, value: Any) -> Any:
        return {} if value is None else value

    @field_validator("items", mode="before")
    @classmethod
    def _none_items(cls, value: Any) -> Any:
        return [] if value is None else value


class InvoiceResponse(BaseModel):
    id: str
    chat_id: str
    message_id: Optional[str] = None
    status: str
    data: dict
    pdf_url: Optional[str] = None
    created_at: int
    updated_at: int


class InvoiceUpdateResponse(BaseModel):
    success: bool
    invoice: InvoiceResponse


class InvoiceSendResponse(BaseModel):
    success: bool
    message: str
    file_name: str
