from dataclasses import dataclass
from typing import Optional

from invoice_bot.config import Settings, settings
from invoice_bot.services.bot_messages import SELECTION_PROMPT_FOOTER, SELECTION_PROMPT_HEADER

PATTERN_NUMBERS = (1, 2)


@dataclass(frozen=True)
class IssuerPattern:
    number: int
    name: str  # contact person
    company: str
    address: str
    postal_code: str
    phone: str
    email: str
    bank_info: str

    def to_issuer(self) -> dict:
        """Issuer block written into a draft. The company is the issuer name."""
        return {
            "name": self.company,
            "address": self.address,
            "postalCode": self.postal_code,
            "phone": self.phone,
            "email": self.email,
        }

    def bank_transfer_text(self) -> str:
        return f"{self.bank_info}\n\n担当者: {self.name}"


def get_issuer_pattern(number: int, config: Optional[Settings] = None) -> IssuerPattern:
    if number not in PATTERN_NUMBERS:
        raise ValueError(f"Unknown issuer pattern: {number}")
    config = config or settings
    prefix = f"default_issuer_{number}_"
    return IssuerPattern(
        number=number,
        name=getattr(config, prefix + "name"),
        company=getattr(config, prefix + "company"),
        address=getattr(config, prefix + "address"),
        postal_code=getattr(config, prefix + "postal_code"),
        phone=getattr(config, prefix + "phone"),
        email=getattr(config, prefix + "email"),
        bank_info=getattr(config, prefix + "bank_info"),
    )


def build_selection_message(config: Optional[Settings] = None) -> str:
    blocks = [SELECTION_PROMPT_HEADER]
    for number in PATTERN_NUMBERS:
        pattern = get_issuer_pattern(number, config)
        blocks.append(
            f"**パターン{number}**\n"
            f"名前: {pattern.name}\n"
            f"会社: {pattern.company}\n"
            f"住所: {pattern.address}\n"
            f"{pattern.bank_info}"
        )
    blocks.append(SELECTION_PROMPT_FOOTER)
    return "\n\n".join(blocks)
