"""Interactive issuer selection.

After extraction the draft payload is parked in a conversation state and the
user is asked to choose issuer pattern 1 or 2. Every later text message in the
chat is read as a reply to that question until the state is consumed,
cancelled or expires.
"""

import copy
import re
import unicodedata
from enum import Enum
from typing import Optional

from pydantic import ValidationError
from sqlalchemy.orm import Session

from invoice_bot.logging_config import chat_logger, get_logger
from invoice_bot.models import ConversationStateRecord
from invoice_bot.services import bot_messages
from invoice_bot.services.invoice_service import build_edit_url, create_invoice_draft
from invoice_bot.services.issuer_patterns import IssuerPattern, build_selection_message, get_issuer_pattern
from invoice_bot.services.lark_service import LarkService
from invoice_bot.services.state_machine import (
    await_selection,
    finish_selection,
    phase_of,
)
from invoice_bot.services.state_service import (
    create_conversation_state,
    delete_conversation_state,
    get_active_state,
    load_state_payload,
)

logger = get_logger("selection")

CANCEL_KEYWORDS = ("cancel", "キャンセル", "取消", "取り消し", "中止", "やめる")
_SELECTION_RE = re.compile(r"^([12])\.?$")


class SelectionOutcome(str, Enum):
    CANCELLED = "cancelled"
    COMPLETED = "completed"
    INVALID = "invalid"
    ALREADY_HANDLED = "already_handled"
    CORRUPT_STATE = "corrupt_state"


def is_cancel_message(text: str) -> bool:
    normalized = unicodedata.normalize("NFKC", text or "").casefold()
    return any(keyword in normalized for keyword in CANCEL_KEYWORDS)


def parse_issuer_choice(text: str) -> Optional[int]:
    """`1`, `2`, `1.` (full-width digits accepted) -> pattern number; anything else -> None."""
    normalized = unicodedata.normalize("NFKC", text or "").strip()
    match = _SELECTION_RE.match(normalized)
    return int(match.group(1)) if match else None


def apply_issuer_pattern(payload: dict, pattern: IssuerPattern) -> dict:
    """Copy of the draft with the issuer replaced and bank transfer details appended to notes."""
    draft = copy.deepcopy(payload)
    draft["issuer"] = pattern.to_issuer()

    bank_text = pattern.bank_transfer_text()
    notes = draft.get("notes")
    if isinstance(notes, str) and notes.strip():
        draft["notes"] = f"{notes}\n\n{bank_text}"
    else:
        draft["notes"] = bank_text
    return draft


async def start_issuer_selection(
    db: Session,
    lark: LarkService,
    chat_id: str,
    message_id: str,
    payload: dict,
) -> ConversationStateRecord:
    """Park the extracted draft and ask which issuer pattern to use."""
    # Raises InvalidTransitionError when another extraction already parked a draft for this chat.
    phase = await_selection(phase_of(get_active_state(db, chat_id)))

    state = create_conversation_state(
        db,
        chat_id=chat_id,
        message_id=message_id,
        phase=phase,
        payload=payload,
    )
    db.commit()

    await lark.send_text_message(chat_id, build_selection_message(), reply_to=message_id)
    return state


async def handle_selection_reply(
    db: Session,
    lark: LarkService,
    state: ConversationStateRecord,
    message_id: str,
    text: str,
) -> SelectionOutcome:
    """Apply one text reply to an active selection state."""
    # Read everything needed up front; the row is gone once the deletion commits.
    chat_id = state.chat_id
    state_id = state.id
    source_message_id = state.message_id
    phase = phase_of(state)
    payload_result = load_state_payload(state)
    log = chat_logger(logger, chat_id, message_id)

    if is_cancel_message(text):
        delete_conversation_state(db, state_id)
        db.commit()
        finish_selection(phase)
        log.info("Issuer selection cancelled", context={"state_id": state_id})
        await lark.send_text_message(chat_id, bot_messages.SELECTION_CANCELLED, reply_to=message_id)
        return SelectionOutcome.CANCELLED

    choice = parse_issuer_choice(text)
    if choice is None:
        log.info("Invalid issuer selection", context={"state_id": state_id, "text": text[:50]})
        await lark.send_text_message(chat_id, bot_messages.SELECTION_REPROMPT, reply_to=message_id)
        return SelectionOutcome.INVALID

    # Claim the state by id; a concurrent handler that got there first leaves nothing to delete.
    if not delete_conversation_state(db, state_id):
        db.rollback()
        log.info("Issuer selection already handled", context={"state_id": state_id})
        return SelectionOutcome.ALREADY_HANDLED
    finish_selection(phase)

    if not payload_result.ok:
        db.commit()
        log.error("Saved draft payload unreadable", context={"state_id": state_id, "error": payload_result.error})
        await lark.send_text_message(chat_id, bot_messages.CORRUPT_STATE, reply_to=message_id)
        return SelectionOutcome.CORRUPT_STATE

    pattern = get_issuer_pattern(choice)
    draft = apply_issuer_pattern(payload_result.value, pattern)
    try:
        invoice = create_invoice_draft(db, chat_id, source_message_id, draft)
    except ValidationError as e:
        db.commit()
        log.error("Saved draft payload invalid", context={"state_id": state_id, "errors": e.error_count()})
        await lark.send_text_message(chat_id, bot_messages.CORRUPT_STATE, reply_to=message_id)
        return SelectionOutcome.CORRUPT_STATE
    db.commit()

    log.info("Invoice draft finalized", context={"invoice_id": invoice.id, "pattern": choice})
    await lark.send_text_message(
        chat_id,
        bot_messages.DRAFT_CREATED.format(pattern=choice, url=build_edit_url(invoice.id)),
        reply_to=message_id,
    )
    return SelectionOutcome.COMPLETED
