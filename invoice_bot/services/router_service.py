import re

from sqlalchemy.orm import Session

from invoice_bot.logging_config import chat_logger, get_logger
from invoice_bot.schemas.lark import (
    AudioMessage,
    ImageMessage,
    LarkMessageEvent,
    TextMessage,
    UnsupportedMessage,
    classify_message,
)
from invoice_bot.services import bot_messages
from invoice_bot.services.dedup_service import IdCache
from invoice_bot.services.lark_service import LarkService
from invoice_bot.services.llm.base import ExtractionError, ExtractionPayload, InvoiceExtractor, Modality
from invoice_bot.services.selection_service import handle_selection_reply, start_issuer_selection
from invoice_bot.services.state_machine import InvalidTransitionError, is_awaiting_selection
from invoice_bot.services.state_service import get_active_state

logger = get_logger("router")

HANDLED = "handled"
DUPLICATE = "duplicate"
IGNORED = "ignored"

IMAGE_MIME_TYPE = "image/jpeg"
AUDIO_MIME_TYPE = "audio/mpeg"

_MENTION_RE = re.compile(r"@_(?:user_\d+|all)")
_BARE_URL_RE = re.compile(r"^https?://\S+$", re.IGNORECASE)


def clean_text(text: str) -> str:
    """Drop Lark mention placeholders and surrounding whitespace."""
    return _MENTION_RE.sub("", text or "").strip()


def is_bare_url(text: str) -> bool:
    return bool(_BARE_URL_RE.match(text))


def is_bot_echo(text: str) -> bool:
    return any(marker in text for marker in bot_messages.BOT_ECHO_MARKERS)


async def route_message(
    db: Session,
    event: LarkMessageEvent,
    *,
    lark: LarkService,
    extractor: InvoiceExtractor,
    message_cache: IdCache,
) -> str:
    """Dispatch one inbound user message. Never raises; failures become a chat reply."""
    message = event.message
    chat_id = message.chat_id
    message_id = message.message_id
    log = chat_logger(logger, chat_id, message_id)

    if await message_cache.seen_or_add(message_id):
        log.info("Duplicate message skipped")
        return DUPLICATE

    try:
        inbound = classify_message(message)
        log.info(f"Received {message.message_type} message")

        if isinstance(inbound, TextMessage):
            return await _handle_text(db, inbound, chat_id, message_id, lark=lark, extractor=extractor)
        if isinstance(inbound, ImageMessage):
            return await _handle_media(
                db,
                chat_id,
                message_id,
                modality=Modality.IMAGE,
                resource_key=inbound.image_key,
                lark=lark,
                extractor=extractor,
            )
        if isinstance(inbound, AudioMessage):
            return await _handle_media(
                db,
                chat_id,
                message_id,
                modality=Modality.AUDIO,
                resource_key=inbound.file_key,
                lark=lark,
                extractor=extractor,
            )
        if isinstance(inbound, UnsupportedMessage):
            log.info(f"Unsupported message type: {inbound.message_type}")
            await lark.send_text_message(chat_id, bot_messages.UNSUPPORTED_MESSAGE_TYPE, reply_to=message_id)
            return HANDLED
        raise TypeError(f"Unhandled message variant: {type(inbound).__name__}")
    except Exception as e:
        db.rollback()
        log.error(f"Error handling message: {e}", exc_info=True)
        await _send_quietly(lark, chat_id, bot_messages.GENERIC_ERROR, message_id)
        return HANDLED


async def _handle_text(
    db: Session,
    inbound: TextMessage,
    chat_id: str,
    message_id: str,
    *,
    lark: LarkService,
    extractor: InvoiceExtractor,
) -> str:
    text = clean_text(inbound.text)
    if not text:
        return IGNORED
    if is_bare_url(text) or is_bot_echo(text):
        logger.info("Ignoring link preview or bot echo", extra={"context": {"chat_id": chat_id}})
        return IGNORED

    state = get_active_state(db, chat_id)
    if is_awaiting_selection(state):
        await handle_selection_reply(db, lark, state, message_id, text)
        return HANDLED

    await lark.send_text_message(chat_id, bot_messages.ANALYZING_TEXT, reply_to=message_id)
    await _extract_and_start_selection(
        db, chat_id, message_id, ExtractionPayload.from_text(text), lark=lark, extractor=extractor
    )
    return HANDLED


async def _handle_media(
    db: Session,
    chat_id: str,
    message_id: str,
    *,
    modality: Modality,
    resource_key: str,
    lark: LarkService,
    extractor: InvoiceExtractor,
) -> str:
    # One draft per chat: a parked selection blocks new extractions.
    if get_active_state(db, chat_id) is not None:
        await lark.send_text_message(chat_id, bot_messages.SELECTION_PENDING, reply_to=message_id)
        return HANDLED

    if modality == Modality.IMAGE:
        await lark.send_text_message(chat_id, bot_messages.ANALYZING_IMAGE, reply_to=message_id)
        data = await lark.download_image(message_id, resource_key)
        payload = ExtractionPayload.from_media(modality, data, IMAGE_MIME_TYPE)
    else:
        await lark.send_text_message(chat_id, bot_messages.ANALYZING_AUDIO, reply_to=message_id)
        data = await lark.download_file(message_id, resource_key)
        payload = ExtractionPayload.from_media(modality, data, AUDIO_MIME_TYPE)

    await _extract_and_start_selection(db, chat_id, message_id, payload, lark=lark, extractor=extractor)
    return HANDLED


async def _extract_and_start_selection(
    db: Session,
    chat_id: str,
    message_id: str,
    payload: ExtractionPayload,
    *,
    lark: LarkService,
    extractor: InvoiceExtractor,
) -> None:
    try:
        invoice_data = await extractor.extract_invoice_data(payload)
    except ExtractionError as e:
        logger.warning(
            f"Extraction failed: {e}",
            extra={"context": {"chat_id": chat_id, "modality": payload.modality.value}},
        )
        await lark.send_text_message(chat_id, bot_messages.EXTRACTION_FAILED.format(error=e), reply_to=message_id)
        return

    try:
        await start_issuer_selection(db, lark, chat_id, message_id, invoice_data)
    except InvalidTransitionError:
        # Another message for this chat parked a draft while we were extracting.
        db.rollback()
        await lark.send_text_message(chat_id, bot_messages.SELECTION_PENDING, reply_to=message_id)


async def _send_quietly(lark: LarkService, chat_id: str, text: str, reply_to: str) -> None:
    try:
        await lark.send_text_message(chat_id, text, reply_to=reply_to)
    except Exception as e:
        logger.error(f"Failed to send error reply: {e}", extra={"context": {"chat_id": chat_id}})
