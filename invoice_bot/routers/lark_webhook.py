import json

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from sqlalchemy.orm import Session

from invoice_bot.database import get_db
from invoice_bot.logging_config import get_logger
from invoice_bot.schemas.lark import MESSAGE_RECEIVE_EVENT, LarkEventHeader, LarkMessageEvent, LarkWebhookResponse
from invoice_bot.services.dedup_service import IdCache, get_event_cache, get_message_cache
from invoice_bot.services.lark_service import LarkService, get_lark_service
from invoice_bot.services.llm import InvoiceExtractor, get_extractor
from invoice_bot.services.router_service import DUPLICATE, route_message

logger = get_logger("lark_webhook")

router = APIRouter()


def _bad_request(error: str) -> JSONResponse:
    return JSONResponse(status_code=400, content={"error": error})


@router.post("/lark/webhook", response_model=LarkWebhookResponse, response_model_exclude_none=True)
async def handle_lark_webhook(
    request: Request,
    db: Session = Depends(get_db),
    lark: LarkService = Depends(get_lark_service),
    extractor: InvoiceExtractor = Depends(get_extractor),
    event_cache: IdCache = Depends(get_event_cache),
    message_cache: IdCache = Depends(get_message_cache),
):
    """
    Handle Lark event callbacks:
    - url_verification -> echo the challenge
    - im.message.receive_v1 from a user -> route the message
    - everything else -> acknowledged without work
    """
    raw = (await request.body()).decode("utf-8", errors="replace")
    if not raw.strip():
        return _bad_request("Empty request body")

    try:
        body = json.loads(raw)
    except ValueError:
        logger.warning("Lark webhook body is not JSON", extra={"context": {"body": raw[:200]}})
        return _bad_request("Invalid JSON")
    if not isinstance(body, dict):
        return _bad_request("Request body must be a JSON object")

    if body.get("type") == "url_verification":
        return JSONResponse(content={"challenge": body.get("challenge")})

    if "encrypt" in body:
        logger.warning("Encrypted Lark event received")
        return _bad_request("Encrypted events are not supported; disable the encrypt key")

    header_data = body.get("header")
    if body.get("schema") != "2.0" or not isinstance(header_data, dict):
        logger.warning("Unknown Lark envelope", extra={"context": {"keys": sorted(body.keys())}})
        return _bad_request("Unsupported event envelope")

    try:
        header = LarkEventHeader(**header_data)
    except ValidationError as e:
        logger.warning(f"Invalid Lark event header: {e.error_count()} errors")
        return _bad_request("Invalid event header")

    if header.event_id and await event_cache.seen_or_add(header.event_id):
        logger.info("Duplicate Lark event", extra={"context": {"event_id": header.event_id}})
        return LarkWebhookResponse(status="duplicate")

    if header.event_type != MESSAGE_RECEIVE_EVENT:
        logger.debug(f"Ignoring Lark event type: {header.event_type}")
        return LarkWebhookResponse(status="ignored")

    try:
        event = LarkMessageEvent(**(body.get("event") or {}))
    except (TypeError, ValidationError) as e:
        logger.warning(f"Invalid Lark message event: {e}", extra={"context": {"event_id": header.event_id}})
        return _bad_request("Invalid message event")

    if not event.is_from_user:
        return LarkWebhookResponse(status="skipped")

    outcome = await route_message(
        db,
        event,
        lark=lark,
        extractor=extractor,
        message_cache=message_cache,
    )
    if outcome == DUPLICATE:
        return LarkWebhookResponse(status="duplicate")
    return LarkWebhookResponse(status="ok")
