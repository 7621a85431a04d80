import json
import time
from typing import Any, Optional

from sqlalchemy.orm import Session

from invoice_bot.config import settings
from invoice_bot.logging_config import get_logger
from invoice_bot.models import ConversationStateRecord
from invoice_bot.services.result import Result
from invoice_bot.services.state_machine import ConversationPhase

logger = get_logger("state_service")


def now_ts() -> int:
    return int(time.time())


def create_conversation_state(
    db: Session,
    chat_id: str,
    message_id: str,
    phase: ConversationPhase,
    payload: Any,
    ttl_seconds: Optional[int] = None,
    now: Optional[int] = None,
) -> ConversationStateRecord:
    """Persist a new conversation state expiring `ttl_seconds` from now."""
    created_at = now if now is not None else now_ts()
    ttl = ttl_seconds if ttl_seconds is not None else settings.selection_ttl_seconds

    record = ConversationStateRecord(
        chat_id=chat_id,
        message_id=message_id,
        state=phase.value,
        data=json.dumps(payload, ensure_ascii=False),
        created_at=created_at,
        expires_at=created_at + ttl,
    )
    db.add(record)
    db.flush()

    logger.info(
        "Conversation state created",
        extra={"context": {"state_id": record.id, "chat_id": chat_id, "phase": phase.value, "ttl": ttl}},
    )
    return record


def get_active_state(db: Session, chat_id: str, now: Optional[int] = None) -> Optional[ConversationStateRecord]:
    """Latest non-expired state for the chat. Expired rows are invisible even before the sweep deletes them."""
    current = now if now is not None else now_ts()
    return (
        db.query(ConversationStateRecord)
        .filter(ConversationStateRecord.chat_id == chat_id, ConversationStateRecord.expires_at > current)
        .order_by(ConversationStateRecord.created_at.desc())
        .first()
    )


def delete_conversation_state(db: Session, state_id: str) -> bool:
    """Delete by record id. Returns False when another handler already removed it."""
    deleted = (
        db.query(ConversationStateRecord)
        .filter(ConversationStateRecord.id == state_id)
        .delete(synchronize_session=False)
    )
    db.flush()
    return deleted > 0


def get_expired_states(db: Session, now: Optional[int] = None) -> list[ConversationStateRecord]:
    current = now if now is not None else now_ts()
    return (
        db.query(ConversationStateRecord)
        .filter(ConversationStateRecord.expires_at <= current)
        .order_by(ConversationStateRecord.created_at)
        .all()
    )


def load_state_payload(record: ConversationStateRecord) -> Result[dict]:
    """Parse the draft payload saved with a state."""
    try:
        payload = json.loads(record.data)
    except (TypeError, ValueError) as e:
        return Result.from_exception(e, "corrupt_state")
    if not isinstance(payload, dict):
        return Result.failure("Saved payload is not an object", "corrupt_state")
    return Result.success(payload)
