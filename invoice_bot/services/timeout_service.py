from collections import OrderedDict
from typing import Optional

from sqlalchemy.orm import Session

from invoice_bot.config import settings
from invoice_bot.logging_config import get_logger
from invoice_bot.models import ConversationStateRecord
from invoice_bot.services import bot_messages
from invoice_bot.services.dedup_service import ExpiringIdSet
from invoice_bot.services.lark_service import LarkService
from invoice_bot.services.state_service import delete_conversation_state, get_expired_states

logger = get_logger("timeout_service")

# Chats told about a timeout recently; keeps a chat whose old rows are still
# being cleared from getting the notice again on the next sweep.
notified_chats = ExpiringIdSet(ttl_seconds=settings.notified_ttl_seconds)


def group_by_chat(states: list[ConversationStateRecord]) -> "OrderedDict[str, list[tuple[str, str]]]":
    """chat_id -> [(state_id, message_id), ...], in sweep order."""
    groups: OrderedDict[str, list[tuple[str, str]]] = OrderedDict()
    for state in states:
        groups.setdefault(state.chat_id, []).append((state.id, state.message_id))
    return groups


async def handle_expired_conversations(
    db: Session,
    lark: LarkService,
    notified: Optional[ExpiringIdSet] = None,
    now: Optional[int] = None,
) -> dict:
    """One sweep: notify each chat with expired states once, then delete those states.

    A failure for one chat is logged and does not stop the others.
    """
    notified = notified if notified is not None else notified_chats
    expired = get_expired_states(db, now=now)
    summary = {"chats": 0, "deleted": 0, "notified": 0, "failed": 0}
    if not expired:
        return summary

    groups = group_by_chat(expired)
    summary["chats"] = len(groups)

    for chat_id, states in groups.items():
        state_ids = [state_id for state_id, _ in states]
        reply_to = states[0][1]
        try:
            if chat_id not in notified:
                await lark.send_text_message(chat_id, bot_messages.TIMEOUT_NOTICE, reply_to=reply_to)
                notified.add(chat_id)
                summary["notified"] += 1

            deleted = sum(1 for state_id in state_ids if delete_conversation_state(db, state_id))
            db.commit()
            summary["deleted"] += deleted

            logger.info(
                "Expired conversations cleaned up",
                extra={"context": {"chat_id": chat_id, "states": deleted}},
            )
        except Exception as e:
            db.rollback()
            summary["failed"] += 1
            logger.error(
                f"Error handling expired conversations for chat {chat_id}: {e}",
                exc_info=True,
                extra={"context": {"chat_id": chat_id, "state_ids": state_ids}},
            )

    return summary
