import json

from invoice_bot.models import ConversationStateRecord
from invoice_bot.services.state_machine import ConversationPhase
from invoice_bot.services.state_service import (
    create_conversation_state,
    delete_conversation_state,
    get_active_state,
    get_expired_states,
    load_state_payload,
)


class TestCreateConversationState:
    def test_persists_payload_and_expiry(self, db_session):
        state = create_conversation_state(
            db_session,
            chat_id="oc_1",
            message_id="om_1",
            phase=ConversationPhase.AWAITING_ISSUER_SELECTION,
            payload={"recipient": {"name": "株式会社ABC"}},
            ttl_seconds=300,
            now=1000,
        )
        db_session.commit()

        stored = db_session.query(ConversationStateRecord).filter_by(id=state.id).one()
        assert stored.state == "awaiting_issuer_selection"
        assert stored.created_at == 1000
        assert stored.expires_at == 1300
        assert json.loads(stored.data) == {"recipient": {"name": "株式会社ABC"}}

    def test_default_ttl_from_settings(self, db_session):
        state = create_conversation_state(
            db_session, "oc_1", "om_1", ConversationPhase.AWAITING_ISSUER_SELECTION, {}, now=0
        )
        assert state.expires_at == 300


class TestGetActiveState:
    def test_returns_latest_unexpired(self, make_state, db_session):
        make_state(message_id="om_old", now=1000)
        newer = make_state(message_id="om_new", now=1010)

        active = get_active_state(db_session, "oc_chat", now=1100)
        assert active.id == newer.id

    def test_expired_state_is_invisible(self, make_state, db_session):
        make_state(now=1000, ttl_seconds=300)

        assert get_active_state(db_session, "oc_chat", now=1299) is not None
        assert get_active_state(db_session, "oc_chat", now=1300) is None

    def test_other_chat_not_returned(self, make_state, db_session):
        make_state(chat_id="oc_other", now=1000)
        assert get_active_state(db_session, "oc_chat", now=1000) is None


class TestDeleteConversationState:
    def test_deletes_once(self, make_state, db_session):
        state = make_state()
        state_id = state.id

        assert delete_conversation_state(db_session, state_id) is True
        db_session.commit()
        assert delete_conversation_state(db_session, state_id) is False

    def test_unknown_id(self, db_session):
        assert delete_conversation_state(db_session, "missing") is False


class TestGetExpiredStates:
    def test_boundary_is_inclusive(self, make_state, db_session):
        expired = make_state(chat_id="oc_a", now=1000, ttl_seconds=300)
        make_state(chat_id="oc_b", now=1001, ttl_seconds=300)

        result = get_expired_states(db_session, now=1300)
        assert [state.id for state in result] == [expired.id]


class TestLoadStatePayload:
    def test_valid_payload(self, make_state):
        state = make_state(payload={"items": []})
        result = load_state_payload(state)
        assert result.ok is True
        assert result.value == {"items": []}

    def test_invalid_json(self):
        record = ConversationStateRecord(data="{not json")
        result = load_state_payload(record)
        assert result.ok is False
        assert result.error_code == "corrupt_state"

    def test_non_object_payload(self):
        record = ConversationStateRecord(data="[1, 2]")
        result = load_state_payload(record)
        assert result.ok is False
        assert result.error_code == "corrupt_state"
