import asyncio
import json

import pytest

from invoice_bot.models import ConversationStateRecord, Invoice
from invoice_bot.schemas.lark import LarkMessageEvent
from invoice_bot.services import bot_messages
from invoice_bot.services.dedup_service import BoundedIdCache
from invoice_bot.services.llm.base import ExtractionError, Modality
from invoice_bot.services.router_service import (
    DUPLICATE,
    HANDLED,
    IGNORED,
    clean_text,
    is_bare_url,
    is_bot_echo,
    route_message,
)
from tests.helpers import FakeExtractor


def make_event(message_type="text", content=None, message_id="om_1", chat_id="oc_chat"):
    if content is None:
        content = {"text": "株式会社ABCにコンサル費用10万円を請求"}
    return LarkMessageEvent(
        sender={"sender_type": "user", "sender_id": {"open_id": "ou_1"}},
        message={
            "message_id": message_id,
            "chat_id": chat_id,
            "message_type": message_type,
            "content": json.dumps(content, ensure_ascii=False),
        },
    )


def route(db_session, event, lark, extractor, cache=None):
    return asyncio.run(
        route_message(
            db_session,
            event,
            lark=lark,
            extractor=extractor,
            message_cache=cache if cache is not None else BoundedIdCache(),
        )
    )


class TestTextHelpers:
    def test_clean_text_strips_mentions(self):
        assert clean_text("@_user_1 請求書 @_all ") == "請求書"

    def test_bare_url(self):
        assert is_bare_url("https://example.com/path?q=1") is True
        assert is_bare_url("見積 https://example.com") is False

    def test_bot_echo(self):
        assert is_bot_echo(bot_messages.TIMEOUT_NOTICE) is True
        assert is_bot_echo("パターン1で請求書の下書きを作成しました！") is True
        assert is_bot_echo("請求書を作ってください") is False


class TestRouteText:
    def test_text_starts_selection(self, db_session, lark, extractor, sent_texts):
        outcome = route(db_session, make_event(), lark, extractor)

        assert outcome == HANDLED
        assert extractor.payloads[0].modality == Modality.TEXT
        assert extractor.payloads[0].text == "株式会社ABCにコンサル費用10万円を請求"
        assert db_session.query(ConversationStateRecord).count() == 1

        texts = sent_texts()
        assert texts[0] == bot_messages.ANALYZING_TEXT
        assert texts[1].startswith(bot_messages.SELECTION_PROMPT_HEADER)

    def test_duplicate_message_is_dropped(self, db_session, lark, extractor):
        cache = BoundedIdCache()
        assert route(db_session, make_event(), lark, extractor, cache) == HANDLED
        lark.send_text_message.reset_mock()

        assert route(db_session, make_event(), lark, extractor, cache) == DUPLICATE
        lark.send_text_message.assert_not_awaited()
        assert len(extractor.payloads) == 1

    @pytest.mark.parametrize(
        "text",
        ["@_user_1", "   ", "https://example.com/invoice/123", bot_messages.SELECTION_PROMPT_HEADER],
    )
    def test_silently_ignored(self, db_session, lark, extractor, text):
        outcome = route(db_session, make_event(content={"text": text}), lark, extractor)

        assert outcome == IGNORED
        lark.send_text_message.assert_not_awaited()
        assert extractor.payloads == []

    def test_active_state_routes_to_selection(self, db_session, lark, extractor, make_state, sent_texts):
        make_state()

        outcome = route(db_session, make_event(content={"text": "@_user_1 1"}, message_id="om_2"), lark, extractor)

        assert outcome == HANDLED
        assert extractor.payloads == []
        assert db_session.query(Invoice).count() == 1
        assert db_session.query(ConversationStateRecord).count() == 0
        assert "請求書の下書きを作成しました" in sent_texts()[0]

    def test_extraction_failure_reports_error(self, db_session, lark, sent_texts):
        extractor = FakeExtractor(error=ExtractionError("Gemini returned no content"))

        outcome = route(db_session, make_event(), lark, extractor)

        assert outcome == HANDLED
        assert db_session.query(ConversationStateRecord).count() == 0
        assert sent_texts()[-1] == bot_messages.EXTRACTION_FAILED.format(error="Gemini returned no content")


class TestRouteMedia:
    def test_image_is_downloaded_and_extracted(self, db_session, lark, extractor, sent_texts):
        event = make_event(message_type="image", content={"image_key": "img_v2_1"})

        outcome = route(db_session, event, lark, extractor)

        assert outcome == HANDLED
        lark.download_image.assert_awaited_once_with("om_1", "img_v2_1")
        payload = extractor.payloads[0]
        assert payload.modality == Modality.IMAGE
        assert payload.mime_type == "image/jpeg"
        assert payload.data == b"\xff\xd8image"
        assert sent_texts()[0] == bot_messages.ANALYZING_IMAGE
        assert db_session.query(ConversationStateRecord).count() == 1

    def test_audio_goes_through_selection(self, db_session, lark, extractor, sent_texts):
        event = make_event(message_type="audio", content={"file_key": "file_v3_1", "duration": 4000})

        outcome = route(db_session, event, lark, extractor)

        assert outcome == HANDLED
        lark.download_file.assert_awaited_once_with("om_1", "file_v3_1")
        assert extractor.payloads[0].mime_type == "audio/mpeg"
        assert sent_texts()[0] == bot_messages.ANALYZING_AUDIO
        assert sent_texts()[1].startswith(bot_messages.SELECTION_PROMPT_HEADER)
        assert db_session.query(Invoice).count() == 0

    @pytest.mark.parametrize(
        "message_type,content",
        [("image", {"image_key": "img_v2_1"}), ("audio", {"file_key": "file_v3_1"})],
    )
    def test_pending_selection_blocks_media(self, db_session, lark, extractor, make_state, sent_texts, message_type, content):
        make_state()

        outcome = route(db_session, make_event(message_type=message_type, content=content), lark, extractor)

        assert outcome == HANDLED
        assert extractor.payloads == []
        lark.download_image.assert_not_awaited()
        lark.download_file.assert_not_awaited()
        assert sent_texts() == [bot_messages.SELECTION_PENDING]
        assert db_session.query(ConversationStateRecord).count() == 1


class TestRouteOther:
    def test_unsupported_type(self, db_session, lark, extractor, sent_texts):
        outcome = route(db_session, make_event(message_type="sticker", content={"file_key": "x"}), lark, extractor)

        assert outcome == HANDLED
        assert sent_texts() == [bot_messages.UNSUPPORTED_MESSAGE_TYPE]

    def test_unexpected_error_sends_apology(self, db_session, lark, extractor, sent_texts):
        lark.download_image.side_effect = RuntimeError("connection reset")
        event = make_event(message_type="image", content={"image_key": "img_v2_1"})

        outcome = route(db_session, event, lark, extractor)

        assert outcome == HANDLED
        assert sent_texts()[-1] == bot_messages.GENERIC_ERROR

    def test_malformed_content_sends_apology(self, db_session, lark, extractor, sent_texts):
        outcome = route(db_session, make_event(message_type="image", content={"wrong": "shape"}), lark, extractor)

        assert outcome == HANDLED
        assert sent_texts() == [bot_messages.GENERIC_ERROR]

    def test_failed_apology_does_not_raise(self, db_session, lark, extractor):
        lark.send_text_message.side_effect = RuntimeError("lark down")

        outcome = route(db_session, make_event(), lark, extractor)

        assert outcome == HANDLED
