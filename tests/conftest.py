import os

os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("SWEEPER_ENABLED", "false")
os.environ.setdefault("APP_BASE_URL", "https://invoices.example.com")

from unittest.mock import AsyncMock, Mock

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import invoice_bot.models  # noqa: F401,E402
from invoice_bot.database import Base
from invoice_bot.services.state_machine import ConversationPhase
from invoice_bot.services.state_service import create_conversation_state
from tests.helpers import SAMPLE_INVOICE, FakeExtractor


@pytest.fixture
def db_session():
    """In-memory SQLite session usable from TestClient worker threads."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    session = sessionmaker(autocommit=False, autoflush=False, bind=engine)()
    try:
        yield session
    finally:
        session.close()
        engine.dispose()


@pytest.fixture
def lark():
    """Lark client double recording every outbound call."""
    service = Mock()
    service.send_text_message = AsyncMock(return_value={"message_id": "om_bot"})
    service.send_file_message = AsyncMock(return_value={"message_id": "om_file"})
    service.upload_file = AsyncMock(return_value="file_v2_abc")
    service.download_image = AsyncMock(return_value=b"\xff\xd8image")
    service.download_file = AsyncMock(return_value=b"ID3audio")
    return service


@pytest.fixture
def extractor():
    return FakeExtractor()


@pytest.fixture
def sent_texts(lark):
    """Texts sent through the lark double, in order."""

    def _texts():
        return [call.args[1] for call in lark.send_text_message.await_args_list]

    return _texts


@pytest.fixture
def make_state(db_session):
    def _make(chat_id="oc_chat", message_id="om_source", payload=None, ttl_seconds=300, now=None):
        state = create_conversation_state(
            db_session,
            chat_id=chat_id,
            message_id=message_id,
            phase=ConversationPhase.AWAITING_ISSUER_SELECTION,
            payload=dict(SAMPLE_INVOICE) if payload is None else payload,
            ttl_seconds=ttl_seconds,
            now=now,
        )
        db_session.commit()
        return state

    return _make
