import json
from dataclasses import dataclass
from typing import Optional, Union

from pydantic import BaseModel, ConfigDict, ValidationError

MESSAGE_RECEIVE_EVENT = "im.message.receive_v1"


class LarkEventHeader(BaseModel):
    event_id: Optional[str] = None
    event_type: str
    create_time: Optional[str] = None
    token: Optional[str] = None
    app_id: Optional[str] = None
    tenant_key: Optional[str] = None


class LarkSenderId(BaseModel):
    open_id: Optional[str] = None
    user_id: Optional[str] = None
    union_id: Optional[str] = None


class LarkSender(BaseModel):
    sender_id: Optional[LarkSenderId] = None
    sender_type: str = ""  # user, app
    tenant_key: Optional[str] = None


class LarkMention(BaseModel):
    key: str
    name: Optional[str] = None


class LarkMessage(BaseModel):
    message_id: str
    chat_id: str
    message_type: str
    content: str = ""  # JSON-encoded, shape depends on message_type
    chat_type: Optional[str] = None  # p2p, group
    root_id: Optional[str] = None
    parent_id: Optional[str] = None
    create_time: Optional[str] = None
    mentions: Optional[list[LarkMention]] = None

    model_config = ConfigDict(extra="ignore")


class LarkMessageEvent(BaseModel):
    sender: LarkSender
    message: LarkMessage

    @property
    def is_from_user(self) -> bool:
        return self.sender.sender_type == "user"


class LarkWebhookResponse(BaseModel):
    status: str  # ok, duplicate, skipped, ignored
    message: Optional[str] = None


class _TextContent(BaseModel):
    text: str


class _ImageContent(BaseModel):
    image_key: str


class _AudioContent(BaseModel):
    file_key: str
    duration: Optional[int] = None


@dataclass(frozen=True)
class TextMessage:
    text: str


@dataclass(frozen=True)
class ImageMessage:
    image_key: str


@dataclass(frozen=True)
class AudioMessage:
    file_key: str
    duration: Optional[int] = None


@dataclass(frozen=True)
class UnsupportedMessage:
    message_type: str


InboundMessage = Union[TextMessage, ImageMessage, AudioMessage, UnsupportedMessage]


class MessageContentError(ValueError):
    """Message content does not match the shape its message_type requires."""


def _load_content(raw: str) -> dict:
    try:
        content = json.loads(raw or "{}")
    except json.JSONDecodeError as e:
        raise MessageContentError(f"content is not valid JSON: {e}") from e
    if not isinstance(content, dict):
        raise MessageContentError("content is not a JSON object")
    return content


def classify_message(message: LarkMessage) -> InboundMessage:
    """Turn a raw Lark message into one of the closed message variants."""
    kind = message.message_type
    if kind not in ("text", "image", "audio"):
        return UnsupportedMessage(message_type=kind)

    content = _load_content(message.content)
    try:
        if kind == "text":
            return TextMessage(text=_TextContent(**content).text)
        if kind == "image":
            return ImageMessage(image_key=_ImageContent(**content).image_key)
        parsed = _AudioContent(**content)
        return AudioMessage(file_key=parsed.file_key, duration=parsed.duration)
    except ValidationError as e:
        raise MessageContentError(f"invalid {kind} content: {e.errors()}") from e
