import json
import time
from functools import lru_cache
from typing import Optional

import httpx

from invoice_bot.config import settings
from invoice_bot.logging_config import get_logger

logger = get_logger("lark_service")

# Refresh the tenant token this many seconds before Lark says it expires.
TOKEN_REFRESH_MARGIN_SECONDS = 300


class LarkAPIError(Exception):
    def __init__(self, operation: str, detail: str, code: Optional[int] = None):
        self.operation = operation
        self.code = code
        super().__init__(f"Lark {operation} failed: {detail}")


class LarkService:
    """Async client for the Lark Open Platform messaging API."""

    def __init__(
        self,
        app_id: str,
        app_secret: str,
        base_url: str = "https://open.feishu.cn/open-apis",
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.app_id = app_id
        self.app_secret = app_secret
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport
        self._token: Optional[str] = None
        self._token_expires_at = 0.0

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self._transport)

    @staticmethod
    def _check(operation: str, response: httpx.Response) -> dict:
        try:
            data = response.json()
        except ValueError:
            raise LarkAPIError(operation, f"HTTP {response.status_code}: {response.text[:200]}") from None
        if data.get("code") != 0:
            raise LarkAPIError(operation, data.get("msg") or "unknown error", data.get("code"))
        return data

    async def get_access_token(self) -> str:
        if self._token and self._token_expires_at > time.time():
            return self._token

        async with self._client() as client:
            response = await client.post(
                f"{self.base_url}/auth/v3/tenant_access_token/internal",
                json={"app_id": self.app_id, "app_secret": self.app_secret},
            )
        data = self._check("get_access_token", response)

        self._token = data["tenant_access_token"]
        self._token_expires_at = time.time() + int(data.get("expire", 7200)) - TOKEN_REFRESH_MARGIN_SECONDS
        return self._token

    async def _auth_headers(self) -> dict:
        token = await self.get_access_token()
        return {"Authorization": f"Bearer {token}"}

    async def _send(self, operation: str, chat_id: str, msg_type: str, content: dict, reply_to: Optional[str]) -> dict:
        headers = await self._auth_headers()
        body = {"msg_type": msg_type, "content": json.dumps(content, ensure_ascii=False)}

        async with self._client() as client:
            if reply_to:
                response = await client.post(
                    f"{self.base_url}/im/v1/messages/{reply_to}/reply", headers=headers, json=body
                )
            else:
                response = await client.post(
                    f"{self.base_url}/im/v1/messages",
                    params={"receive_id_type": "chat_id"},
                    headers=headers,
                    json={"receive_id": chat_id, **body},
                )
        data = self._check(operation, response)
        logger.debug(f"Lark {operation} ok: chat_id={chat_id}, reply_to={reply_to}")
        return data.get("data") or {}

    async def send_text_message(self, chat_id: str, text: str, reply_to: Optional[str] = None) -> dict:
        """Send text to a chat, threaded under `reply_to` when given."""
        return await self._send("send_text_message", chat_id, "text", {"text": text}, reply_to)

    async def send_file_message(self, chat_id: str, file_key: str, reply_to: Optional[str] = None) -> dict:
        return await self._send("send_file_message", chat_id, "file", {"file_key": file_key}, reply_to)

    async def upload_file(self, content: bytes, file_name: str, file_type: str = "pdf") -> str:
        """Upload a file and return its file_key."""
        headers = await self._auth_headers()
        async with self._client() as client:
            response = await client.post(
                f"{self.base_url}/im/v1/files",
                headers=headers,
                data={"file_type": file_type, "file_name": file_name},
                files={"file": (file_name, content)},
            )
        data = self._check("upload_file", response)
        return data["data"]["file_key"]

    async def _download(self, operation: str, url: str, params: Optional[dict] = None) -> bytes:
        headers = await self._auth_headers()
        async with self._client() as client:
            response = await client.get(url, headers=headers, params=params)
        if response.status_code != 200:
            logger.error(f"Lark {operation} error: {response.status_code} {response.text[:200]}")
            raise LarkAPIError(operation, f"HTTP {response.status_code}")
        return response.content

    async def download_image(self, message_id: str, image_key: str) -> bytes:
        return await self._download(
            "download_image",
            f"{self.base_url}/im/v1/messages/{message_id}/resources/{image_key}",
            params={"type": "image"},
        )

    async def download_file(self, message_id: str, file_key: str) -> bytes:
        """Download a file (audio, document) attached to a user message."""
        return await self._download(
            "download_file",
            f"{self.base_url}/im/v1/messages/{message_id}/resources/{file_key}",
            params={"type": "file"},
        )


@lru_cache
def get_lark_service() -> LarkService:
    return LarkService(settings.lark_app_id, settings.lark_app_secret, base_url=settings.lark_api_base)
