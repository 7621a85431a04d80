import base64
from functools import lru_cache
from typing import Optional

import httpx
from pydantic import ValidationError

from invoice_bot.config import settings
from invoice_bot.logging_config import get_logger
from invoice_bot.services.invoice_service import normalize_invoice_data
from invoice_bot.services.llm.base import ExtractionError, ExtractionPayload, InvoiceExtractor, Modality
from invoice_bot.services.llm.json_repair import JSONRepairError, parse_model_json

logger = get_logger("llm.gemini")

GENERATION_CONFIG = {
    "temperature": 0.2,
    "topK": 40,
    "topP": 0.95,
    "maxOutputTokens": 2048,
}

EXTRACTION_PROMPT = """あなたは請求書データ抽出の専門家です。入力から請求書情報を次のJSON形式で抽出してください。

{
  "invoiceNumber": "",
  "issueDate": "2025-12-31",
  "dueDate": "2026-01-31",
  "recipient": {"name": "株式会社ABC", "address": "東京都渋谷区宇田川町1-2-3", "postalCode": "1500042"},
  "issuer": {"name": "", "address": "", "postalCode": "", "phone": "", "email": "", "bankInfo": ""},
  "items": [{"description": "コンサルティング費用", "quantity": 2, "unitPrice": 90909, "amount": 181818}],
  "subtotal": 0,
  "tax": 0,
  "total": 0,
  "notes": ""
}

【重要ルール】
1. 表の各データ行を個別の明細として抽出（ヘッダー行と合計行は除外）
2. 税込金額は1.1で割って税抜に変換
3. 日付はYYYY-MM-DD形式に変換
4. 金額から¥や,を除去
5. マイナス金額も対応（例: -12000）
6. 発行者情報（issuer）は空のまま
7. 必ず有効なJSONのみ返す"""

MODALITY_INSTRUCTIONS = {
    Modality.IMAGE: "\n\n画像から請求書情報を抽出してください。",
    Modality.AUDIO: "\n\n音声メッセージから請求書情報を抽出してください。",
}


class GeminiProvider(InvoiceExtractor):
    """Google Gemini generateContent provider."""

    def __init__(
        self,
        api_key: str,
        model: str = "gemini-2.5-flash",
        base_url: str = "https://generativelanguage.googleapis.com/v1beta",
        timeout_seconds: float = 60.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self._transport = transport

    def build_parts(self, payload: ExtractionPayload) -> list[dict]:
        parts = [{"text": EXTRACTION_PROMPT}]
        if payload.modality == Modality.TEXT:
            parts.append({"text": f"\n\nユーザー入力:\n{payload.text or ''}"})
            return parts

        if not payload.data:
            raise ExtractionError(f"{payload.modality.value} payload is empty")
        parts.append({"text": MODALITY_INSTRUCTIONS[payload.modality]})
        parts.append(
            {
                "inlineData": {
                    "mimeType": payload.mime_type or "application/octet-stream",
                    "data": base64.b64encode(payload.data).decode("ascii"),
                }
            }
        )
        return parts

    async def generate(self, parts: list[dict]) -> str:
        url = f"{self.base_url}/models/{self.model}:generateContent"
        body = {"contents": [{"parts": parts}], "generationConfig": GENERATION_CONFIG}

        try:
            async with httpx.AsyncClient(timeout=self.timeout_seconds, transport=self._transport) as client:
                response = await client.post(url, params={"key": self.api_key}, json=body)
        except httpx.HTTPError as e:
            logger.error(f"Gemini request failed: {e}")
            raise ExtractionError(f"Gemini request failed: {e}") from e

        logger.debug(f"Gemini response status: {response.status_code}")
        try:
            data = response.json()
        except ValueError:
            data = {}

        if response.status_code != 200:
            message = (data.get("error") or {}).get("message") or response.text[:200]
            logger.error(f"Gemini error: {response.status_code} {message}")
            raise ExtractionError(f"Gemini API error: {message}")

        try:
            return data["candidates"][0]["content"]["parts"][0]["text"]
        except (KeyError, IndexError, TypeError):
            logger.error("Gemini response has no text candidate", extra={"context": {"response": str(data)[:500]}})
            raise ExtractionError("Gemini returned no content") from None

    async def extract_invoice_data(self, payload: ExtractionPayload) -> dict:
        generated = await self.generate(self.build_parts(payload))
        logger.debug(f"Gemini response length: {len(generated)}")

        try:
            raw = parse_model_json(generated)
        except JSONRepairError as e:
            raise ExtractionError(str(e)) from e

        try:
            return normalize_invoice_data(raw)
        except ValidationError as e:
            logger.warning("Gemini output failed validation", extra={"context": {"errors": e.errors()[:5]}})
            raise ExtractionError(f"Invalid invoice data ({e.error_count()} errors)") from e


@lru_cache
def get_extractor() -> InvoiceExtractor:
    return GeminiProvider(settings.gemini_api_key, model=settings.gemini_model, base_url=settings.gemini_api_base)
