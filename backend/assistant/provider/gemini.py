"""Gemini provider — google-genai async client.

One generate_content call per turn: latest user text plus an optional
inline image, with the fixed system instruction and an output cap.
"""
import logging
import time
from typing import Optional

from assistant.provider.interface import AIProvider, AIRequest
from config.settings import get_settings
from core.exceptions import BackendCallFailedError, BackendUnavailableError

logger = logging.getLogger(__name__)


class GeminiProvider(AIProvider):
    """Real Gemini backend."""

    def __init__(self, api_key: Optional[str] = None, model: Optional[str] = None, client=None):
        settings = get_settings()
        self.model = model or settings.GEMINI_MODEL
        if client is not None:
            self._client = client
            return

        api_key = api_key if api_key is not None else settings.GEMINI_API_KEY
        if not api_key:
            raise BackendUnavailableError("GEMINI_API_KEY is not configured")

        from google import genai
        self._client = genai.Client(api_key=api_key)
        logger.info("[Gemini] Client initialized model=%s", self.model)

    async def generate(self, request: AIRequest) -> str:
        from google.genai import types

        parts = [types.Part.from_text(text=request.text)]
        if request.attachment is not None:
            parts.append(types.Part.from_bytes(
                data=request.attachment.to_bytes(),
                mime_type=request.attachment.mime_type,
            ))

        start = time.monotonic()
        response = await self._client.aio.models.generate_content(
            model=self.model,
            contents=[types.Content(role="user", parts=parts)],
            config=types.GenerateContentConfig(
                system_instruction=request.system_instruction,
                max_output_tokens=request.max_output_tokens,
            ),
        )
        latency_ms = (time.monotonic() - start) * 1000

        try:
            text = response.text
        except (AttributeError, ValueError) as e:
            raise BackendCallFailedError(f"Malformed Gemini response: {e}") from e

        logger.info(
            "[Gemini] reply model=%s chars=%d has_image=%s latency=%.0fms",
            self.model, len(text or ""), request.attachment is not None, latency_ms,
        )
        return text or ""

    async def is_healthy(self) -> bool:
        return self._client is not None
