"""Demo AI provider — fixed reply after a simulated delay.

Used whenever no backend credential is configured, so callers never
have to treat "AI unavailable" as an error.
"""
import asyncio
import logging

from assistant.provider.interface import AIProvider, AIRequest

logger = logging.getLogger(__name__)


class DemoAIProvider(AIProvider):
    """Deterministic provider: same text for every request."""

    is_demo = True

    def __init__(self, reply_text: str, delay_s: float = 1.0):
        self.reply_text = reply_text
        self.delay_s = delay_s

    async def generate(self, request: AIRequest) -> str:
        logger.info(
            "[AI:DEMO] text_len=%d has_image=%s delay=%.1fs",
            len(request.text), request.attachment is not None, self.delay_s,
        )
        if self.delay_s > 0:
            await asyncio.sleep(self.delay_s)
        return self.reply_text

    async def is_healthy(self) -> bool:
        return True
