"""AI Assistant Gateway — stateless turn-based bridge to the AI backend.

Only the most recent user turn (plus the attachment, if any) is sent per
call. Full history is NOT replayed: the gateway trades conversational
memory for statelessness and cost.

Degradation is never an error for the caller:
  - no credential       → demo provider reply (BackendUnavailable)
  - call-time failure   → apology text (BackendCallFailed, timeout)
  - empty backend reply → retry prompt text
Cancellation of the awaiting task propagates unchanged.
"""
import asyncio
import logging
from enum import Enum
from typing import Any, Iterable, Optional, Tuple, Union

from assistant.persona import APOLOGY_TEXT, EMPTY_REPLY_TEXT, SYSTEM_INSTRUCTION
from assistant.provider.demo import DemoAIProvider
from assistant.provider.interface import AIProvider, AIRequest
from config.feature_flags import is_ai_configured
from config.settings import Settings, get_settings
from schemas.chat import Attachment, ChatTurn

logger = logging.getLogger(__name__)

TurnLike = Union[ChatTurn, dict]


class ReplyOutcome(str, Enum):
    OK = "ok"
    FALLBACK = "fallback"
    FAILED = "failed"
    EMPTY = "empty"


def _coerce_turn(turn: TurnLike) -> ChatTurn:
    if isinstance(turn, ChatTurn):
        return turn
    # Web client shape: {"role": "user", "parts": "..."}
    text = turn.get("text", turn.get("parts", ""))
    return ChatTurn(role=turn.get("role", "user"), text=text if isinstance(text, str) else "")


def latest_user_text(turns: Iterable[TurnLike]) -> str:
    """Text of the most recent user turn (or the last turn when none is tagged user)."""
    coerced = [_coerce_turn(t) for t in turns]
    for turn in reversed(coerced):
        if turn.role == "user":
            return turn.text
    return coerced[-1].text if coerced else ""


class AssistantGateway:
    """Converse entry point used by the chat orchestrator and the HTTP API."""

    def __init__(
        self,
        provider: Optional[AIProvider],
        fallback: AIProvider,
        timeout_s: float = 30.0,
        max_output_tokens: int = 500,
        system_instruction: str = SYSTEM_INSTRUCTION,
    ):
        self.provider = provider
        self.fallback = fallback
        self.timeout_s = timeout_s
        self.max_output_tokens = max_output_tokens
        self.system_instruction = system_instruction

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None, provider: Optional[AIProvider] = None) -> "AssistantGateway":
        settings = settings or get_settings()
        fallback = DemoAIProvider(settings.AI_FALLBACK_TEXT, delay_s=settings.AI_FALLBACK_DELAY_S)
        if provider is None and is_ai_configured(settings):
            from assistant.provider.gemini import GeminiProvider
            provider = GeminiProvider(api_key=settings.GEMINI_API_KEY, model=settings.GEMINI_MODEL)
            logger.info("[AI:GATEWAY] Provider=GeminiProvider model=%s", settings.GEMINI_MODEL)
        elif provider is None:
            logger.info("[AI:GATEWAY] Provider=DemoAIProvider (no GEMINI_API_KEY)")
        return cls(
            provider=provider,
            fallback=fallback,
            timeout_s=settings.AI_TIMEOUT_S,
            max_output_tokens=settings.AI_MAX_OUTPUT_TOKENS,
        )

    @property
    def demo_mode(self) -> bool:
        return self.provider is None

    async def converse(self, turns: Iterable[TurnLike], attachment: Optional[Attachment] = None) -> str:
        reply, _ = await self.converse_with_outcome(turns, attachment)
        return reply

    async def converse_with_outcome(
        self,
        turns: Iterable[TurnLike],
        attachment: Optional[Attachment] = None,
    ) -> Tuple[str, ReplyOutcome]:
        request = AIRequest(
            system_instruction=self.system_instruction,
            text=latest_user_text(turns),
            attachment=attachment,
            max_output_tokens=self.max_output_tokens,
        )

        if self.provider is None:
            return await self.fallback.generate(request), ReplyOutcome.FALLBACK

        try:
            reply = await asyncio.wait_for(self.provider.generate(request), timeout=self.timeout_s)
        except asyncio.TimeoutError:
            logger.warning("[AI:GATEWAY] call timed out after %.1fs", self.timeout_s)
            return APOLOGY_TEXT, ReplyOutcome.FAILED
        except Exception as e:
            logger.error("[AI:GATEWAY] call failed: %s: %s", type(e).__name__, str(e))
            return APOLOGY_TEXT, ReplyOutcome.FAILED

        if not isinstance(reply, str) or not reply.strip():
            return EMPTY_REPLY_TEXT, ReplyOutcome.EMPTY
        return reply, ReplyOutcome.OK

    async def is_healthy(self) -> dict[str, Any]:
        provider = self.provider or self.fallback
        return {
            "provider": type(provider).__name__,
            "demo_mode": self.demo_mode,
            "healthy": await provider.is_healthy(),
        }
