"""Chat Orchestrator — one conversation surface over relay + AI gateway.

Turn state machine:
  IDLE → COMPOSING → SENDING → {AWAITING_AI_REPLY | BROADCAST} → IDLE
  SENDING → IDLE on empty input (no text, no image)
  AWAITING_AI_REPLY always resolves to IDLE (reply, fallback or apology)
  A room turn during a pending AI turn settles back to AWAITING_AI_REPLY

Conversations are keyed by channel: the assistant channel, or a room id.
Messages live in memory only. Own messages are shown immediately (local
echo) and remembered by id, so the relay's echo to the sender is dropped.
"""
import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Set, Tuple

from pydantic import ValidationError

from assistant.gateway import AssistantGateway
from assistant.persona import WELCOME_TEXT
from relay.client import RelayLink
from schemas.chat import Attachment, ChatMessage, ChatTurn, SenderRole
from schemas.history import HistoryAction
from schemas.session import UserRole
from state.container import AppState

logger = logging.getLogger(__name__)

ASSISTANT_CHANNEL = "assistant"
AI_SENDER_ID = "ai"


class TurnPhase(str, Enum):
    IDLE = "IDLE"
    COMPOSING = "COMPOSING"
    SENDING = "SENDING"
    AWAITING_AI_REPLY = "AWAITING_AI_REPLY"
    BROADCAST = "BROADCAST"


@dataclass
class Conversation:
    channel: str
    messages: List[ChatMessage] = field(default_factory=list)
    seen_ids: Set[str] = field(default_factory=set)

    def add(self, message: ChatMessage) -> bool:
        """Append unless the id was already shown. Returns True when appended."""
        if message.id in self.seen_ids:
            return False
        self.seen_ids.add(message.id)
        self.messages.append(message)
        return True


class ChatOrchestrator:
    """Sequences local echo, relay fan-out and AI turn-taking."""

    def __init__(
        self,
        state: AppState,
        gateway: AssistantGateway,
        relay_link: Optional[RelayLink] = None,
    ):
        self.state = state
        self.gateway = gateway
        self.relay_link = relay_link
        self.phase = TurnPhase.IDLE
        self.draft = ""
        self._conversations: Dict[str, Conversation] = {}
        self._pending: Optional[asyncio.Task] = None
        self._epoch = 0

    # ---- Views ----

    def conversation(self, channel: str = ASSISTANT_CHANNEL) -> Conversation:
        if channel not in self._conversations:
            self._conversations[channel] = Conversation(channel=channel)
        return self._conversations[channel]

    def messages(self, channel: str = ASSISTANT_CHANNEL) -> Tuple[ChatMessage, ...]:
        return tuple(self.conversation(channel).messages)

    @property
    def awaiting_reply(self) -> bool:
        return self._pending is not None and not self._pending.done()

    def open_assistant(self) -> Conversation:
        """Start a fresh assistant conversation with the localized welcome."""
        self.cancel()
        conv = Conversation(channel=ASSISTANT_CHANNEL)
        conv.add(ChatMessage(
            id="welcome",
            sender_id=AI_SENDER_ID,
            sender_role=SenderRole.AI,
            text=WELCOME_TEXT.get(self.state.language.value, WELCOME_TEXT["en"]),
        ))
        self._conversations[ASSISTANT_CHANNEL] = conv
        return conv

    # ---- Composing ----

    def compose(self, text: str) -> None:
        self.draft = text
        if self.phase == TurnPhase.IDLE:
            self.phase = TurnPhase.COMPOSING

    def _take_draft(self, text: Optional[str]) -> str:
        if text is None:
            text = self.draft
        self.draft = ""
        return text or ""

    def _settle_phase(self) -> None:
        # a room turn may overlap a pending AI turn
        self.phase = TurnPhase.AWAITING_AI_REPLY if self.awaiting_reply else TurnPhase.IDLE

    def _own_sender(self) -> Tuple[str, SenderRole]:
        session = self.state.session
        if session is not None and session.role == UserRole.PROFESSIONAL:
            return session.id, SenderRole.PRO
        return self.state.current_user_id, SenderRole.USER

    # ---- AI turns ----

    async def send_to_assistant(
        self,
        text: Optional[str] = None,
        image_data_url: Optional[str] = None,
    ) -> Optional[ChatMessage]:
        """Send one user turn to the assistant and append its reply.

        Returns the AI message, or None for empty input, a turn already in
        flight, or a turn cancelled before the reply arrived.
        """
        if self.awaiting_reply:
            logger.warning("[Chat] send ignored: AI reply already pending")
            return None

        self.phase = TurnPhase.SENDING
        text = self._take_draft(text)
        if not text and not image_data_url:
            self.phase = TurnPhase.IDLE
            return None

        sender_id, sender_role = self._own_sender()
        conv = self.conversation(ASSISTANT_CHANNEL)
        conv.add(ChatMessage(
            sender_id=sender_id,
            sender_role=sender_role,
            text=text,
            image_url=image_data_url,
        ))
        self.state.append_history(HistoryAction.CHAT_MESSAGE, {
            "textLength": len(text),
            "hasImage": bool(image_data_url),
        })

        attachment = None
        if image_data_url:
            try:
                attachment = Attachment.from_data_url(image_data_url)
            except ValueError as e:
                logger.warning("[Chat] image dropped from AI turn: %s", str(e))

        self.phase = TurnPhase.AWAITING_AI_REPLY
        epoch = self._epoch
        task = asyncio.ensure_future(
            self.gateway.converse([ChatTurn(role="user", text=text)], attachment)
        )
        self._pending = task
        try:
            reply = await task
        except asyncio.CancelledError:
            if epoch != self._epoch:
                logger.info("[Chat] AI turn cancelled")
                return None
            raise
        finally:
            if self._pending is task:
                self._pending = None
            if epoch == self._epoch:
                self.phase = TurnPhase.IDLE

        if epoch != self._epoch:
            logger.info("[Chat] late AI reply discarded")
            return None

        ai_message = ChatMessage(sender_id=AI_SENDER_ID, sender_role=SenderRole.AI, text=reply)
        conv.add(ai_message)
        return ai_message

    def cancel(self) -> bool:
        """Abandon the pending AI turn. Its reply, if it still arrives, is dropped."""
        self._epoch += 1
        self.phase = TurnPhase.IDLE
        task = self._pending
        self._pending = None
        if task is None or task.done():
            return False
        task.cancel()
        return True

    # ---- Peer turns ----

    async def join_room(self, room_id: str) -> Conversation:
        if self.relay_link is not None:
            await self.relay_link.join(room_id)
        return self.conversation(room_id)

    async def send_to_room(
        self,
        room_id: str,
        text: Optional[str] = None,
        image_url: Optional[str] = None,
    ) -> Optional[ChatMessage]:
        """Local echo, then broadcast to the room. Returns the sent message."""
        self.phase = TurnPhase.SENDING
        text = self._take_draft(text)
        if not text and not image_url:
            self._settle_phase()
            return None

        sender_id, sender_role = self._own_sender()
        message = ChatMessage(sender_id=sender_id, sender_role=sender_role, text=text, image_url=image_url)
        self.conversation(room_id).add(message)
        self.state.append_history(HistoryAction.CHAT_MESSAGE, {
            "textLength": len(text),
            "hasImage": bool(image_url),
            "roomId": room_id,
        })

        self.phase = TurnPhase.BROADCAST
        try:
            if self.relay_link is not None:
                await self.relay_link.publish(room_id, message.model_dump(mode="json"))
        except Exception as e:
            # at-most-once: the local echo stays, no retry
            logger.warning("[Chat] broadcast failed room=%s error=%s", room_id, str(e))
        finally:
            self._settle_phase()
        return message

    def receive(self, payload: dict) -> Optional[ChatMessage]:
        """Handle a relayed message. Returns it when newly appended."""
        data = dict(payload)
        room_id = data.pop("roomId", None) or data.pop("room_id", None)
        if not room_id:
            logger.warning("[Chat] relayed message without roomId dropped")
            return None
        try:
            message = ChatMessage(**data)
        except ValidationError as e:
            logger.warning("[Chat] malformed relayed message room=%s errors=%d", room_id, e.error_count())
            return None
        if not self.conversation(room_id).add(message):
            return None
        return message

    async def close(self) -> None:
        self.cancel()
        if self.relay_link is not None:
            await self.relay_link.close()
