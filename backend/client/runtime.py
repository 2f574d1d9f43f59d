"""Client runtime — composition root for one client process.

Builds the state container first (rehydrated before anything reads it),
then the components that share it: login flow, assistant gateway and
chat orchestrator. The relay link is optional; without one, room
messages are shown locally only.
"""
import asyncio
import logging
from typing import Optional

from assistant.gateway import AssistantGateway
from auth.backend import ChallengeBackend, HttpChallengeBackend
from auth.challenge import ChallengeService
from chat.orchestrator import ChatOrchestrator
from config.settings import Settings, get_settings
from relay.client import RelayLink
from state.container import AppState, DirectionSink
from state.storage import FileSnapshotStorage, SnapshotStorage

logger = logging.getLogger(__name__)


class ClientRuntime:
    """Owns the AppState and everything wired to it."""

    def __init__(
        self,
        state: AppState,
        challenge: ChallengeService,
        chat: ChatOrchestrator,
    ):
        self.state = state
        self.challenge = challenge
        self.chat = chat
        self._listen_task: Optional[asyncio.Task] = None

    @classmethod
    def build(
        cls,
        settings: Optional[Settings] = None,
        storage: Optional[SnapshotStorage] = None,
        backend: Optional[ChallengeBackend] = None,
        gateway: Optional[AssistantGateway] = None,
        relay_link: Optional[RelayLink] = None,
        direction_sink: Optional[DirectionSink] = None,
    ) -> "ClientRuntime":
        settings = settings or get_settings()
        storage = storage or FileSnapshotStorage(settings.STATE_SNAPSHOT_PATH)
        state = AppState.open(
            storage,
            default_language=settings.DEFAULT_LANGUAGE,
            direction_sink=direction_sink,
        )
        backend = backend or HttpChallengeBackend(settings.API_BASE_URL, timeout=settings.API_TIMEOUT_S)
        challenge = ChallengeService(
            state,
            backend,
            min_identifier_length=settings.OTP_MIN_IDENTIFIER_LENGTH,
        )
        gateway = gateway or AssistantGateway.from_settings(settings)
        chat = ChatOrchestrator(state, gateway, relay_link=relay_link)
        logger.info(
            "[Runtime] ready backend=%s relay=%s demo_ai=%s",
            type(backend).__name__,
            type(relay_link).__name__ if relay_link else None,
            gateway.demo_mode,
        )
        return cls(state, challenge, chat)

    def start_listening(self) -> Optional[asyncio.Task]:
        """Route relayed room messages into the chat orchestrator."""
        link = self.chat.relay_link
        if link is None or self._listen_task is not None:
            return self._listen_task
        self._listen_task = asyncio.create_task(link.listen(self.chat.receive))
        return self._listen_task

    async def shutdown(self) -> None:
        if self._listen_task is not None:
            self._listen_task.cancel()
            try:
                await self._listen_task
            except asyncio.CancelledError:
                pass
            self._listen_task = None
        await self.chat.close()
        logger.info("[Runtime] shutdown complete")
