"""Credential Challenge flow — visitor → authenticated session.

Client-side view of the one-time-code login:
  1. request_challenge(phone)       → code dispatched out-of-band
  2. verify_challenge(phone, code)  → session installed in AppState

Every step leaves a `login` history event in the state container
(stage = request | verify_fail | success). Failures never touch the
current session.
"""
import logging
from typing import Optional, Union

from auth.backend import ChallengeBackend, VerifiedSession, validate_identifier
from core.exceptions import InvalidCodeError
from observability.redaction import mask_identifier
from schemas.history import HistoryAction
from schemas.session import Language, UserProfile, UserRole
from state.container import AppState

logger = logging.getLogger(__name__)


class ChallengeService:
    """Drives the login flow against a challenge backend."""

    def __init__(
        self,
        state: AppState,
        backend: ChallengeBackend,
        min_identifier_length: int = 9,
    ):
        self.state = state
        self.backend = backend
        self.min_identifier_length = min_identifier_length
        self._credential: Optional[str] = None

    @property
    def credential(self) -> Optional[str]:
        """Signed session token from the last successful verification (memory only)."""
        return self._credential

    async def request_challenge(self, identifier: str) -> bool:
        """Ask the backend to send a code. Raises RateLimitedError / InvalidIdentifierError."""
        self.state.append_history(HistoryAction.LOGIN, {"stage": "request", "phone": identifier})
        identifier = validate_identifier(identifier, self.min_identifier_length)
        ok = await self.backend.request(identifier)
        logger.info("[Login] code requested phone=%s", mask_identifier(identifier))
        return ok

    async def verify_challenge(
        self,
        identifier: str,
        code: str,
        role: Union[UserRole, str] = UserRole.USER,
        language: Union[Language, str] = Language.HE,
    ) -> UserProfile:
        """Verify the code and install the resulting session. Raises InvalidCodeError."""
        identifier = validate_identifier(identifier, self.min_identifier_length)
        role = UserRole(role)
        language = Language(language)

        try:
            verified: VerifiedSession = await self.backend.verify(identifier, code, role, language)
        except InvalidCodeError:
            self.state.append_history(HistoryAction.LOGIN, {"stage": "verify_fail", "phone": identifier})
            logger.info("[Login] verify failed phone=%s", mask_identifier(identifier))
            raise

        self._credential = verified.token
        self.state.set_session(verified.user)
        self.state.set_language(language)
        self.state.append_history(HistoryAction.LOGIN, {"stage": "success", "userId": verified.user.id})
        logger.info("[Login] success user=%s role=%s", verified.user.id, verified.user.role.value)
        return verified.user

    def logout(self) -> None:
        self._credential = None
        self.state.logout()
