"""Challenge backends — where the code is actually issued and checked.

LocalChallengeBackend runs the issuer, dispatcher, throttle and session store
in-process (this is what the HTTP service uses). HttpChallengeBackend is the
client view of the same operations over the service's REST surface.
"""
import logging
from abc import ABC, abstractmethod
from typing import Optional

import httpx
from pydantic import BaseModel

from abuse.rate_limit import RateLimitPredicate
from auth.dispatch import CodeDispatcher
from auth.otp import OtpIssuer
from auth.session_store import SessionStore
from core.exceptions import (
    InvalidCodeError,
    InvalidIdentifierError,
    MiktsoanError,
    RateLimitedError,
)
from observability.audit_log import log_audit_event
from observability.redaction import mask_identifier
from schemas.audit import AuditEventType
from schemas.session import Language, UserProfile, UserRole

logger = logging.getLogger(__name__)


class VerifiedSession(BaseModel):
    user: UserProfile
    token: str
    created: bool = False


def validate_identifier(identifier: str, min_length: int = 9) -> str:
    """Normalize and validate a phone identifier. Raises InvalidIdentifierError."""
    normalized = (identifier or "").strip()
    if len(normalized) < min_length:
        raise InvalidIdentifierError(f"Phone number must have at least {min_length} characters")
    return normalized


class ChallengeBackend(ABC):
    """Abstract request/verify pair for one-time codes."""

    @abstractmethod
    async def request(self, identifier: str) -> bool:
        ...

    @abstractmethod
    async def verify(
        self,
        identifier: str,
        code: str,
        role: UserRole,
        language: Language,
    ) -> VerifiedSession:
        ...


class LocalChallengeBackend(ChallengeBackend):
    """Issuer + dispatcher + throttle + session store, in-process."""

    def __init__(
        self,
        issuer: OtpIssuer,
        dispatcher: CodeDispatcher,
        sessions: SessionStore,
        throttle: Optional[RateLimitPredicate] = None,
        min_identifier_length: int = 9,
    ):
        self.issuer = issuer
        self.dispatcher = dispatcher
        self.sessions = sessions
        self.throttle = throttle
        self.min_identifier_length = min_identifier_length

    async def request(self, identifier: str) -> bool:
        identifier = validate_identifier(identifier, self.min_identifier_length)

        if self.throttle is not None and self.throttle(identifier):
            await log_audit_event(
                AuditEventType.OTP_RATE_LIMITED,
                details={"phone": mask_identifier(identifier)},
            )
            raise RateLimitedError()

        code = self.issuer.issue(identifier)
        await self.dispatcher.send(identifier, code)
        await log_audit_event(
            AuditEventType.OTP_REQUESTED,
            details={"phone": mask_identifier(identifier)},
        )
        return True

    async def verify(
        self,
        identifier: str,
        code: str,
        role: UserRole = UserRole.USER,
        language: Language = Language.HE,
    ) -> VerifiedSession:
        identifier = validate_identifier(identifier, self.min_identifier_length)
        try:
            self.issuer.verify(identifier, code)
        except InvalidCodeError as e:
            await log_audit_event(
                AuditEventType.OTP_VERIFY_FAILED,
                details={"phone": mask_identifier(identifier), "reason": e.message},
            )
            raise

        profile, token, created = await self.sessions.establish(identifier, role, language)
        if created:
            await log_audit_event(AuditEventType.PROFILE_CREATED, user_id=profile.id)
        await log_audit_event(
            AuditEventType.AUTH_SUCCESS,
            user_id=profile.id,
            details={"role": profile.role.value},
        )
        return VerifiedSession(user=profile, token=token, created=created)


_ERROR_TYPES = {
    "RATE_LIMITED": RateLimitedError,
    "INVALID_CODE": InvalidCodeError,
    "INVALID_IDENTIFIER": InvalidIdentifierError,
}


def _raise_for_error(response: httpx.Response) -> None:
    """Map an error response from the auth API onto the exception hierarchy."""
    if response.status_code < 400:
        return
    try:
        body = response.json()
    except ValueError:
        body = {}
    message = body.get("error") or f"HTTP {response.status_code}"
    code = body.get("code", "")

    error_type = _ERROR_TYPES.get(code)
    if error_type is None and response.status_code == 429:
        error_type = RateLimitedError
    if error_type is not None:
        raise error_type(message)
    raise MiktsoanError(message, code=code or "HTTP_ERROR")


class HttpChallengeBackend(ChallengeBackend):
    """Client of POST /api/auth/otp and POST /api/auth/verify."""

    def __init__(
        self,
        base_url: str,
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._client = client

    async def _post(self, path: str, body: dict) -> dict:
        try:
            if self._client is not None:
                response = await self._client.post(f"{self.base_url}{path}", json=body)
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.post(f"{self.base_url}{path}", json=body)
        except httpx.HTTPError as e:
            logger.warning("[AuthClient] %s failed: %s", path, str(e))
            raise MiktsoanError("Network error. Please try again.", code="NETWORK_ERROR") from e

        _raise_for_error(response)
        return response.json()

    async def request(self, identifier: str) -> bool:
        data = await self._post("/api/auth/otp", {"phone": identifier})
        return bool(data.get("success"))

    async def verify(
        self,
        identifier: str,
        code: str,
        role: UserRole = UserRole.USER,
        language: Language = Language.HE,
    ) -> VerifiedSession:
        data = await self._post("/api/auth/verify", {
            "phone": identifier,
            "code": code,
            "role": UserRole(role).value,
            "language": Language(language).value,
        })
        return VerifiedSession(**data)
