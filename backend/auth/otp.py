"""One-time code issuance and validation.

Challenges are keyed by phone identifier:
  - at most one pending challenge per identifier (a new request replaces it)
  - time-boxed (OTP_TTL_SECONDS)
  - attempt-limited (OTP_MAX_ATTEMPTS wrong codes consume the challenge)
  - single-use (a successful verify consumes the challenge)

Only a hash of the expected code is kept in memory.
"""
import hashlib
import hmac
import logging
import secrets
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from config.settings import Settings
from core.exceptions import InvalidCodeError
from observability.redaction import mask_identifier

logger = logging.getLogger(__name__)


class CodeSource(ABC):
    """Decides the expected code for an identifier."""

    @abstractmethod
    def generate(self, identifier: str) -> str:
        ...


class RandomCodeSource(CodeSource):
    """Fresh numeric code per challenge."""

    def __init__(self, length: int = 6):
        self.length = length

    def generate(self, identifier: str) -> str:
        return "".join(secrets.choice("0123456789") for _ in range(self.length))


class StaticCodeSource(CodeSource):
    """Demo mode: every identifier gets the same code."""

    def __init__(self, code: str):
        self.code = code

    def generate(self, identifier: str) -> str:
        return self.code


def _hash_code(identifier: str, code: str) -> str:
    return hashlib.sha256(f"{identifier}:{code}".encode("utf-8")).hexdigest()


@dataclass
class Challenge:
    identifier: str
    code_hash: str
    issued_at: float
    expires_at: float
    attempts: int = 0


class OtpIssuer:
    """In-memory challenge registry."""

    def __init__(
        self,
        source: CodeSource,
        ttl_seconds: float = 300,
        max_attempts: int = 3,
        clock: Callable[[], float] = time.time,
    ):
        self._source = source
        self.ttl_seconds = ttl_seconds
        self.max_attempts = max_attempts
        self._clock = clock
        self._challenges: Dict[str, Challenge] = {}
        self._lock = threading.Lock()

    @classmethod
    def from_settings(cls, settings: Settings) -> "OtpIssuer":
        if settings.OTP_STATIC_CODE:
            source: CodeSource = StaticCodeSource(settings.OTP_STATIC_CODE)
        else:
            source = RandomCodeSource(settings.OTP_LENGTH)
        return cls(source, ttl_seconds=settings.OTP_TTL_SECONDS, max_attempts=settings.OTP_MAX_ATTEMPTS)

    def issue(self, identifier: str) -> str:
        """Create a challenge for identifier, replacing any pending one. Returns the code."""
        code = self._source.generate(identifier)
        now = self._clock()
        with self._lock:
            self._purge_locked(now)
            replaced = identifier in self._challenges
            self._challenges[identifier] = Challenge(
                identifier=identifier,
                code_hash=_hash_code(identifier, code),
                issued_at=now,
                expires_at=now + self.ttl_seconds,
            )
        logger.info("[OTP] issued phone=%s replaced=%s", mask_identifier(identifier), replaced)
        return code

    def verify(self, identifier: str, code: str) -> None:
        """Consume the challenge on success. Raises InvalidCodeError otherwise."""
        now = self._clock()
        with self._lock:
            challenge = self._challenges.get(identifier)
            if challenge is None:
                raise InvalidCodeError("Invalid code")

            if now >= challenge.expires_at:
                del self._challenges[identifier]
                logger.info("[OTP] expired phone=%s", mask_identifier(identifier))
                raise InvalidCodeError("Code expired")

            if hmac.compare_digest(challenge.code_hash, _hash_code(identifier, code or "")):
                del self._challenges[identifier]
                logger.info("[OTP] verified phone=%s", mask_identifier(identifier))
                return

            challenge.attempts += 1
            if challenge.attempts >= self.max_attempts:
                del self._challenges[identifier]
                logger.warning(
                    "[OTP] attempts exhausted phone=%s attempts=%d",
                    mask_identifier(identifier), challenge.attempts,
                )
                raise InvalidCodeError("Too many wrong attempts. Request a new code.")

            logger.info(
                "[OTP] mismatch phone=%s attempts=%d/%d",
                mask_identifier(identifier), challenge.attempts, self.max_attempts,
            )
            raise InvalidCodeError("Invalid code")

    def pending(self, identifier: str) -> Optional[Challenge]:
        with self._lock:
            challenge = self._challenges.get(identifier)
            if challenge and self._clock() < challenge.expires_at:
                return challenge
            return None

    def pending_count(self) -> int:
        with self._lock:
            return len(self._challenges)

    def purge_expired(self) -> int:
        with self._lock:
            return self._purge_locked(self._clock())

    def _purge_locked(self, now: float) -> int:
        """Drop expired challenges. Caller holds the lock."""
        expired = [k for k, c in self._challenges.items() if now >= c.expires_at]
        for k in expired:
            del self._challenges[k]
        if expired:
            logger.debug("[OTP] purged expired=%d", len(expired))
        return len(expired)
