"""Out-of-band code delivery (SMS or equivalent).

Fire-and-forget from the core's perspective: a dispatcher either returns or
raises; no delivery receipts are tracked.
"""
import logging
from abc import ABC, abstractmethod
from typing import List, Tuple

from config.settings import get_settings
from observability.redaction import mask_identifier

logger = logging.getLogger(__name__)


class CodeDispatcher(ABC):
    """Abstract code delivery channel."""

    @abstractmethod
    async def send(self, identifier: str, code: str) -> bool:
        ...


class LoggingCodeDispatcher(CodeDispatcher):
    """Dev dispatcher — writes the code to the log instead of sending SMS."""

    async def send(self, identifier: str, code: str) -> bool:
        if get_settings().ENV == "prod":
            logger.info("[Dispatch:LOG] Sending OTP to phone=%s", mask_identifier(identifier))
        else:
            logger.info("[Dispatch:LOG] Sending OTP to phone=%s code=%s", mask_identifier(identifier), code)
        return True


class RecordingCodeDispatcher(CodeDispatcher):
    """Keeps every dispatched code in memory. Used by tests and local tooling."""

    def __init__(self):
        self.sent: List[Tuple[str, str]] = []

    async def send(self, identifier: str, code: str) -> bool:
        self.sent.append((identifier, code))
        return True

    def last_code(self, identifier: str) -> str:
        for phone, code in reversed(self.sent):
            if phone == identifier:
                return code
        raise KeyError(identifier)
