"""AI Provider interface — provider-agnostic contract.

A provider answers ONE prompt: system instruction + latest user text
(+ optional inline image). It keeps no conversation memory.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

from schemas.chat import Attachment


@dataclass
class AIRequest:
    system_instruction: str
    text: str
    attachment: Optional[Attachment] = None
    max_output_tokens: int = 500


class AIProvider(ABC):
    """Abstract generative AI backend."""

    is_demo: bool = False

    @abstractmethod
    async def generate(self, request: AIRequest) -> str:
        """Return the reply text. May raise on transport or backend errors."""
        ...

    @abstractmethod
    async def is_healthy(self) -> bool:
        ...
