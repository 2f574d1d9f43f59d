"""Chat schemas — messages, assistant turns and inline image attachments."""
import base64
import binascii
import re
import uuid
from enum import Enum
from typing import Optional
from pydantic import BaseModel, Field

from schemas.session import now_ms

_DATA_URL_RE = re.compile(r"^data:(?P<mime>[\w.+-]+/[\w.+-]+);base64,(?P<data>.*)$", re.DOTALL)


class SenderRole(str, Enum):
    USER = "user"
    AI = "ai"
    PRO = "pro"


class ChatMessage(BaseModel):
    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    sender_id: str
    sender_role: SenderRole
    text: str = ""
    image_url: Optional[str] = None
    timestamp: int = Field(default_factory=now_ms)
    is_system_message: bool = False


class ChatTurn(BaseModel):
    """One role-tagged fragment of a conversation sent to the assistant."""
    role: str  # "user" | "model"
    text: str


class Attachment(BaseModel):
    """Inline image sent alongside the latest user turn."""
    data: str  # base64 payload, no data-URL prefix
    mime_type: str = "image/jpeg"

    @classmethod
    def from_data_url(cls, data_url: str) -> "Attachment":
        """Parse a browser data URL (data:<mime>;base64,<payload>)."""
        m = _DATA_URL_RE.match(data_url.strip())
        if not m:
            raise ValueError("Not a base64 data URL")
        return cls(data=m.group("data"), mime_type=m.group("mime"))

    def to_bytes(self) -> bytes:
        try:
            return base64.b64decode(self.data, validate=True)
        except (binascii.Error, ValueError) as e:
            raise ValueError(f"Invalid base64 attachment: {e}") from e
