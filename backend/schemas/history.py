"""History event schemas — the client-side append-only audit trail."""
from enum import Enum
from typing import Any, Dict
from pydantic import BaseModel, Field

GUEST_USER_ID = "guest"


class HistoryAction(str, Enum):
    LOGIN = "login"
    SEARCH = "search"
    VIEW_PRO = "view_pro"
    CREATE_REQUEST = "create_request"
    CHAT_MESSAGE = "chat_message"
    SIGN_CONTRACT = "sign_contract"


class HistoryEvent(BaseModel):
    id: str
    user_id: str = GUEST_USER_ID
    action: HistoryAction
    metadata: Dict[str, Any] = Field(default_factory=dict)
    timestamp: int
