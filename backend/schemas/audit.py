"""Audit event schemas (server side)."""
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional
from pydantic import BaseModel, Field
import uuid


class AuditEventType(str, Enum):
    OTP_REQUESTED = "otp_requested"
    OTP_RATE_LIMITED = "otp_rate_limited"
    OTP_VERIFY_FAILED = "otp_verify_failed"
    AUTH_SUCCESS = "auth_success"
    AUTH_FAILURE = "auth_failure"
    PROFILE_CREATED = "profile_created"
    RELAY_CONNECTED = "relay_connected"
    RELAY_DISCONNECTED = "relay_disconnected"
    AI_FALLBACK = "ai_fallback"
    AI_CALL_FAILED = "ai_call_failed"


class AuditEvent(BaseModel):
    event_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    event_type: AuditEventType
    user_id: Optional[str] = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    details: Dict[str, Any] = Field(default_factory=dict)
    env: str = "dev"

    def to_doc(self) -> dict:
        d = self.model_dump()
        d["event_type"] = d["event_type"].value if hasattr(d["event_type"], "value") else d["event_type"]
        return d
