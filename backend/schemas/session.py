"""Session schemas — the authenticated user profile and its building blocks."""
import re
import time
from enum import Enum
from typing import Optional
from pydantic import BaseModel, Field


class UserRole(str, Enum):
    USER = "user"
    PROFESSIONAL = "professional"
    ADMIN = "admin"


class Language(str, Enum):
    HE = "he"
    EN = "en"
    AR = "ar"


class GeoLocation(BaseModel):
    lat: float
    lng: float
    address: str = ""


def now_ms() -> int:
    return int(time.time() * 1000)


def user_id_for(phone: str) -> str:
    """Stable user id derived from the digits of a phone identifier."""
    return "u_" + re.sub(r"\D", "", phone)


class UserProfile(BaseModel):
    """The Session: identity, role and preferences of the signed-in user."""
    id: str
    phone: str
    name: str
    avatar: str
    role: UserRole = UserRole.USER
    language: Language = Language.HE
    email: Optional[str] = None
    location: Optional[GeoLocation] = None
    created_at: int = Field(default_factory=now_ms)

    def to_doc(self) -> dict:
        """Convert to a document-store record."""
        return self.model_dump(mode="json")
