"""Session Store — turns a verified identifier into a durable user profile.

Profiles live in a document store keyed by phone (unique). A verified
identifier either creates a fresh profile or reuses the stored one,
upgraded to the requested role and language. The store also signs the
session credential.
"""
import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Dict, Optional, Tuple, Union

from auth.tokens import generate_token
from schemas.session import GeoLocation, Language, UserProfile, UserRole, user_id_for

logger = logging.getLogger(__name__)

DEFAULT_NAMES = {
    UserRole.USER: "New User",
    UserRole.PROFESSIONAL: "New Professional",
    UserRole.ADMIN: "Admin",
}
DEFAULT_LOCATION = GeoLocation(lat=32.0853, lng=34.7818, address="Tel Aviv")


def default_avatar(phone: str) -> str:
    return f"https://i.pravatar.cc/150?u={phone}"


class ProfileStore(ABC):
    """Narrow CRUD interface over the profile document store."""

    @abstractmethod
    async def get(self, phone: str) -> Optional[UserProfile]:
        ...

    @abstractmethod
    async def upsert(self, profile: UserProfile) -> None:
        ...

    @abstractmethod
    async def delete(self, phone: str) -> bool:
        ...


class InMemoryProfileStore(ProfileStore):
    """Dict-backed store for dev and tests."""

    def __init__(self):
        self._docs: Dict[str, dict] = {}
        self._lock = asyncio.Lock()

    async def get(self, phone: str) -> Optional[UserProfile]:
        doc = self._docs.get(phone)
        return UserProfile(**doc) if doc else None

    async def upsert(self, profile: UserProfile) -> None:
        async with self._lock:
            self._docs[profile.phone] = profile.to_doc()

    async def delete(self, phone: str) -> bool:
        async with self._lock:
            return self._docs.pop(phone, None) is not None


class MongoProfileStore(ProfileStore):
    """MongoDB-backed store (users collection, unique phone index)."""

    async def get(self, phone: str) -> Optional[UserProfile]:
        from core.database import find_one_safe
        doc = await find_one_safe("users", {"phone": phone})
        return UserProfile(**doc) if doc else None

    async def upsert(self, profile: UserProfile) -> None:
        from core.database import get_db
        await get_db().users.replace_one({"phone": profile.phone}, profile.to_doc(), upsert=True)

    async def delete(self, phone: str) -> bool:
        from core.database import get_db
        result = await get_db().users.delete_one({"phone": phone})
        return result.deleted_count > 0


class SessionStore:
    """Establishes sessions for verified identifiers."""

    def __init__(self, profiles: ProfileStore):
        self.profiles = profiles

    async def establish(
        self,
        identifier: str,
        role: Union[UserRole, str] = UserRole.USER,
        language: Union[Language, str] = Language.HE,
    ) -> Tuple[UserProfile, str, bool]:
        """Get-or-create the profile and sign a token.

        Returns (profile, token, created).
        """
        role = UserRole(role)
        language = Language(language)

        existing = await self.profiles.get(identifier)
        if existing is None:
            profile = UserProfile(
                id=user_id_for(identifier),
                phone=identifier,
                name=DEFAULT_NAMES[role],
                avatar=default_avatar(identifier),
                role=role,
                language=language,
                location=DEFAULT_LOCATION,
            )
            created = True
        else:
            profile = existing.model_copy(update={"role": role, "language": language})
            created = False

        await self.profiles.upsert(profile)
        token = generate_token(identifier, profile.id, profile.role.value)
        logger.info(
            "Session established: user=%s role=%s created=%s",
            profile.id, profile.role.value, created,
        )
        return profile, token, created
