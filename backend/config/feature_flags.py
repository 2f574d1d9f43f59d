"""Feature flags — derived from settings, never set directly."""
from typing import Optional

from config.settings import Settings, get_settings


def is_ai_configured(settings: Optional[Settings] = None) -> bool:
    settings = settings or get_settings()
    return bool(settings.GEMINI_API_KEY.strip())


def is_static_otp() -> bool:
    return bool(get_settings().OTP_STATIC_CODE)


def use_mongo_profiles() -> bool:
    return get_settings().PROFILE_STORE == "mongo"
