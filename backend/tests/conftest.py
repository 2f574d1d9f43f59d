"""Shared test setup: deterministic settings for every test module."""
import os
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

# Set before any module reads get_settings()
os.environ.update({
    "ENV": "dev",
    "JWT_SECRET": "test-secret",
    "PROFILE_STORE": "memory",
    "GEMINI_API_KEY": "",
    "OTP_STATIC_CODE": "",
    "OTP_DEMO_THROTTLE_SUFFIX": "",
    "AI_FALLBACK_DELAY_S": "0",
    "WS_AUTH_TIMEOUT_S": "2",
})

import pytest

from config.settings import get_settings


@pytest.fixture(autouse=True)
def fresh_settings():
    """Each test sees settings rebuilt from the current environment."""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()
