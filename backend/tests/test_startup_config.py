from types import SimpleNamespace

import pytest

from config.validators import _require_jwt_secret, validate_startup_config


def _settings(**overrides):
    base = {
        "ENV": "dev",
        "JWT_SECRET": "test-secret",
        "OTP_LENGTH": 6,
        "OTP_STATIC_CODE": "",
        "OTP_DEMO_THROTTLE_SUFFIX": "",
        "PROFILE_STORE": "memory",
        "GEMINI_API_KEY": "key",
    }
    base.update(overrides)
    return SimpleNamespace(**base)


@pytest.mark.parametrize("jwt_secret", ["", "   "])
def test_require_jwt_secret_fails_when_empty(jwt_secret):
    with pytest.raises(RuntimeError, match="JWT_SECRET"):
        _require_jwt_secret(_settings(JWT_SECRET=jwt_secret))


def test_validate_startup_config_rejects_short_codes():
    with pytest.raises(RuntimeError, match="OTP_LENGTH"):
        validate_startup_config(_settings(OTP_LENGTH=3))


@pytest.mark.parametrize("override,name", [
    ({"OTP_STATIC_CODE": "123456"}, "OTP_STATIC_CODE"),
    ({"OTP_DEMO_THROTTLE_SUFFIX": "000"}, "OTP_DEMO_THROTTLE_SUFFIX"),
    ({"PROFILE_STORE": "memory"}, "PROFILE_STORE"),
])
def test_validate_startup_config_rejects_demo_shortcuts_in_prod(override, name):
    settings = _settings(ENV="prod", PROFILE_STORE="mongo")
    for key, value in override.items():
        setattr(settings, key, value)
    with pytest.raises(RuntimeError, match=name):
        validate_startup_config(settings)


def test_validate_startup_config_logs_warning_for_demo_mode(caplog):
    caplog.set_level("WARNING")

    validate_startup_config(_settings(GEMINI_API_KEY="", OTP_STATIC_CODE="123456"))

    assert "GEMINI_API_KEY" in caplog.text
    assert "OTP_STATIC_CODE" in caplog.text


def test_validate_startup_config_passes_with_valid_required_config():
    validate_startup_config(_settings())
    validate_startup_config(_settings(ENV="prod", PROFILE_STORE="mongo"))
