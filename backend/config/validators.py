"""Startup configuration validation guardrails."""

import logging


logger = logging.getLogger(__name__)


def _require_jwt_secret(settings) -> None:
    """Fail closed if JWT secret is not explicitly configured."""
    if not settings.JWT_SECRET or not settings.JWT_SECRET.strip():
        raise RuntimeError(
            "STARTUP FAILED — JWT_SECRET is required and cannot be empty. "
            "Set JWT_SECRET in backend/.env or container environment and restart the server."
        )


def validate_startup_config(settings) -> None:
    """Centralized startup guardrails for required and warning-level config."""
    _require_jwt_secret(settings)

    if settings.OTP_LENGTH < 4:
        raise RuntimeError(f"STARTUP FAILED — OTP_LENGTH={settings.OTP_LENGTH} is below 4 digits.")

    if settings.ENV == "prod":
        # Demo shortcuts are not allowed in production
        if settings.OTP_STATIC_CODE:
            raise RuntimeError(
                "STARTUP FAILED — OTP_STATIC_CODE must be empty in production."
            )
        if settings.OTP_DEMO_THROTTLE_SUFFIX:
            raise RuntimeError(
                "STARTUP FAILED — OTP_DEMO_THROTTLE_SUFFIX must be empty in production."
            )
        if settings.PROFILE_STORE != "mongo":
            raise RuntimeError(
                "STARTUP FAILED — PROFILE_STORE must be 'mongo' in production."
            )

    if not settings.GEMINI_API_KEY:
        logger.warning("CONFIG WARNING: GEMINI_API_KEY is not set — assistant runs in demo mode")
    if settings.OTP_STATIC_CODE:
        logger.warning("CONFIG WARNING: OTP_STATIC_CODE is set — every identifier shares one code")
