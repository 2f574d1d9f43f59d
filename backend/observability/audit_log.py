"""Audit logging — structured server-side audit events.

Always logged (redacted). Persisted to MongoDB when PROFILE_STORE=mongo.
Audit failures never fail the audited action.
"""
import logging
from typing import Any, Dict, Optional

from config.feature_flags import use_mongo_profiles
from config.settings import get_settings
from schemas.audit import AuditEvent, AuditEventType
from observability.redaction import redact_dict

logger = logging.getLogger(__name__)


async def log_audit_event(
    event_type: AuditEventType,
    user_id: Optional[str] = None,
    details: Optional[Dict[str, Any]] = None,
) -> str:
    """Create and persist an audit event. Returns event_id."""
    event = AuditEvent(
        event_type=event_type,
        user_id=user_id,
        details=details or {},
        env=get_settings().ENV,
    )

    if use_mongo_profiles():
        from core.database import get_db
        try:
            await get_db().audit_events.insert_one(event.to_doc())
        except Exception as e:
            logger.error("AUDIT persist failed: event=%s error=%s", event_type.value, str(e))

    safe_details = redact_dict(details or {})
    logger.info(
        "AUDIT event=%s user=%s details=%s",
        event_type.value,
        user_id,
        safe_details,
    )
    return event.event_id
