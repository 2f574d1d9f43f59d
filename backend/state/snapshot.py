"""Persisted subset of the application state and its wire form.

Blob layout mirrors the web client's persisted store:
    {"state": {"session": ..., "language": ..., "history": [...]}, "version": 0}
"""
import json
from typing import List, Optional

from pydantic import BaseModel, Field, ValidationError

from core.exceptions import StorageCorruptError
from schemas.history import HistoryEvent
from schemas.session import Language, UserProfile

SNAPSHOT_VERSION = 0


class Snapshot(BaseModel):
    session: Optional[UserProfile] = None
    # absent in older blobs; the container fills in its default
    language: Optional[Language] = None
    history: List[HistoryEvent] = Field(default_factory=list)


def serialize_snapshot(snapshot: Snapshot) -> str:
    """Deterministic JSON: sorted keys, so equal states give equal blobs."""
    return json.dumps(
        {"state": snapshot.model_dump(mode="json"), "version": SNAPSHOT_VERSION},
        sort_keys=True,
        ensure_ascii=False,
        separators=(",", ":"),
    )


def deserialize_snapshot(blob: str) -> Snapshot:
    """Parse a stored blob. Raises StorageCorruptError on any malformation."""
    try:
        raw = json.loads(blob)
    except (TypeError, ValueError) as e:
        raise StorageCorruptError(f"Snapshot is not valid JSON: {e}") from e

    if not isinstance(raw, dict) or not isinstance(raw.get("state"), dict):
        raise StorageCorruptError("Snapshot has no state object")
    if raw.get("version", SNAPSHOT_VERSION) != SNAPSHOT_VERSION:
        raise StorageCorruptError(f"Unsupported snapshot version: {raw.get('version')}")

    try:
        return Snapshot.model_validate(raw["state"])
    except ValidationError as e:
        raise StorageCorruptError(f"Snapshot failed validation: {e.error_count()} errors") from e
