"""Application State Container — the one authoritative client state.

Regions:
  - session:        the signed-in UserProfile (at most one), or None
  - language:       UI language, drives text direction
  - last_location:  last known GeoLocation (memory only)
  - history:        append-only HistoryEvent log, newest first

session, language and history are persisted after every mutation that
touches them, inside the same critical section as the mutation. The
container is constructed explicitly and passed to the components that
need it; there is no module-level instance.
"""
import itertools
import logging
import secrets
import threading
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

from core.exceptions import StorageCorruptError
from schemas.history import GUEST_USER_ID, HistoryAction, HistoryEvent
from schemas.session import GeoLocation, Language, UserProfile, now_ms
from state.snapshot import Snapshot, deserialize_snapshot, serialize_snapshot
from state.storage import MemorySnapshotStorage, SnapshotStorage

logger = logging.getLogger(__name__)

Listener = Callable[["AppState"], None]
# Presentation-layer hook: receives ("ltr" | "rtl", language)
DirectionSink = Callable[[str, Language], None]


def text_direction(language: Union[Language, str]) -> str:
    return "ltr" if Language(language) == Language.EN else "rtl"


class AppState:
    """Single-writer state container with snapshot persistence."""

    def __init__(
        self,
        storage: Optional[SnapshotStorage] = None,
        default_language: Union[Language, str] = Language.HE,
        direction_sink: Optional[DirectionSink] = None,
    ):
        self._lock = threading.RLock()
        self._storage = storage or MemorySnapshotStorage()
        self._default_language = Language(default_language)
        self._direction_sink = direction_sink
        self._listeners: List[Listener] = []
        self._seq = itertools.count()
        self._rehydrated = False

        self._session: Optional[UserProfile] = None
        self._language: Language = self._default_language
        self._location: Optional[GeoLocation] = None
        self._history: List[HistoryEvent] = []

    @classmethod
    def open(cls, storage: SnapshotStorage, **kwargs) -> "AppState":
        """Construct and rehydrate in one step — the normal startup path."""
        state = cls(storage=storage, **kwargs)
        state.rehydrate()
        return state

    # ---- Read access ----

    @property
    def session(self) -> Optional[UserProfile]:
        return self._session

    @property
    def language(self) -> Language:
        return self._language

    @property
    def last_location(self) -> Optional[GeoLocation]:
        return self._location

    @property
    def history(self) -> Tuple[HistoryEvent, ...]:
        with self._lock:
            return tuple(self._history)

    @property
    def is_authenticated(self) -> bool:
        return self._session is not None

    @property
    def current_user_id(self) -> str:
        session = self._session
        return session.id if session else GUEST_USER_ID

    def snapshot(self) -> Snapshot:
        with self._lock:
            return Snapshot(
                session=self._session,
                language=self._language,
                history=list(self._history),
            )

    def serialize(self) -> str:
        return serialize_snapshot(self.snapshot())

    # ---- Subscription ----

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a listener called after every mutation. Returns unsubscribe."""
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    # ---- Mutations ----

    def set_session(self, session: Optional[UserProfile]) -> None:
        """Unconditional replace. None is the logout path."""
        with self._lock:
            self._session = session
            self._persist()
        logger.info("[State] session=%s", session.id if session else None)
        self._notify()

    def update_session(self, **changes: Any) -> UserProfile:
        """Profile edit for the active session (name, avatar, location...)."""
        with self._lock:
            if self._session is None:
                raise ValueError("No active session to update")
            self._session = self._session.model_copy(update=changes)
            self._persist()
            session = self._session
        self._notify()
        return session

    def set_language(self, language: Union[Language, str]) -> None:
        lang = Language(language)
        with self._lock:
            self._language = lang
            self._persist()
        self._apply_direction(lang)
        self._notify()

    def set_location(self, location: Optional[GeoLocation]) -> None:
        with self._lock:
            self._location = location
        self._notify()

    def append_history(
        self,
        action: Union[HistoryAction, str],
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Optional[HistoryEvent]:
        """Stamp and prepend a history event. Never raises to the caller."""
        try:
            with self._lock:
                event = HistoryEvent(
                    id=self._next_event_id(),
                    user_id=self.current_user_id,
                    action=HistoryAction(action),
                    metadata=dict(metadata or {}),
                    timestamp=now_ms(),
                )
                self._history.insert(0, event)
                self._persist()
        except Exception as e:
            logger.warning("[State] history append dropped: action=%s error=%s", action, str(e))
            return None
        self._notify()
        return event

    def logout(self) -> None:
        """Drop the session. History and language are kept."""
        self.set_session(None)

    # ---- Rehydration ----

    def rehydrate(self) -> bool:
        """Load the persisted snapshot once per process.

        Returns True when stored state was applied, False when defaults were
        used (absent or corrupt snapshot) or rehydration already happened.
        """
        with self._lock:
            if self._rehydrated:
                return False
            self._rehydrated = True
            applied = False
            try:
                blob = self._storage.load()
                if blob is not None:
                    snap = deserialize_snapshot(blob)
                    self._session = snap.session
                    self._language = snap.language or self._default_language
                    self._history = list(snap.history)
                    applied = True
            except StorageCorruptError as e:
                logger.warning("[State] snapshot corrupt, using defaults: %s", e.message)
                self._reset_defaults()
            except OSError as e:
                logger.warning("[State] snapshot unreadable, using defaults: %s", str(e))
                self._reset_defaults()
            language = self._language

        logger.info(
            "[State] rehydrated applied=%s session=%s history=%d",
            applied, self._session.id if self._session else None, len(self._history),
        )
        self._apply_direction(language)
        self._notify()
        return applied

    # ---- Internals ----

    def _reset_defaults(self) -> None:
        self._session = None
        self._language = self._default_language
        self._history = []

    def _next_event_id(self) -> str:
        # counter keeps ids unique in-process; random part keeps them unique across restarts
        return f"{now_ms():x}-{next(self._seq):x}-{secrets.token_hex(4)}"

    def _persist(self) -> None:
        """Write the persisted subset. Caller holds the lock."""
        blob = serialize_snapshot(Snapshot(
            session=self._session,
            language=self._language,
            history=self._history,
        ))
        try:
            self._storage.save(blob)
        except OSError as e:
            logger.error("[State] snapshot write failed: %s", str(e))

    def _apply_direction(self, language: Language) -> None:
        if self._direction_sink is None:
            return
        try:
            self._direction_sink(text_direction(language), language)
        except Exception as e:
            logger.warning("[State] direction sink failed: %s", str(e))

    def _notify(self) -> None:
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(self)
            except Exception as e:
                logger.warning("[State] listener failed: %s", str(e))
