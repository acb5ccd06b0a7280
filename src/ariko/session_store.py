"""Chat session history: bounded, most-recent-first, persisted as one JSON list."""

from __future__ import annotations

import logging
from pathlib import Path

from pydantic import TypeAdapter, ValidationError

from .config import HISTORY_PATH, ArikoSettings
from .events import EventBus, EventType
from .models import ChatMessage, ChatSession

logger = logging.getLogger(__name__)

_HISTORY_ADAPTER = TypeAdapter(list[ChatSession])


class HistoryStorage:
    """Load/save the session list at a fixed path."""

    def __init__(self, path: Path = HISTORY_PATH) -> None:
        self.path = Path(path)

    def load(self) -> list[ChatSession]:
        """Return stored sessions; a missing, empty or corrupt file yields []."""
        if not self.path.exists():
            return []
        try:
            raw = self.path.read_bytes()
            if not raw.strip():
                return []
            return _HISTORY_ADAPTER.validate_json(raw)
        except (OSError, UnicodeDecodeError, ValidationError) as e:
            logger.error("Ariko: Failed to load chat history from %s: %s", self.path, e)
            return []

    def save(self, sessions: list[ChatSession]) -> None:
        """Persist sessions; failures are logged, never raised."""
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_bytes(_HISTORY_ADAPTER.dump_json(sessions, indent=2))
        except OSError as e:
            logger.error("Ariko: Failed to save chat history to %s: %s", self.path, e)


class SessionStore:
    """
    Owns the session history and the active session.

    ``active`` is always a member of ``history``; history is ordered
    most-recent-first and bounded by ``settings.chat_history_size`` (0 keeps
    everything). Every mutation is saved through the storage.
    """

    def __init__(
        self,
        settings: ArikoSettings,
        storage: HistoryStorage | None = None,
        events: EventBus | None = None,
    ) -> None:
        self.settings = settings
        self.storage = storage or HistoryStorage()
        self.events = events or EventBus()
        self._history: list[ChatSession] = self.storage.load()
        if not self._history:
            self._history.append(ChatSession())
        self._active = self._history[0]

    @property
    def active(self) -> ChatSession:
        return self._active

    @property
    def history(self) -> list[ChatSession]:
        return list(self._history)

    def find(self, session_id: str) -> ChatSession | None:
        for session in self._history:
            if session.session_id == session_id:
                return session
        return None

    def _contains(self, session: ChatSession) -> bool:
        return any(s is session for s in self._history)

    def _persist(self) -> None:
        self.storage.save(self._history)

    def new_session(self) -> ChatSession:
        """Start a fresh chat, unless the active one is still empty."""
        if not self._active.messages:
            self.events.emit(EventType.CHAT_CLEARED, session_id=self._active.session_id)
            return self._active

        self._active = ChatSession()
        self._history.insert(0, self._active)
        self._evict()
        self._persist()
        self.events.emit(EventType.CHAT_CLEARED, session_id=self._active.session_id)
        self.events.emit(EventType.HISTORY_CHANGED)
        return self._active

    def _evict(self) -> None:
        limit = self.settings.chat_history_size
        if limit <= 0:
            return
        index = len(self._history) - 1
        while len(self._history) > limit and index >= 0:
            if self._history[index] is not self._active:
                evicted = self._history.pop(index)
                logger.debug("Evicted session %s from history", evicted.session_id)
            index -= 1

    def switch_to(self, session: ChatSession) -> bool:
        """Make ``session`` active. Returns False when nothing changed."""
        if session is self._active or not self._contains(session):
            return False
        self._active = session
        self.events.emit(EventType.CHAT_RELOADED, session_id=session.session_id)
        self.events.emit(EventType.HISTORY_CHANGED)
        return True

    def delete(self, session: ChatSession) -> bool:
        if not self._contains(session):
            return False
        was_active = session is self._active
        self._history = [s for s in self._history if s is not session]
        if not was_active:
            self._persist()
            self.events.emit(EventType.HISTORY_CHANGED)
        elif self._history:
            self.switch_to(self._history[0])
            self._persist()
        else:
            self._reset_to_fresh()
        return True

    def clear_all(self) -> None:
        """Drop every session and start over with an empty one."""
        self._history.clear()
        self._reset_to_fresh()

    def _reset_to_fresh(self) -> None:
        self._active = ChatSession()
        self._history.insert(0, self._active)
        self._persist()
        self.events.emit(EventType.CHAT_CLEARED, session_id=self._active.session_id)
        self.events.emit(EventType.HISTORY_CHANGED)

    def append_message(self, message: ChatMessage, session: ChatSession | None = None) -> None:
        """Append to ``session`` (default: the active one) and persist."""
        target = session or self._active
        target.append(message)
        self._persist()
        self.events.emit(
            EventType.MESSAGE_ADDED,
            session_id=target.session_id,
            message=message,
        )

    def rename(self, session: ChatSession, name: str) -> None:
        session.rename(name)
        self._persist()
        self.events.emit(EventType.HISTORY_CHANGED)
