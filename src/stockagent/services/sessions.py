"""Persistence helpers for chat sessions kept between terminal runs."""

from __future__ import annotations

import json
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable, Mapping, Sequence

from ..ai.prompts import NEW_SESSION_TITLE, WELCOME_MESSAGE
from ..chat.message_model import ChatMessage, Role
from .settings import _SETTINGS_DIR

__all__ = [
    "ChatSession",
    "SessionLibrary",
    "SessionStore",
    "WELCOME_MESSAGE_ID",
    "session_title",
]

LOGGER = logging.getLogger(__name__)
_SESSIONS_FILENAME = "sessions.json"
_SESSIONS_VERSION = 1
_TITLE_LENGTH = 20

WELCOME_MESSAGE_ID = "welcome"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _default_sessions_path() -> Path:
    return _SETTINGS_DIR / _SESSIONS_FILENAME


def _welcome_message() -> ChatMessage:
    return ChatMessage(role=Role.MODEL, content=WELCOME_MESSAGE, id=WELCOME_MESSAGE_ID)


def session_title(messages: Iterable[ChatMessage]) -> str | None:
    """Title derived from the first user message, or ``None`` before one exists."""

    for message in messages:
        if message.role is Role.USER:
            content = message.content
            if len(content) > _TITLE_LENGTH:
                return f"{content[:_TITLE_LENGTH]}..."
            return content
    return None


@dataclass(slots=True)
class ChatSession:
    """One saved conversation as the user saw it."""

    id: str
    title: str = NEW_SESSION_TITLE
    messages: list[ChatMessage] = field(default_factory=list)
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)

    @classmethod
    def start(cls) -> "ChatSession":
        """Fresh session opening with the greeting."""

        return cls(id=uuid.uuid4().hex, messages=[_welcome_message()])

    @property
    def transcript(self) -> list[ChatMessage]:
        """Messages used to reseed the agent; the greeting is display-only."""

        return [message for message in self.messages if message.id != WELCOME_MESSAGE_ID]

    def record(self, messages: Iterable[ChatMessage]) -> None:
        self.messages.extend(messages)
        self.updated_at = _utcnow()
        if self.title == NEW_SESSION_TITLE:
            self.title = session_title(self.messages) or NEW_SESSION_TITLE

    def clear(self) -> None:
        self.messages = [_welcome_message()]
        self.title = NEW_SESSION_TITLE
        self.updated_at = _utcnow()

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "messages": [message.to_dict() for message in self.messages],
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "ChatSession":
        created_at = datetime.fromisoformat(str(payload["created_at"]))
        updated_raw = payload.get("updated_at")
        return cls(
            id=str(payload["id"]),
            title=str(payload.get("title") or NEW_SESSION_TITLE),
            messages=[ChatMessage.from_dict(item) for item in payload.get("messages") or ()],
            created_at=created_at,
            updated_at=datetime.fromisoformat(str(updated_raw)) if updated_raw else created_at,
        )


class SessionStore:
    """Persistence adapter for a list of :class:`ChatSession` objects."""

    def __init__(self, path: Path | None = None) -> None:
        self._path = path or _default_sessions_path()

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> list[ChatSession]:
        entries = self._read_payload().get("sessions")
        if not isinstance(entries, list):
            return []
        sessions: list[ChatSession] = []
        for entry in entries:
            if not isinstance(entry, Mapping):
                continue
            try:
                sessions.append(ChatSession.from_dict(entry))
            except (KeyError, TypeError, ValueError) as exc:
                LOGGER.warning("Skipping unreadable session in %s: %s", self._path, exc)
        return sessions

    def save(self, sessions: Sequence[ChatSession]) -> Path:
        payload = {
            "version": _SESSIONS_VERSION,
            "sessions": [session.to_dict() for session in sessions],
        }
        body = json.dumps(payload, indent=2, ensure_ascii=False)
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._path.with_suffix(".tmp")
        tmp_path.write_text(body, encoding="utf-8")
        tmp_path.replace(self._path)
        return self._path

    def _read_payload(self) -> dict[str, Any]:
        if not self._path.exists():
            return {}
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
            if isinstance(data, Mapping):
                return dict(data)
        except FileNotFoundError:
            return {}
        except json.JSONDecodeError as exc:
            LOGGER.warning("Session file %s is not valid JSON: %s", self._path, exc)
        return {}


class SessionLibrary:
    """Saved sessions, newest first, with one of them active.

    Every change is written through to the backing :class:`SessionStore`.
    Without a store the library lives in memory only. Indexes accepted by
    :meth:`select` and :meth:`delete` are 1-based, matching the listing the
    terminal prints.
    """

    def __init__(self, store: SessionStore | None = None) -> None:
        self._store = store
        self._sessions: list[ChatSession] = store.load() if store is not None else []
        self._current: ChatSession | None = None

    @property
    def sessions(self) -> tuple[ChatSession, ...]:
        return tuple(self._sessions)

    @property
    def current(self) -> ChatSession | None:
        return self._current

    def resume_latest(self) -> ChatSession:
        """Activate the most recently updated session, starting one if none exist."""

        if not self._sessions:
            return self.start_new()
        self._current = max(self._sessions, key=lambda session: session.updated_at)
        LOGGER.debug("Resumed session %s (%s)", self._current.id, self._current.title)
        return self._current

    def start_new(self) -> ChatSession:
        session = ChatSession.start()
        self._sessions.insert(0, session)
        self._current = session
        self._persist()
        return session

    def select(self, index: int) -> ChatSession:
        self._current = self._at(index)
        return self._current

    def delete(self, index: int) -> ChatSession | None:
        """Remove a session.

        Returns:
            The session that became active when the active one was removed,
            otherwise ``None``.
        """

        session = self._at(index)
        self._sessions.remove(session)
        LOGGER.info("Deleted session %s (%s)", session.id, session.title)
        if session is not self._current:
            self._persist()
            return None
        if not self._sessions:
            return self.start_new()
        self._current = self._sessions[0]
        self._persist()
        return self._current

    def record(self, messages: Iterable[ChatMessage]) -> None:
        """Append displayed messages to the active session."""

        self._require_current().record(messages)
        self._persist()

    def clear_current(self) -> ChatSession:
        session = self._require_current()
        session.clear()
        self._persist()
        return session

    def _at(self, index: int) -> ChatSession:
        if not 1 <= index <= len(self._sessions):
            raise IndexError(f"No session numbered {index}")
        return self._sessions[index - 1]

    def _require_current(self) -> ChatSession:
        if self._current is None:
            raise RuntimeError("No session is active")
        return self._current

    def _persist(self) -> None:
        if self._store is None:
            return
        try:
            self._store.save(self._sessions)
        except OSError as exc:
            LOGGER.warning("Failed to save sessions to %s: %s", self._store.path, exc)
