"""Service layer helpers (settings persistence, secrets, saved sessions)."""

from .sessions import ChatSession, SessionLibrary, SessionStore
from .settings import DEFAULT_MODELS, SecretVault, Settings, SettingsStore, redact_secret

__all__ = [
    "DEFAULT_MODELS",
    "ChatSession",
    "SecretVault",
    "SessionLibrary",
    "SessionStore",
    "Settings",
    "SettingsStore",
    "redact_secret",
]
