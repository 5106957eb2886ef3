"""Tests for saved chat sessions."""

from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path

import pytest

from stockagent.ai.prompts import NEW_SESSION_TITLE, WELCOME_MESSAGE
from stockagent.chat.message_model import ChatMessage, Role
from stockagent.services.sessions import (
    WELCOME_MESSAGE_ID,
    ChatSession,
    SessionLibrary,
    SessionStore,
    session_title,
)
from tests.helpers import fake_stock


def _session(session_id: str, *, updated: datetime, title: str = NEW_SESSION_TITLE) -> ChatSession:
    return ChatSession(
        id=session_id,
        title=title,
        messages=[ChatMessage.user(f"{session_id}?"), ChatMessage.model("ok")],
        created_at=updated,
        updated_at=updated,
    )


def test_new_session_opens_with_greeting_outside_transcript() -> None:
    session = ChatSession.start()

    assert session.title == NEW_SESSION_TITLE
    assert [message.content for message in session.messages] == [WELCOME_MESSAGE]
    assert session.messages[0].id == WELCOME_MESSAGE_ID
    assert session.messages[0].role is Role.MODEL
    assert session.transcript == []


def test_title_comes_from_first_user_message() -> None:
    short = [ChatMessage.model("hi"), ChatMessage.user("苹果股价"), ChatMessage.user("later")]
    long_text = "请帮我对比一下特斯拉和福特最近一个月的股价走势"

    assert session_title(short) == "苹果股价"
    assert session_title([ChatMessage.user(long_text)]) == f"{long_text[:20]}..."
    assert session_title([ChatMessage.user("x" * 20)]) == "x" * 20
    assert session_title([ChatMessage.model("only the model")]) is None


def test_record_titles_session_once() -> None:
    session = ChatSession.start()

    session.record([ChatMessage.user("特斯拉"), ChatMessage.model("下跌了")])
    session.record([ChatMessage.user("福特呢")])

    assert session.title == "特斯拉"
    assert [message.role for message in session.transcript] == [Role.USER, Role.MODEL, Role.USER]


def test_clear_returns_session_to_greeting() -> None:
    session = ChatSession.start()
    session.record([ChatMessage.user("特斯拉")])

    session.clear()

    assert session.title == NEW_SESSION_TITLE
    assert session.transcript == []


# =============================================================================
# Store
# =============================================================================


def test_store_roundtrip_keeps_tool_payloads(tmp_path: Path) -> None:
    store = SessionStore(tmp_path / "sessions.json")
    session = ChatSession.start()
    session.record([ChatMessage.user("TSLA?"), ChatMessage.tool("已获取 TSLA 的数据", [fake_stock()])])

    store.save([session])
    restored = SessionStore(tmp_path / "sessions.json").load()

    assert restored == [session]
    assert restored[0].messages[-1].stock_data == (fake_stock(),)


def test_store_writes_readable_json(tmp_path: Path) -> None:
    store = SessionStore(tmp_path / "nested" / "sessions.json")

    path = store.save([ChatSession.start()])

    payload = json.loads(path.read_text(encoding="utf-8"))
    assert payload["version"] == 1
    assert WELCOME_MESSAGE in path.read_text(encoding="utf-8")
    assert not path.with_suffix(".tmp").exists()


def test_store_tolerates_missing_and_corrupt_files(tmp_path: Path) -> None:
    store = SessionStore(tmp_path / "sessions.json")
    assert store.load() == []

    store.path.write_text("{broken", encoding="utf-8")
    assert store.load() == []


def test_store_skips_unreadable_entries(tmp_path: Path) -> None:
    good = ChatSession.start()
    store = SessionStore(tmp_path / "sessions.json")
    store.path.write_text(
        json.dumps({"version": 1, "sessions": [{"title": "no id"}, "junk", good.to_dict()]}),
        encoding="utf-8",
    )

    assert store.load() == [good]


# =============================================================================
# Library
# =============================================================================


def test_resume_latest_picks_most_recent_update(tmp_path: Path) -> None:
    store = SessionStore(tmp_path / "sessions.json")
    older = _session("old", updated=datetime(2024, 1, 1, tzinfo=timezone.utc))
    newer = _session("new", updated=datetime(2024, 6, 1, tzinfo=timezone.utc))
    store.save([older, newer])

    library = SessionLibrary(store)

    assert library.resume_latest().id == "new"
    assert library.current is not None and library.current.id == "new"


def test_resume_latest_starts_session_when_none_saved(tmp_path: Path) -> None:
    store = SessionStore(tmp_path / "sessions.json")
    library = SessionLibrary(store)

    session = library.resume_latest()

    assert library.sessions == (session,)
    assert [saved.id for saved in store.load()] == [session.id]


def test_record_persists_active_session(tmp_path: Path) -> None:
    store = SessionStore(tmp_path / "sessions.json")
    library = SessionLibrary(store)
    library.resume_latest()

    library.record([ChatMessage.user("苹果"), ChatMessage.model("稳健")])

    saved = store.load()[0]
    assert saved.title == "苹果"
    assert [message.content for message in saved.transcript] == ["苹果", "稳健"]


def test_new_sessions_are_listed_first() -> None:
    library = SessionLibrary()
    first = library.resume_latest()

    second = library.start_new()

    assert library.sessions == (second, first)
    assert library.current is second
    assert library.select(2) is first


def test_delete_inactive_session_keeps_current() -> None:
    library = SessionLibrary()
    first = library.resume_latest()
    second = library.start_new()

    assert library.delete(2) is None
    assert library.sessions == (second,)
    assert library.current is second
    assert first not in library.sessions


def test_delete_active_session_switches_to_first_remaining() -> None:
    library = SessionLibrary()
    first = library.resume_latest()
    library.start_new()

    replacement = library.delete(1)

    assert replacement is first
    assert library.current is first


def test_delete_last_session_starts_a_fresh_one(tmp_path: Path) -> None:
    store = SessionStore(tmp_path / "sessions.json")
    library = SessionLibrary(store)
    only = library.resume_latest()

    replacement = library.delete(1)

    assert replacement is not None and replacement is not only
    assert library.sessions == (replacement,)
    assert [saved.id for saved in store.load()] == [replacement.id]


@pytest.mark.parametrize("index", [0, 2, -1])
def test_out_of_range_index_is_rejected(index: int) -> None:
    library = SessionLibrary()
    library.resume_latest()

    with pytest.raises(IndexError):
        library.select(index)
    with pytest.raises(IndexError):
        library.delete(index)
