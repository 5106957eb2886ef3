"""Tests for the conversation history store."""

from __future__ import annotations

import json

import pytest

from stockagent.ai.orchestration.history import (
    ConversationHistory,
    HistoryError,
    Speaker,
    TextPart,
    ToolCallPart,
    ToolResultPart,
    Turn,
)
from stockagent.chat.message_model import ChatMessage
from tests.helpers import call_turn, fake_stock, text_turn


def _result(call_id: str, symbol: str = "TSLA") -> ToolResultPart:
    return ToolResultPart(call_id=call_id, name="get_stock_market_data", payload={"result": {"symbol": symbol}})


def test_final_answer_commits_after_user_turn() -> None:
    history = ConversationHistory()
    history.append_user("hello")
    history.stage_model_turn(text_turn("hi there"))

    assert len(history) == 1
    assert history.last == text_turn("hi there")

    history.commit_final()

    assert [turn.speaker for turn in history.turns] == [Speaker.USER, Speaker.MODEL]
    assert history.pending is None


def test_tool_exchange_commits_model_and_single_result_turn() -> None:
    history = ConversationHistory()
    history.append_user("compare")
    history.stage_model_turn(
        call_turn(("c1", "get_stock_market_data", {"symbol": "AAPL"}), ("c2", "get_stock_market_data", {"symbol": "MSFT"}))
    )

    result_turn = history.commit_tool_exchange([_result("c2", "MSFT"), _result("c1", "AAPL")])

    assert [turn.speaker for turn in history.turns] == [Speaker.USER, Speaker.MODEL, Speaker.TOOL_CHANNEL]
    assert result_turn is history.turns[-1]
    assert [part.call_id for part in result_turn.tool_results_parts] == ["c2", "c1"]


def test_tool_exchange_rejects_mismatched_results() -> None:
    history = ConversationHistory()
    history.append_user("compare")
    history.stage_model_turn(
        call_turn(("c1", "get_stock_market_data", {"symbol": "AAPL"}), ("c2", "get_stock_market_data", {"symbol": "MSFT"}))
    )

    with pytest.raises(HistoryError):
        history.commit_tool_exchange([_result("c1")])

    assert len(history) == 1
    assert history.pending is not None


def test_commit_final_rejects_turn_with_tool_calls() -> None:
    history = ConversationHistory()
    history.append_user("hi")
    history.stage_model_turn(call_turn(("c1", "get_stock_market_data", {"symbol": "TSLA"})))

    with pytest.raises(HistoryError):
        history.commit_final()


def test_discard_pending_leaves_committed_turns_untouched() -> None:
    history = ConversationHistory()
    history.append_user("hi")
    staged = call_turn(("c1", "get_stock_market_data", {"symbol": "TSLA"}))
    history.stage_model_turn(staged)

    assert history.discard_pending() is staged
    assert history.discard_pending() is None
    assert history.turns == (Turn.user("hi"),)


def test_mutations_require_valid_pending_state() -> None:
    history = ConversationHistory()

    with pytest.raises(HistoryError):
        history.commit_final()
    with pytest.raises(HistoryError):
        history.stage_model_turn(Turn.user("not a model turn"))

    history.append_user("hi")
    history.stage_model_turn(text_turn("one"))
    with pytest.raises(HistoryError):
        history.stage_model_turn(text_turn("two"))
    with pytest.raises(HistoryError):
        history.append_user("again")


def test_commit_tool_exchange_requires_tool_calls() -> None:
    history = ConversationHistory()
    history.append_user("hi")
    history.stage_model_turn(text_turn("plain"))

    with pytest.raises(HistoryError):
        history.commit_tool_exchange([])


def test_turns_snapshot_is_immutable() -> None:
    history = ConversationHistory()
    history.append_user("hi")
    snapshot = history.turns

    history.append_user("again")

    assert len(snapshot) == 1
    assert len(history.turns) == 2


def test_seed_maps_messages_to_text_turns() -> None:
    history = ConversationHistory()
    history.append_user("stale")
    messages = [
        ChatMessage.user("特斯拉怎么样?"),
        ChatMessage.tool("已获取 TSLA 的数据", [fake_stock()]),
        ChatMessage.model("特斯拉下跌了1.3%。"),
    ]

    history.seed(messages)

    assert history.turns == (
        Turn.user("特斯拉怎么样?"),
        Turn.model(TextPart("特斯拉下跌了1.3%。")),
    )


def test_reset_clears_turns_and_pending() -> None:
    history = ConversationHistory()
    history.append_user("hi")
    history.stage_model_turn(text_turn("pending"))

    history.reset()

    assert len(history) == 0
    assert history.pending is None
    assert history.last is None


def test_to_chat_messages_renders_every_speaker() -> None:
    history = ConversationHistory()
    history.append_user("查 TSLA")
    history.stage_model_turn(
        Turn.model(
            TextPart("让我查一下"),
            ToolCallPart(call_id="c1", name="get_stock_market_data", arguments={"symbol": "TSLA"}),
        )
    )
    history.commit_tool_exchange([_result("c1")])
    history.stage_model_turn(text_turn("结论"))
    history.commit_final()

    messages = history.to_chat_messages(system_instruction="persona")

    assert [message["role"] for message in messages] == ["system", "user", "assistant", "tool", "assistant"]
    assert messages[2]["content"] == "让我查一下"
    assert messages[2]["tool_calls"][0]["id"] == "c1"
    assert json.loads(messages[3]["content"]) == {"result": {"symbol": "TSLA"}}
    assert messages[4] == {"role": "assistant", "content": "结论"}


def test_empty_model_turn_renders_empty_string_content() -> None:
    assert Turn.model().to_chat_messages() == [{"role": "assistant", "content": ""}]
