"""Conversation transcript owned by a single agent instance.

The transcript is an append-only log of :class:`Turn` objects plus one
*pending* slot. A model turn is staged in the pending slot as soon as it is
observed and only committed once its outcome is known: immediately for a
final answer, or together with its tool-result turn when the model asked for
tools. Committed turns are never rewritten, and an abandoned iteration simply
discards the pending turn, so the log can never end on a model turn whose
tool calls went unanswered.
"""

from __future__ import annotations

import enum
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Iterable, Iterator, Mapping, Sequence, Union

from ...chat.message_model import ChatMessage, Role

__all__ = [
    "Speaker",
    "TextPart",
    "ToolCallPart",
    "ToolResultPart",
    "Part",
    "Turn",
    "HistoryError",
    "ConversationHistory",
    "render_chat_messages",
]

LOGGER = logging.getLogger(__name__)


class Speaker(str, enum.Enum):
    """Origin of a transcript turn."""

    USER = "user"
    MODEL = "model"
    TOOL_CHANNEL = "tool-channel"


@dataclass(slots=True, frozen=True)
class TextPart:
    """Plain text content."""

    text: str


@dataclass(slots=True, frozen=True)
class ToolCallPart:
    """A tool invocation requested by the model."""

    call_id: str
    name: str
    arguments: Mapping[str, Any] = field(default_factory=dict)


@dataclass(slots=True, frozen=True)
class ToolResultPart:
    """The outcome of a tool invocation, keyed by the originating call id."""

    call_id: str
    name: str
    payload: Mapping[str, Any] = field(default_factory=dict)


Part = Union[TextPart, ToolCallPart, ToolResultPart]


@dataclass(slots=True, frozen=True)
class Turn:
    """One immutable entry of the transcript."""

    speaker: Speaker
    parts: tuple[Part, ...] = ()

    @classmethod
    def user(cls, text: str) -> "Turn":
        return cls(speaker=Speaker.USER, parts=(TextPart(text),))

    @classmethod
    def model(cls, *parts: Part) -> "Turn":
        return cls(speaker=Speaker.MODEL, parts=tuple(parts))

    @classmethod
    def tool_results(cls, results: Iterable[ToolResultPart]) -> "Turn":
        return cls(speaker=Speaker.TOOL_CHANNEL, parts=tuple(results))

    @property
    def text(self) -> str:
        """Concatenation of every text part."""

        return "".join(part.text for part in self.parts if isinstance(part, TextPart))

    @property
    def tool_calls(self) -> tuple[ToolCallPart, ...]:
        return tuple(part for part in self.parts if isinstance(part, ToolCallPart))

    @property
    def tool_results_parts(self) -> tuple[ToolResultPart, ...]:
        return tuple(part for part in self.parts if isinstance(part, ToolResultPart))

    def to_chat_messages(self) -> list[dict[str, Any]]:
        """Render the turn as OpenAI chat-completion messages.

        A tool-channel turn fans out into one ``tool`` message per result
        part; the turn itself stays a single transcript entry.
        """

        if self.speaker is Speaker.USER:
            return [{"role": "user", "content": self.text}]
        if self.speaker is Speaker.MODEL:
            message: dict[str, Any] = {"role": "assistant", "content": self.text or None}
            calls = self.tool_calls
            if calls:
                message["tool_calls"] = [
                    {
                        "id": call.call_id,
                        "type": "function",
                        "function": {
                            "name": call.name,
                            "arguments": json.dumps(dict(call.arguments), ensure_ascii=False),
                        },
                    }
                    for call in calls
                ]
            elif message["content"] is None:
                message["content"] = ""
            return [message]
        return [
            {
                "role": "tool",
                "tool_call_id": result.call_id,
                "content": json.dumps(dict(result.payload), ensure_ascii=False),
            }
            for result in self.tool_results_parts
        ]


class HistoryError(RuntimeError):
    """Raised when a mutation would break the transcript pairing rules."""


class ConversationHistory:
    """Append-only transcript with a single pending model-turn slot."""

    def __init__(self, turns: Iterable[Turn] | None = None) -> None:
        self._turns: list[Turn] = list(turns or ())
        self._pending: Turn | None = None

    def __len__(self) -> int:
        return len(self._turns)

    def __iter__(self) -> Iterator[Turn]:
        return iter(tuple(self._turns))

    @property
    def turns(self) -> tuple[Turn, ...]:
        """Committed turns, oldest first."""

        return tuple(self._turns)

    @property
    def pending(self) -> Turn | None:
        """The most recently observed model turn awaiting its outcome."""

        return self._pending

    @property
    def last(self) -> Turn | None:
        """Latest observed turn, including an uncommitted model turn."""

        if self._pending is not None:
            return self._pending
        return self._turns[-1] if self._turns else None

    def append_user(self, text: str) -> Turn:
        if self._pending is not None:
            raise HistoryError("Cannot append a user turn while a model turn is pending")
        turn = Turn.user(text)
        self._turns.append(turn)
        return turn

    def stage_model_turn(self, turn: Turn) -> None:
        """Hold ``turn`` in the pending slot until its outcome is known."""

        if turn.speaker is not Speaker.MODEL:
            raise HistoryError(f"Only model turns can be staged, got {turn.speaker.value}")
        if self._pending is not None:
            raise HistoryError("A model turn is already pending")
        self._pending = turn

    def commit_final(self) -> Turn:
        """Commit the pending model turn as a final answer."""

        turn = self._require_pending()
        if turn.tool_calls:
            raise HistoryError("A model turn with tool calls needs its tool results")
        self._turns.append(turn)
        self._pending = None
        return turn

    def commit_tool_exchange(self, results: Sequence[ToolResultPart]) -> Turn:
        """Commit the pending model turn together with one combined result turn."""

        turn = self._require_pending()
        requested = [call.call_id for call in turn.tool_calls]
        answered = [result.call_id for result in results]
        if not requested:
            raise HistoryError("Pending model turn did not request any tools")
        if sorted(requested) != sorted(answered):
            raise HistoryError(
                f"Tool results {answered} do not match requested calls {requested}"
            )
        result_turn = Turn.tool_results(results)
        self._turns.append(turn)
        self._turns.append(result_turn)
        self._pending = None
        return result_turn

    def discard_pending(self) -> Turn | None:
        """Drop an uncommitted model turn, returning it if one existed."""

        turn, self._pending = self._pending, None
        if turn is not None:
            LOGGER.debug("Discarded pending model turn with %d part(s)", len(turn.parts))
        return turn

    def reset(self) -> None:
        self._turns.clear()
        self._pending = None

    def seed(self, messages: Iterable[ChatMessage]) -> None:
        """Replace the transcript with text turns rebuilt from UI messages.

        Tool rows are display-only and are skipped; every other message
        becomes a user or model turn carrying its text.
        """

        turns: list[Turn] = []
        for message in messages:
            if message.role is Role.TOOL:
                continue
            if message.role is Role.USER:
                turns.append(Turn.user(message.content))
            else:
                turns.append(Turn.model(TextPart(message.content)))
        self._turns = turns
        self._pending = None

    def to_chat_messages(self, *, system_instruction: str | None = None) -> list[dict[str, Any]]:
        """Render the committed transcript for a chat-completion request."""

        return render_chat_messages(self._turns, system_instruction=system_instruction)

    def _require_pending(self) -> Turn:
        if self._pending is None:
            raise HistoryError("No model turn is pending")
        return self._pending


def render_chat_messages(
    turns: Iterable[Turn],
    *,
    system_instruction: str | None = None,
) -> list[dict[str, Any]]:
    """Flatten ``turns`` into chat-completion messages, system prompt first."""

    messages: list[dict[str, Any]] = []
    if system_instruction:
        messages.append({"role": "system", "content": system_instruction})
    for turn in turns:
        messages.extend(turn.to_chat_messages())
    return messages
