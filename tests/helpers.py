"""Shared test helpers and stub classes.

This module contains reusable test stubs that are used across multiple test files.
Import from here instead of duplicating these classes in individual test files.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Mapping, Sequence

from stockagent.ai.client import CompletionResult
from stockagent.ai.errors import ModelErrorKind, ModelInvocationError
from stockagent.ai.orchestration.cancellation import AgentStatus
from stockagent.ai.orchestration.history import TextPart, ToolCallPart, Turn
from stockagent.chat.message_model import StockDataPoint, StockToolResult

Step = Turn | BaseException | None


def text_turn(text: str) -> Turn:
    return Turn.model(TextPart(text))


def call_turn(*calls: tuple[str, str, Mapping[str, Any]], text: str = "") -> Turn:
    """Model turn requesting ``calls`` given as ``(call_id, name, arguments)``."""

    parts: list[Any] = [TextPart(text)] if text else []
    parts.extend(ToolCallPart(call_id=cid, name=name, arguments=dict(args)) for cid, name, args in calls)
    return Turn.model(*parts)


def capacity_error(model: str = "primary") -> ModelInvocationError:
    return ModelInvocationError(
        "Resource has been exhausted (e.g. check quota).",
        kind=ModelErrorKind.CAPACITY,
        status=429,
        model=model,
    )


def not_found_error(model: str = "primary") -> ModelInvocationError:
    return ModelInvocationError(
        "models/missing is not found",
        kind=ModelErrorKind.NOT_FOUND,
        status=404,
        model=model,
    )


def fake_stock(symbol: str = "TSLA", price: float = 242.13, change: float = -1.3) -> StockToolResult:
    return StockToolResult(
        symbol=symbol,
        current_price=price,
        change_percent=change,
        data=(
            StockDataPoint(date="2024-05-01", price=245.32, volume=900_000),
            StockDataPoint(date="2024-05-02", price=price, volume=1_100_000),
        ),
    )


@dataclass
class RecordedCall:
    model: str
    turns: tuple[Turn, ...]
    tools: list[Mapping[str, Any]]
    system_instruction: str | None


class ScriptedClient:
    """Completion client replaying a per-model script of outcomes.

    Each entry is either the model turn to return, ``None`` for an empty
    response, or an exception to raise.
    """

    def __init__(self, script: Mapping[str, Sequence[Step]]):
        self._script = {model: list(steps) for model, steps in script.items()}
        self.calls: list[RecordedCall] = []
        self.on_call: Callable[[RecordedCall], None] | None = None

    @property
    def models_called(self) -> list[str]:
        return [call.model for call in self.calls]

    async def complete(
        self,
        *,
        model: str,
        turns: Sequence[Turn],
        tools: Sequence[Mapping[str, Any]] | None = None,
        system_instruction: str | None = None,
    ) -> CompletionResult:
        call = RecordedCall(model, tuple(turns), list(tools or []), system_instruction)
        self.calls.append(call)
        if self.on_call is not None:
            self.on_call(call)
        queue = self._script.get(model)
        if not queue:
            raise AssertionError(f"Unexpected completion request for {model}")
        step = queue.pop(0)
        if isinstance(step, BaseException):
            raise step
        return CompletionResult(model=model, content=step)


class SleepRecorder:
    """Async sleep replacement that records requested delays."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


@dataclass
class StatusRecorder:
    statuses: list[AgentStatus] = field(default_factory=list)

    def __call__(self, status: AgentStatus) -> None:
        self.statuses.append(status)


class StubStockProvider:
    """Stock data provider returning canned snapshots without latency."""

    def __init__(
        self,
        results: Mapping[str, StockToolResult] | None = None,
        *,
        on_call: Callable[[str], Awaitable[None] | None] | None = None,
        error: Exception | None = None,
    ):
        self._results = dict(results or {})
        self._on_call = on_call
        self._error = error
        self.symbols: list[str] = []

    async def __call__(self, symbol: str) -> StockToolResult:
        self.symbols.append(symbol)
        if self._on_call is not None:
            outcome = self._on_call(symbol)
            if outcome is not None:
                await outcome
        if self._error is not None:
            raise self._error
        return self._results.get(symbol) or fake_stock(symbol)
