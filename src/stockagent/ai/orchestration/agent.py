"""Agent loop: drives one user request through model calls and tool runs.

A run appends the user turn, then alternates between asking the model and
executing whatever tools it requested, until the model produces a final
answer, the iteration cap is hit, an error occurs, or the caller cancels.
Each completed iteration yields at most one UI message.
"""

from __future__ import annotations

import asyncio
import enum
import logging
from dataclasses import dataclass
from typing import Iterable, Sequence

from ...chat.message_model import ChatMessage, StockToolResult
from ..errors import AgentCancelledError, EmptyResponseError, StockAgentError
from ..invoker import ModelInvoker
from ..prompts import (
    FINAL_ANSWER_FALLBACK,
    ITERATION_LIMIT_NOTICE,
    SYSTEM_INSTRUCTION,
    tool_summary,
    user_message_for,
)
from ..tools.registry import ToolRegistry
from .cancellation import AgentStatus, CancellationToken, Checkpoint, StatusSink, notify_status
from .history import ConversationHistory, ToolCallPart, ToolResultPart, Turn

__all__ = [
    "AgentState",
    "AgentConfig",
    "StockAgent",
]

LOGGER = logging.getLogger(__name__)


# -----------------------------------------------------------------------------
# State and configuration
# -----------------------------------------------------------------------------


class AgentState(str, enum.Enum):
    """Lifecycle of a single run."""

    IDLE = "idle"
    AWAITING_MODEL = "awaiting-model"
    EXECUTING_TOOLS = "executing-tools"
    FINAL_ANSWER_EMITTED = "final-answer-emitted"
    ITERATION_LIMIT_REACHED = "iteration-limit-reached"
    ABORTED = "aborted"
    ERRORED = "errored"

    @property
    def terminal(self) -> bool:
        return self in _TERMINAL_STATES


_TERMINAL_STATES = frozenset(
    {
        AgentState.FINAL_ANSWER_EMITTED,
        AgentState.ITERATION_LIMIT_REACHED,
        AgentState.ABORTED,
        AgentState.ERRORED,
    }
)


@dataclass(slots=True, frozen=True)
class AgentConfig:
    """Configuration for the agent loop.

    Attributes:
        max_iterations: Hard cap on model calls per run.
        system_instruction: Persona prompt sent with every model call.
        announce_iteration_limit: Emit a closing notice when the cap is hit
            instead of ending silently.
    """

    max_iterations: int = 5
    system_instruction: str = SYSTEM_INSTRUCTION
    announce_iteration_limit: bool = False

    def __post_init__(self) -> None:
        if self.max_iterations < 1:
            raise ValueError("max_iterations must be at least 1")


@dataclass(slots=True, frozen=True)
class _IterationOutcome:
    message: ChatMessage | None
    finished: bool


# -----------------------------------------------------------------------------
# Agent
# -----------------------------------------------------------------------------


class StockAgent:
    """Conversational stock analyst driving model calls and tool execution.

    One run executes at a time per instance; callers serialize :meth:`run`.

    Example:
        >>> agent = StockAgent(invoker)
        >>> messages = await agent.run("特斯拉现在怎么样?", print, CancellationToken())
        >>> messages[-1].content
        '特斯拉目前下跌1.3%。'
    """

    def __init__(
        self,
        invoker: ModelInvoker,
        *,
        registry: ToolRegistry | None = None,
        config: AgentConfig | None = None,
        history: ConversationHistory | None = None,
    ) -> None:
        self._invoker = invoker
        self._registry = registry or ToolRegistry()
        self._config = config or AgentConfig()
        self._history = history or ConversationHistory()
        self._state = AgentState.IDLE
        self._last_model_used: str | None = None

    @property
    def state(self) -> AgentState:
        return self._state

    @property
    def config(self) -> AgentConfig:
        return self._config

    @property
    def registry(self) -> ToolRegistry:
        return self._registry

    @property
    def history(self) -> tuple[Turn, ...]:
        """Committed transcript, for callers that persist it."""

        return self._history.turns

    @property
    def last_model_used(self) -> str | None:
        """Model that satisfied the most recent completion request."""

        return self._last_model_used

    def reset(self) -> None:
        """Clear the conversation."""

        self._history.reset()
        self._state = AgentState.IDLE
        LOGGER.debug("Conversation history cleared")

    def set_history(self, messages: Iterable[ChatMessage]) -> None:
        """Rebuild the transcript from previously displayed messages."""

        self._history.seed(messages)
        self._state = AgentState.IDLE
        LOGGER.debug("Conversation history seeded with %d turn(s)", len(self._history))

    async def run(
        self,
        user_text: str,
        status_sink: StatusSink | None = None,
        cancellation: CancellationToken | None = None,
    ) -> list[ChatMessage]:
        """Process one user message and return the messages to display.

        Args:
            user_text: The user's message.
            status_sink: Optional callback receiving phase updates.
            cancellation: Optional token the caller may trigger to stop.

        Returns:
            Tool summaries in iteration order followed by the final answer or
            a single error message.

        Raises:
            AgentCancelledError: If cancellation was observed at a checkpoint.
                Messages from earlier iterations ride along on ``responses``.
        """

        token = cancellation or CancellationToken()
        if self._history.discard_pending() is not None:
            LOGGER.warning("Dropped an unpaired model turn left by a previous run")
        self._history.append_user(user_text)
        self._state = AgentState.AWAITING_MODEL
        responses: list[ChatMessage] = []
        max_iterations = self._config.max_iterations

        try:
            for iteration in range(1, max_iterations + 1):
                token.raise_if_cancelled(Checkpoint.BEFORE_ITERATION)
                LOGGER.debug("Agent iteration %d/%d", iteration, max_iterations)
                notify_status(
                    status_sink,
                    AgentStatus.THINKING if iteration == 1 else AgentStatus.ANALYZING_TOOL_DATA,
                )
                try:
                    outcome = await self._run_iteration(status_sink, token)
                except (AgentCancelledError, asyncio.CancelledError):
                    raise
                except Exception as exc:
                    responses.append(self._fail(exc))
                    return responses
                if outcome.message is not None:
                    responses.append(outcome.message)
                if outcome.finished:
                    return responses
        except (AgentCancelledError, asyncio.CancelledError) as exc:
            self._history.discard_pending()
            self._state = AgentState.ABORTED
            LOGGER.info("Agent run cancelled after %d message(s)", len(responses))
            if isinstance(exc, AgentCancelledError):
                exc.responses = tuple(responses)
            raise

        self._state = AgentState.ITERATION_LIMIT_REACHED
        LOGGER.warning("Agent run reached max iterations (%d) without a final answer", max_iterations)
        if self._config.announce_iteration_limit:
            responses.append(ChatMessage.model(ITERATION_LIMIT_NOTICE, iteration_limit_reached=True))
        return responses

    async def _run_iteration(
        self,
        status_sink: StatusSink | None,
        token: CancellationToken,
    ) -> _IterationOutcome:
        self._state = AgentState.AWAITING_MODEL
        result = await self._invoker.invoke(
            self._history.turns,
            self._registry.declarations(),
            self._config.system_instruction,
        )
        self._last_model_used = result.model
        token.raise_if_cancelled(Checkpoint.AFTER_MODEL_CALL)

        turn = result.response.content
        if turn is None:
            raise EmptyResponseError(result.model)
        self._history.stage_model_turn(turn)

        calls = turn.tool_calls
        if not calls:
            self._history.commit_final()
            self._state = AgentState.FINAL_ANSWER_EMITTED
            message = ChatMessage.model(turn.text or FINAL_ANSWER_FALLBACK, model=result.model)
            return _IterationOutcome(message=message, finished=True)

        self._state = AgentState.EXECUTING_TOOLS
        notify_status(status_sink, AgentStatus.EXECUTING_TOOL)
        result_parts, stock_results = await self._execute_tool_calls(calls, token)
        self._history.commit_tool_exchange(result_parts)
        self._state = AgentState.AWAITING_MODEL

        if not stock_results:
            return _IterationOutcome(message=None, finished=False)
        message = ChatMessage.tool(
            tool_summary(item.symbol for item in stock_results),
            stock_results,
            model=result.model,
            tool_names=[part.name for part in result_parts],
        )
        return _IterationOutcome(message=message, finished=False)

    async def _execute_tool_calls(
        self,
        calls: Sequence[ToolCallPart],
        token: CancellationToken,
    ) -> tuple[list[ToolResultPart], list[StockToolResult]]:
        result_parts: list[ToolResultPart] = []
        stock_results: list[StockToolResult] = []
        for call in calls:
            token.raise_if_cancelled(Checkpoint.BEFORE_TOOL_CALL)
            tool = self._registry.resolve(call.name)
            if tool is None:
                LOGGER.warning("Model requested unknown tool %r (call %s)", call.name, call.call_id)
                result_parts.append(
                    ToolResultPart(
                        call_id=call.call_id,
                        name=call.name,
                        payload={"error": f"Unknown tool '{call.name}'"},
                    )
                )
                continue
            LOGGER.info("Calling tool %s with %s", tool.value, dict(call.arguments))
            stock = await self._registry.execute(tool, call.arguments)
            stock_results.append(stock)
            result_parts.append(
                ToolResultPart(
                    call_id=call.call_id,
                    name=tool.value,
                    payload={"result": stock.to_dict()},
                )
            )
        return result_parts, stock_results

    def _fail(self, exc: Exception) -> ChatMessage:
        self._history.discard_pending()
        self._state = AgentState.ERRORED
        LOGGER.exception("Agent run failed: %s", exc)
        kind = exc.kind.value if isinstance(exc, StockAgentError) else "unknown"
        return ChatMessage.model(user_message_for(exc), error_kind=kind)
