"""Error taxonomy shared by the model transport, the tools and the agent loop.

Failures are classified exactly once, where the transport talks to the
completion service (:func:`classify_exception`). Everything above that
boundary matches on :class:`ModelErrorKind` instead of re-reading messages.
"""

from __future__ import annotations

import enum
from typing import Any, Sequence

import httpx
from openai import APIConnectionError, APITimeoutError, RateLimitError

__all__ = [
    "ModelErrorKind",
    "StockAgentError",
    "ModelInvocationError",
    "ModelsExhaustedError",
    "EmptyResponseError",
    "ToolExecutionError",
    "ToolArgumentError",
    "AgentCancelledError",
    "classify_exception",
    "extract_status",
]

_CAPACITY_STATUSES = frozenset({429, 503})
_CAPACITY_MARKERS: tuple[str, ...] = (
    "quota",
    "resource_exhausted",
    "rate limit",
    "overloaded",
    "429",
    "503",
)
_AUTH_STATUSES = frozenset({401, 403})
_INVALID_STATUSES = frozenset({400, 409, 422})


class ModelErrorKind(str, enum.Enum):
    """Closed set of failure categories the agent loop reacts to."""

    CAPACITY = "capacity"
    NOT_FOUND = "not-found"
    AUTHENTICATION = "authentication"
    INVALID_REQUEST = "invalid-request"
    CONNECTION = "connection"
    EMPTY_RESPONSE = "empty-response"
    TOOL_FAILURE = "tool-failure"
    UNKNOWN = "unknown"

    @property
    def retryable(self) -> bool:
        """Whether another model (or a later attempt) may succeed."""

        return self is ModelErrorKind.CAPACITY


class StockAgentError(Exception):
    """Base class for failures raised inside the agent stack."""

    kind: ModelErrorKind = ModelErrorKind.UNKNOWN


class ModelInvocationError(StockAgentError):
    """A completion request failed; ``kind`` says whether substitution can help."""

    def __init__(
        self,
        message: str,
        *,
        kind: ModelErrorKind = ModelErrorKind.UNKNOWN,
        status: int | None = None,
        model: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.kind = kind
        self.status = status
        self.model = model

    @property
    def retryable(self) -> bool:
        return self.kind.retryable

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(kind={self.kind.value!r}, status={self.status!r}, "
            f"model={self.model!r}, message={self.message!r})"
        )


class ModelsExhaustedError(ModelInvocationError):
    """Every configured model failed with a capacity error."""

    def __init__(self, attempted: Sequence[str], cause: ModelInvocationError) -> None:
        names = ", ".join(attempted) or "<none>"
        super().__init__(
            f"All configured models exhausted ({names}): {cause.message}",
            kind=ModelErrorKind.CAPACITY,
            status=cause.status,
            model=cause.model,
        )
        self.attempted: tuple[str, ...] = tuple(attempted)
        self.cause = cause


class EmptyResponseError(ModelInvocationError):
    """The service answered without any candidate content."""

    def __init__(self, model: str | None = None) -> None:
        super().__init__(
            "No content received from model",
            kind=ModelErrorKind.EMPTY_RESPONSE,
            model=model,
        )


class ToolExecutionError(StockAgentError):
    """A registered tool raised while handling a call."""

    kind = ModelErrorKind.TOOL_FAILURE

    def __init__(self, tool_name: str, message: str) -> None:
        super().__init__(f"Tool '{tool_name}' failed: {message}")
        self.tool_name = tool_name


class ToolArgumentError(ToolExecutionError):
    """The model supplied arguments the tool cannot use."""


class AgentCancelledError(Exception):
    """Raised when a run observes a cancellation request.

    Not a :class:`StockAgentError`: a user-initiated stop is not a failure.
    ``responses`` holds the messages completed by earlier iterations of the
    cancelled run.
    """

    def __init__(self, checkpoint: str, reason: str | None = None) -> None:
        detail = f" ({reason})" if reason else ""
        super().__init__(f"Agent run cancelled at {checkpoint}{detail}")
        self.checkpoint = checkpoint
        self.reason = reason
        self.responses: tuple[Any, ...] = ()


def extract_status(exc: BaseException) -> int | None:
    """Return the numeric HTTP status or provider code carried by ``exc``."""

    for attr in ("status_code", "status", "code"):
        value: Any = getattr(exc, attr, None)
        if isinstance(value, bool):
            continue
        if isinstance(value, int):
            return value
        if isinstance(value, str) and value.isdigit():
            return int(value)
    response = getattr(exc, "response", None)
    status = getattr(response, "status_code", None)
    return status if isinstance(status, int) else None


def classify_exception(exc: BaseException) -> ModelErrorKind:
    """Map a raw transport failure onto :class:`ModelErrorKind`.

    Status codes win over message heuristics; the heuristics catch providers
    that report quota exhaustion in the body of an otherwise generic error.
    """

    if isinstance(exc, ModelInvocationError):
        return exc.kind
    if isinstance(exc, RateLimitError):
        return ModelErrorKind.CAPACITY
    if isinstance(exc, (APITimeoutError, APIConnectionError, httpx.TimeoutException, httpx.TransportError)):
        return ModelErrorKind.CONNECTION

    status = extract_status(exc)
    if status in _CAPACITY_STATUSES:
        return ModelErrorKind.CAPACITY

    message = str(getattr(exc, "message", None) or exc).lower()
    if any(marker in message for marker in _CAPACITY_MARKERS):
        return ModelErrorKind.CAPACITY

    if status == 404:
        return ModelErrorKind.NOT_FOUND
    if status in _AUTH_STATUSES:
        return ModelErrorKind.AUTHENTICATION
    if status in _INVALID_STATUSES:
        return ModelErrorKind.INVALID_REQUEST
    return ModelErrorKind.UNKNOWN
