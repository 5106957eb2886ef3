"""Model invocation with cross-model fallback or same-model retry."""

from __future__ import annotations

import asyncio
import enum
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Mapping, Protocol, Sequence

from tenacity import AsyncRetrying, retry_if_exception, stop_after_attempt, wait_exponential

from .client import CompletionResult
from .errors import ModelInvocationError, ModelsExhaustedError
from .orchestration.history import Turn

__all__ = [
    "InvocationPolicy",
    "InvocationResult",
    "CompletionClient",
    "ModelInvoker",
]

LOGGER = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[Any]]


class InvocationPolicy(str, enum.Enum):
    """How capacity failures are absorbed within one completion request."""

    FALLBACK = "fallback"
    RETRY = "retry"


class CompletionClient(Protocol):
    """Anything that can run one completion request; :class:`AIClient` conforms."""

    async def complete(
        self,
        *,
        model: str,
        turns: Sequence[Turn],
        tools: Sequence[Mapping[str, Any]] | None = None,
        system_instruction: str | None = None,
    ) -> CompletionResult:
        ...


@dataclass(slots=True, frozen=True)
class InvocationResult:
    """Successful completion together with the model that produced it."""

    response: CompletionResult
    model: str


class ModelInvoker:
    """Runs completion requests against a prioritized list of models.

    With :attr:`InvocationPolicy.FALLBACK` each model is tried once, in
    order, moving on only when a model reports capacity exhaustion. With
    :attr:`InvocationPolicy.RETRY` only the first model is used and capacity
    failures are retried with exponential backoff.

    Example:
        >>> invoker = ModelInvoker(client, ["gemini-2.0-flash", "gemini-1.5-flash"])
        >>> result = await invoker.invoke(history.turns, tools, system_instruction)
        >>> result.model
        'gemini-2.0-flash'
    """

    def __init__(
        self,
        client: CompletionClient,
        models: Sequence[str],
        *,
        policy: InvocationPolicy | str = InvocationPolicy.FALLBACK,
        cooldown_seconds: float = 1.0,
        max_retries: int = 3,
        retry_min_seconds: float = 1.0,
        retry_max_seconds: float = 8.0,
        sleep: Sleep | None = None,
    ) -> None:
        cleaned = tuple(name.strip() for name in models if name and name.strip())
        if not cleaned:
            raise ValueError("At least one model identifier is required")
        self._client = client
        self._models = cleaned
        self._policy = InvocationPolicy(policy)
        self._cooldown_seconds = max(0.0, float(cooldown_seconds))
        self._max_retries = max(1, int(max_retries))
        self._retry_min_seconds = max(0.0, float(retry_min_seconds))
        self._retry_max_seconds = max(self._retry_min_seconds, float(retry_max_seconds))
        self._sleep: Sleep = sleep or asyncio.sleep

    @property
    def models(self) -> tuple[str, ...]:
        return self._models

    @property
    def policy(self) -> InvocationPolicy:
        return self._policy

    async def invoke(
        self,
        turns: Sequence[Turn],
        tools: Sequence[Mapping[str, Any]] | None,
        system_instruction: str,
    ) -> InvocationResult:
        """Return the first successful completion for ``turns``.

        Raises:
            ModelsExhaustedError: Every model reported capacity exhaustion
                (fallback policy only).
            ModelInvocationError: A non-recoverable failure, or the last
                retry attempt's failure under the retry policy.
        """

        if self._policy is InvocationPolicy.RETRY:
            return await self._invoke_with_retry(turns, tools, system_instruction)
        return await self._invoke_with_fallback(turns, tools, system_instruction)

    async def _invoke_with_fallback(
        self,
        turns: Sequence[Turn],
        tools: Sequence[Mapping[str, Any]] | None,
        system_instruction: str,
    ) -> InvocationResult:
        attempted: list[str] = []
        last_index = len(self._models) - 1
        for index, model in enumerate(self._models):
            attempted.append(model)
            try:
                response = await self._request(model, turns, tools, system_instruction)
            except ModelInvocationError as exc:
                if not exc.retryable:
                    raise
                if index == last_index:
                    raise ModelsExhaustedError(attempted, exc) from exc
                LOGGER.warning(
                    "Model %s failed with %s; switching to %s",
                    model,
                    exc.kind.value,
                    self._models[index + 1],
                )
                await self._sleep(self._cooldown_seconds)
                continue
            return InvocationResult(response=response, model=model)
        raise AssertionError("unreachable: fallback loop always returns or raises")

    async def _invoke_with_retry(
        self,
        turns: Sequence[Turn],
        tools: Sequence[Mapping[str, Any]] | None,
        system_instruction: str,
    ) -> InvocationResult:
        model = self._models[0]
        async for attempt in self._retrying():
            with attempt:
                if attempt.retry_state.attempt_number > 1:
                    LOGGER.warning(
                        "Retrying %s (attempt %d/%d)",
                        model,
                        attempt.retry_state.attempt_number,
                        self._max_retries,
                    )
                response = await self._request(model, turns, tools, system_instruction)
        return InvocationResult(response=response, model=model)

    def _retrying(self) -> AsyncRetrying:
        return AsyncRetrying(
            reraise=True,
            sleep=self._sleep,
            stop=stop_after_attempt(self._max_retries),
            wait=wait_exponential(
                multiplier=self._retry_min_seconds,
                max=self._retry_max_seconds,
            ),
            retry=retry_if_exception(
                lambda exc: isinstance(exc, ModelInvocationError) and exc.retryable
            ),
        )

    async def _request(
        self,
        model: str,
        turns: Sequence[Turn],
        tools: Sequence[Mapping[str, Any]] | None,
        system_instruction: str,
    ) -> CompletionResult:
        LOGGER.debug("Invoking model %s", model)
        return await self._client.complete(
            model=model,
            turns=turns,
            tools=tools,
            system_instruction=system_instruction,
        )
