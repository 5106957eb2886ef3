"""Async AI client wrapper built around OpenAI-compatible endpoints.

This is the only module that talks to the completion service. Raw transport
failures are wrapped into :class:`~stockagent.ai.errors.ModelInvocationError`
here, with their :class:`~stockagent.ai.errors.ModelErrorKind` already
assigned, and raw completions are normalized into transcript turns.
"""

from __future__ import annotations

import inspect
import json
import logging
import uuid
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Sequence

from openai import AsyncOpenAI, OpenAIError

from .errors import ModelInvocationError, classify_exception, extract_status
from .orchestration.history import Part, TextPart, ToolCallPart, Turn, render_chat_messages

LOGGER = logging.getLogger(__name__)

GEMINI_OPENAI_BASE_URL = "https://generativelanguage.googleapis.com/v1beta/openai/"


@dataclass(slots=True)
class ClientSettings:
    """Subset of settings required to configure the AI client."""

    base_url: str
    api_key: str
    organization: str | None = None
    request_timeout: float | None = 90.0
    temperature: float | None = None
    default_headers: Mapping[str, str] | None = None
    debug_logging: bool = False


@dataclass(slots=True, frozen=True)
class CompletionResult:
    """Normalized outcome of a single completion request.

    ``content`` is ``None`` when the service returned no candidate at all;
    a candidate without text or tool calls yields an empty model turn.
    """

    model: str
    content: Turn | None
    finish_reason: str | None = None


class AIClient:
    """Async client issuing one chat completion per call."""

    def __init__(
        self,
        settings: ClientSettings,
        *,
        client: AsyncOpenAI | None = None,
    ) -> None:
        self._settings = settings
        self._client = client or self._build_client(settings)

    @property
    def settings(self) -> ClientSettings:
        return self._settings

    async def complete(
        self,
        *,
        model: str,
        turns: Sequence[Turn],
        tools: Iterable[Mapping[str, Any]] | None = None,
        system_instruction: str | None = None,
    ) -> CompletionResult:
        """Request a completion from ``model`` for the given transcript.

        Raises:
            ModelInvocationError: For every transport or service failure.
        """

        messages = render_chat_messages(turns, system_instruction=system_instruction)
        if not messages:
            raise ValueError("At least one message is required to request a completion")
        payload = self._build_chat_payload(model=model, messages=messages, tools=tools)
        LOGGER.debug("Requesting completion from %s with %s message(s)", model, len(messages))
        if self._settings.debug_logging:
            self._log_prompt_payload(payload)

        try:
            response = await self._client.chat.completions.create(**payload)
        except (OpenAIError, OSError) as exc:
            kind = classify_exception(exc)
            LOGGER.debug("Completion via %s failed (%s): %s", model, kind.value, exc)
            raise ModelInvocationError(
                str(getattr(exc, "message", None) or exc),
                kind=kind,
                status=extract_status(exc),
                model=model,
            ) from exc

        return self._normalize_response(model, response)

    def _build_client(self, settings: ClientSettings) -> AsyncOpenAI:
        headers = dict(settings.default_headers) if settings.default_headers else None
        return AsyncOpenAI(
            api_key=settings.api_key,
            base_url=settings.base_url,
            organization=settings.organization,
            timeout=settings.request_timeout,
            default_headers=headers,
            max_retries=0,
        )

    def _build_chat_payload(
        self,
        *,
        model: str,
        messages: Sequence[Mapping[str, Any]],
        tools: Iterable[Mapping[str, Any]] | None,
    ) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "model": model,
            "messages": list(messages),
        }
        tool_list = list(tools) if tools else []
        if tool_list:
            payload["tools"] = tool_list
        if self._settings.temperature is not None:
            payload["temperature"] = self._settings.temperature
        return payload

    def _normalize_response(self, model: str, response: Any) -> CompletionResult:
        choices = getattr(response, "choices", None) or []
        if not choices:
            return CompletionResult(model=model, content=None)
        choice = choices[0]
        message = getattr(choice, "message", None)
        finish_reason = getattr(choice, "finish_reason", None)
        if message is None:
            return CompletionResult(model=model, content=None, finish_reason=finish_reason)

        parts: List[Part] = []
        text = getattr(message, "content", None)
        if text:
            parts.append(TextPart(str(text)))
        for tool_call in getattr(message, "tool_calls", None) or []:
            function = getattr(tool_call, "function", None)
            if function is None:
                continue
            parts.append(
                ToolCallPart(
                    call_id=getattr(tool_call, "id", None) or f"call_{uuid.uuid4().hex[:12]}",
                    name=str(getattr(function, "name", "") or ""),
                    arguments=parse_tool_arguments(getattr(function, "arguments", None)),
                )
            )
        return CompletionResult(model=model, content=Turn.model(*parts), finish_reason=finish_reason)

    def _log_prompt_payload(self, payload: Mapping[str, Any]) -> None:
        try:
            serialized = json.dumps(payload, ensure_ascii=False, indent=2)
        except (TypeError, ValueError):
            LOGGER.debug("AI prompt payload (unserializable): %s", payload)
        else:
            LOGGER.debug("AI prompt payload:\n%s", serialized)

    async def aclose(self) -> None:
        """Close the underlying OpenAI client to release network resources."""

        close = getattr(self._client, "close", None)
        if close is None:
            return
        try:
            result = close()
        except Exception as exc:  # pragma: no cover - defensive guard
            LOGGER.debug("AI client close failed to start: %s", exc)
            return
        if inspect.isawaitable(result):
            await result


def parse_tool_arguments(arguments: str | Mapping[str, Any] | None) -> dict[str, Any]:
    """Decode the JSON argument string attached to a tool call.

    Malformed payloads decode to an empty mapping; the tool then reports the
    missing argument instead of the whole completion failing.
    """

    if isinstance(arguments, Mapping):
        return dict(arguments)
    if not arguments or not arguments.strip():
        return {}
    try:
        parsed = json.loads(arguments)
    except json.JSONDecodeError:
        LOGGER.warning("Discarding malformed tool arguments: %r", arguments)
        return {}
    if not isinstance(parsed, dict):
        LOGGER.warning("Tool arguments must be a JSON object, got %s", type(parsed).__name__)
        return {}
    return parsed


__all__ = [
    "AIClient",
    "ClientSettings",
    "CompletionResult",
    "GEMINI_OPENAI_BASE_URL",
    "parse_tool_arguments",
]
