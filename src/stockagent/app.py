"""Application bootstrap helpers for the stockagent terminal client."""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import functools
import json
import logging
import os
import signal
import sys
import threading
from dataclasses import asdict
from pathlib import Path
from typing import Any, Callable, Dict, Mapping, Optional, Sequence, TextIO, get_args, get_origin, get_type_hints

from .ai.client import AIClient, ClientSettings
from .ai.errors import AgentCancelledError
from .ai.invoker import CompletionClient, ModelInvoker
from .ai.orchestration.agent import AgentConfig, StockAgent
from .ai.orchestration.cancellation import AgentStatus, CancellationToken
from .ai.prompts import GENERATION_STOPPED_NOTICE
from .ai.tools.registry import ToolRegistry
from .ai.tools.stock_market import get_stock_market_data
from .chat.message_model import ChatMessage, Role
from .services.sessions import ChatSession, SessionLibrary, SessionStore
from .services.settings import Settings, SettingsStore, redact_secret
from .utils import logging as logging_utils

_TRUE_VALUES = {"1", "true", "yes", "on", "debug"}
_FALSE_VALUES = {"0", "false", "no", "off", "disabled"}
_LOGGER = logging.getLogger(__name__)

_PROMPT = "> "
_RESET_COMMAND = "/reset"
_NEW_COMMAND = "/new"
_SESSIONS_COMMAND = "/sessions"
_LOAD_COMMAND = "/load"
_DELETE_COMMAND = "/delete"
_EXIT_COMMANDS = {"/exit", "/quit"}
_HELP_TEXT = "可用命令：/new /sessions /load N /delete N /reset /exit"
_STOPPING_LABEL = "正在停止..."
_STATUS_LABELS: Mapping[AgentStatus, str] = {
    AgentStatus.THINKING: "思考中...",
    AgentStatus.ANALYZING_TOOL_DATA: "正在分析工具数据...",
    AgentStatus.EXECUTING_TOOL: "正在执行工具...",
}

InputFunc = Callable[[str], str]


def configure_logging(debug: bool = False, *, force: bool = False) -> None:
    """Configure structured logging for the application.

    Records go to the rotating log file; debug mode mirrors them to stderr.
    """

    log_path = logging_utils.setup_logging(debug=debug, force=force)
    _LOGGER.debug("Logging to %s (debug=%s)", log_path, debug)


def load_settings(
    path: Optional[Path] = None,
    *,
    store: SettingsStore | None = None,
    overrides: Mapping[str, Any] | None = None,
) -> Settings:
    """Load persisted settings or fall back to defaults."""

    active_store = store or SettingsStore(path)
    try:
        settings = active_store.load(overrides=overrides)
    except Exception as exc:  # pragma: no cover - defensive path
        _LOGGER.warning("Failed to load settings from %s: %s", active_store.path, exc)
        settings = Settings()
    return settings


def build_client(settings: Settings, *, debug_logging: bool = False) -> AIClient:
    """Construct the completion client from the active settings."""

    client_settings = ClientSettings(
        base_url=settings.base_url,
        api_key=settings.api_key,
        organization=settings.organization,
        request_timeout=settings.request_timeout,
        temperature=settings.temperature,
        debug_logging=debug_logging or settings.debug_logging,
    )
    return AIClient(client_settings)


def build_agent(settings: Settings, client: CompletionClient) -> StockAgent:
    """Wire the invoker, tool registry and agent loop around ``client``.

    Raises:
        ValueError: If the model list is empty or the invocation policy is unknown.
    """

    invoker = ModelInvoker(
        client,
        settings.models,
        policy=settings.invocation_policy,
        cooldown_seconds=settings.fallback_cooldown_seconds,
        max_retries=settings.max_retries,
        retry_min_seconds=settings.retry_min_seconds,
        retry_max_seconds=settings.retry_max_seconds,
    )
    latency = max(0.0, float(settings.tool_latency_seconds))
    registry = ToolRegistry(
        stock_data_provider=functools.partial(get_stock_market_data, latency=latency),
    )
    config = AgentConfig(
        max_iterations=settings.effective_max_iterations,
        announce_iteration_limit=settings.announce_iteration_limit,
    )
    _LOGGER.debug(
        "Agent configured (models=%s, policy=%s, max_iterations=%s)",
        ", ".join(invoker.models),
        invoker.policy.value,
        config.max_iterations,
    )
    return StockAgent(invoker, registry=registry, config=config)


def main(argv: Sequence[str] | None = None) -> None:
    """Entry point invoked by the `stockagent` console script."""

    args = _parse_cli_args(argv)

    debug = _env_flag("STOCKAGENT_DEBUG", default=False)
    configure_logging(debug)

    settings_path = args.settings_path or os.environ.get("STOCKAGENT_SETTINGS_PATH")
    resolved_path = Path(settings_path).expanduser() if settings_path else None
    settings_store = SettingsStore(resolved_path)
    try:
        cli_overrides = _coerce_cli_overrides(args.overrides or [])
    except ValueError as exc:
        print(f"Invalid --set override: {exc}", file=sys.stderr)
        raise SystemExit(2) from exc

    overrides_mapping: Dict[str, Any] | None = cli_overrides or None
    settings = load_settings(resolved_path, store=settings_store, overrides=overrides_mapping)

    if args.dump_settings:
        _dump_settings(settings, settings_store, overrides=cli_overrides)
        return

    if settings.debug_logging and not debug:
        configure_logging(True, force=True)
        debug = True

    if not settings.api_key:
        print(
            "No API key configured. Set STOCKAGENT_API_KEY or use --set api_key=...",
            file=sys.stderr,
        )
        raise SystemExit(2)

    client = build_client(settings, debug_logging=debug)
    try:
        agent = build_agent(settings, client)
    except ValueError as exc:
        print(f"Invalid agent configuration: {exc}", file=sys.stderr)
        raise SystemExit(2) from exc

    sessions = SessionLibrary(SessionStore(settings_store.path.with_name("sessions.json")))
    try:
        asyncio.run(_serve(agent, client, sessions))
    except KeyboardInterrupt:  # pragma: no cover - manual shutdown path
        _LOGGER.info("Shutdown requested by user.")


async def _serve(agent: StockAgent, client: AIClient, sessions: SessionLibrary) -> None:
    try:
        await run_repl(agent, sessions=sessions)
    finally:
        with contextlib.suppress(Exception):
            await client.aclose()


# -----------------------------------------------------------------------------
# Conversation loop
# -----------------------------------------------------------------------------


async def run_repl(
    agent: StockAgent,
    *,
    sessions: SessionLibrary | None = None,
    input_func: InputFunc = input,
    stream: TextIO | None = None,
) -> None:
    """Read user lines until EOF or an exit command, answering each in turn.

    The most recently updated session is reopened first. Every exchange is
    recorded into the active session so it can be resumed later.
    """

    destination = stream or sys.stdout
    library = sessions or SessionLibrary()
    _open_session(agent, library.resume_latest(), destination)
    while True:
        try:
            line = await read_line(input_func, _PROMPT)
        except EOFError:
            destination.write("\n")
            return
        text = line.strip()
        if not text:
            continue
        if text in _EXIT_COMMANDS:
            return
        if text.startswith("/"):
            _run_command(agent, library, text, destination)
            continue
        messages = await process_message(agent, text, stream=destination)
        library.record([ChatMessage.user(text), *messages])


async def read_line(input_func: InputFunc, prompt: str) -> str:
    """Call ``input_func`` on a daemon thread and await its line.

    A daemon thread never blocks interpreter shutdown, so Ctrl+C at the
    prompt exits immediately even though the pending read cannot be
    interrupted.
    """

    loop = asyncio.get_running_loop()
    future: asyncio.Future[str] = loop.create_future()

    def _settle(line: str | None, error: Exception | None) -> None:
        if future.done():
            return
        if error is not None:
            future.set_exception(error)
        else:
            future.set_result(line or "")

    def _read() -> None:
        try:
            line = input_func(prompt)
        except Exception as exc:
            outcome: tuple[str | None, Exception | None] = (None, exc)
        else:
            outcome = (line, None)
        with contextlib.suppress(RuntimeError):
            loop.call_soon_threadsafe(_settle, *outcome)

    threading.Thread(target=_read, name="stockagent-input", daemon=True).start()
    return await future


def _run_command(agent: StockAgent, library: SessionLibrary, text: str, destination: TextIO) -> None:
    command, _, argument = text.partition(" ")
    if command == _RESET_COMMAND:
        library.clear_current()
        agent.reset()
        destination.write("对话已重置。\n")
    elif command == _NEW_COMMAND:
        _open_session(agent, library.start_new(), destination)
    elif command == _SESSIONS_COMMAND:
        _list_sessions(library, destination)
    elif command in (_LOAD_COMMAND, _DELETE_COMMAND):
        try:
            index = int(argument.strip())
            if command == _LOAD_COMMAND:
                _open_session(agent, library.select(index), destination)
                return
            replacement = library.delete(index)
        except (ValueError, IndexError):
            destination.write(f"请输入有效的会话编号，例如 {command} 1。\n")
            return
        destination.write("会话已删除。\n")
        if replacement is not None:
            _open_session(agent, replacement, destination)
    else:
        destination.write(f"{_HELP_TEXT}\n")
    destination.flush()


def _open_session(agent: StockAgent, session: ChatSession, destination: TextIO) -> None:
    agent.set_history(session.transcript)
    destination.write(f"== {session.title} ==\n")
    for message in session.messages:
        destination.write(render_message(message))
        destination.write("\n")
    destination.flush()


def _list_sessions(library: SessionLibrary, destination: TextIO) -> None:
    for number, session in enumerate(library.sessions, start=1):
        marker = "*" if session is library.current else " "
        stamp = session.updated_at.astimezone().strftime("%Y-%m-%d %H:%M")
        destination.write(f"{marker} {number}. {session.title} ({stamp})\n")


async def process_message(
    agent: StockAgent,
    text: str,
    *,
    stream: TextIO | None = None,
    token: CancellationToken | None = None,
) -> list[ChatMessage]:
    """Run one request, printing status phases and the resulting messages.

    Ctrl+C during the run requests cancellation instead of exiting. When the
    run stops early, messages from completed iterations are printed followed
    by the stop notice. A stop request is acknowledged as soon as it arrives,
    while the run keeps going until its next checkpoint.
    """

    destination = stream or sys.stdout
    active_token = token or CancellationToken()

    def _on_status(status: AgentStatus) -> None:
        destination.write(f"[{_STATUS_LABELS.get(status, status.value)}]\n")
        destination.flush()

    remove_handler = _install_interrupt_handler(active_token)
    stop_watcher = asyncio.create_task(_acknowledge_stop(active_token, destination))
    try:
        messages = await agent.run(text, _on_status, active_token)
    except AgentCancelledError as exc:
        messages = [message for message in exc.responses if isinstance(message, ChatMessage)]
        messages.append(ChatMessage.model(GENERATION_STOPPED_NOTICE, should_animate=False, stopped=True))
    finally:
        remove_handler()
        stop_watcher.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await stop_watcher

    for message in messages:
        destination.write(render_message(message))
        destination.write("\n")
    destination.flush()
    return messages


async def _acknowledge_stop(token: CancellationToken, destination: TextIO) -> None:
    await token.wait()
    destination.write(f"[{_STOPPING_LABEL}]\n")
    destination.flush()


def render_message(message: ChatMessage) -> str:
    """Format one agent message for the terminal."""

    if message.role is not Role.TOOL or not message.stock_data:
        return message.content
    lines = [f"* {message.content}"]
    for result in message.stock_data:
        lines.append(
            f"  {result.symbol:<6} {result.current_price:>10.2f} ({result.change_percent:+.2f}%)"
        )
    return "\n".join(lines)


def _install_interrupt_handler(token: CancellationToken) -> Callable[[], None]:
    """Route SIGINT to ``token`` for the duration of a run."""

    try:
        loop = asyncio.get_running_loop()
        loop.add_signal_handler(signal.SIGINT, token.cancel, "interrupted by user")
    except (NotImplementedError, RuntimeError, ValueError):
        _LOGGER.debug("SIGINT handler unavailable; Ctrl+C will not stop generation.")
        return lambda: None

    def _remove() -> None:
        with contextlib.suppress(NotImplementedError, RuntimeError, ValueError):
            loop.remove_signal_handler(signal.SIGINT)

    return _remove


# -----------------------------------------------------------------------------
# CLI helpers
# -----------------------------------------------------------------------------


def _env_flag(name: str, *, default: bool = False) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in _TRUE_VALUES


def _parse_cli_args(argv: Sequence[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="stockagent",
        add_help=True,
        description="Chat with the stock analyst agent or inspect its configuration.",
    )
    parser.add_argument(
        "--dump-settings",
        action="store_true",
        help="Print the effective settings payload (with secrets redacted) and exit.",
    )
    parser.add_argument(
        "--settings-path",
        metavar="PATH",
        help="Override the default ~/.stockagent/settings.json path.",
    )
    parser.add_argument(
        "--set",
        dest="overrides",
        metavar="KEY=VALUE",
        action="append",
        default=[],
        help="Override persisted settings before launch (repeatable).",
    )
    return parser.parse_args(argv)


def _coerce_cli_overrides(items: Sequence[str]) -> Dict[str, Any]:
    overrides: Dict[str, Any] = {}
    if not items:
        return overrides

    fields = Settings.__dataclass_fields__  # type: ignore[attr-defined]
    type_hints = get_type_hints(Settings)
    for entry in items:
        if "=" not in entry:
            raise ValueError(f"Override '{entry}' must use KEY=VALUE syntax.")
        key, raw_value = entry.split("=", 1)
        key = key.strip()
        if not key:
            raise ValueError("Override is missing a field name.")
        if key not in fields:
            raise ValueError(f"Unknown setting '{key}'.")
        annotation = type_hints.get(key, fields[key].type)
        overrides[key] = _coerce_value(annotation, raw_value.strip())
    return overrides


def _coerce_value(annotation: Any, raw_value: str) -> Any:
    target = _resolve_annotation(annotation)
    normalized = raw_value.strip()

    if _is_optional(annotation) and normalized.lower() in {"none", "null"}:
        return None
    if target is str or target is Any:
        return normalized
    if target is bool:
        return _parse_bool(normalized)
    if target is int:
        return int(normalized, 10)
    if target is float:
        return float(normalized)
    if target is list:
        if not normalized.startswith("["):
            return [item.strip() for item in normalized.split(",") if item.strip()]
        try:
            return json.loads(normalized)
        except json.JSONDecodeError as exc:
            raise ValueError("List overrides must be valid JSON arrays") from exc
    if target is dict:
        try:
            return json.loads(normalized or "{}")
        except json.JSONDecodeError as exc:
            raise ValueError("Dict overrides must be valid JSON objects") from exc
    return normalized


def _resolve_annotation(annotation: Any) -> Any:
    origin = get_origin(annotation)
    if origin is None:
        return annotation
    if origin in {list, dict}:
        return origin
    args = [arg for arg in get_args(annotation) if arg is not type(None)]
    if not args:
        return origin
    return _resolve_annotation(args[0])


def _is_optional(annotation: Any) -> bool:
    return type(None) in get_args(annotation)


def _parse_bool(value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    raise ValueError(f"Cannot coerce '{value}' to a boolean.")


def _dump_settings(
    settings: Settings,
    store: SettingsStore,
    *,
    overrides: Mapping[str, Any],
    stream: TextIO | None = None,
) -> None:
    destination = stream or sys.stdout
    payload = asdict(settings)
    api_key = payload.get("api_key", "")
    if isinstance(api_key, str):
        payload["api_key"] = redact_secret(api_key)
    metadata = {
        "path": str(store.path),
        "secret_backend": store.vault.strategy,
        "cli_overrides": sorted(overrides.keys()),
        "environment_variables": _active_env_overrides(),
        "effective_max_iterations": settings.effective_max_iterations,
    }
    output = {"settings": payload, "meta": metadata}
    json.dump(output, destination, indent=2, ensure_ascii=False)
    destination.write("\n")


def _active_env_overrides() -> list[str]:
    return sorted(name for name in os.environ if name.startswith("STOCKAGENT_"))
