"""Tests for the status and cancellation bridge."""

from __future__ import annotations

import asyncio

import pytest

from stockagent.ai.errors import AgentCancelledError
from stockagent.ai.orchestration.cancellation import AgentStatus, CancellationToken, Checkpoint, notify_status


def test_status_tags_are_stable() -> None:
    assert [status.value for status in AgentStatus] == ["thinking", "analyzing-tool-data", "executing-tool"]


def test_token_raises_only_after_cancel() -> None:
    token = CancellationToken()
    token.raise_if_cancelled(Checkpoint.BEFORE_ITERATION)

    token.cancel("stop pressed")
    token.cancel("second request is ignored")

    assert token.cancelled
    assert token.reason == "stop pressed"
    with pytest.raises(AgentCancelledError) as excinfo:
        token.raise_if_cancelled(Checkpoint.BEFORE_TOOL_CALL)
    assert excinfo.value.checkpoint == "before-tool-call"
    assert excinfo.value.reason == "stop pressed"


@pytest.mark.asyncio
async def test_wait_resumes_when_cancelled() -> None:
    token = CancellationToken()
    waiter = asyncio.create_task(token.wait())
    await asyncio.sleep(0)

    assert not waiter.done()
    token.cancel()
    await asyncio.wait_for(waiter, timeout=1)

    await asyncio.wait_for(token.wait(), timeout=1)


def test_notify_status_tolerates_missing_or_broken_sink() -> None:
    received: list[AgentStatus] = []

    notify_status(None, AgentStatus.THINKING)
    notify_status(received.append, AgentStatus.EXECUTING_TOOL)
    notify_status(lambda status: 1 / 0, AgentStatus.THINKING)

    assert received == [AgentStatus.EXECUTING_TOOL]
