"""Conversation state and run control for the agent loop.

The loop itself lives in :mod:`stockagent.ai.orchestration.agent`; it is not
re-exported here because the transport client depends on the transcript
types defined in this package.
"""

from .cancellation import AgentStatus, CancellationToken, Checkpoint, StatusSink, notify_status
from .history import (
    ConversationHistory,
    HistoryError,
    Part,
    Speaker,
    TextPart,
    ToolCallPart,
    ToolResultPart,
    Turn,
    render_chat_messages,
)

__all__ = [
    "AgentStatus",
    "CancellationToken",
    "Checkpoint",
    "StatusSink",
    "notify_status",
    "ConversationHistory",
    "HistoryError",
    "Part",
    "Speaker",
    "TextPart",
    "ToolCallPart",
    "ToolResultPart",
    "Turn",
    "render_chat_messages",
]
