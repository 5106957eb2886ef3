"""AI client, model invocation, tools and the agent loop."""

from .client import AIClient, ClientSettings, CompletionResult
from .invoker import InvocationPolicy, InvocationResult, ModelInvoker
from .orchestration.agent import AgentConfig, AgentState, StockAgent

__all__ = [
    "AIClient",
    "ClientSettings",
    "CompletionResult",
    "InvocationPolicy",
    "InvocationResult",
    "ModelInvoker",
    "AgentConfig",
    "AgentState",
    "StockAgent",
]
