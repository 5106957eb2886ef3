"""Registry of the data-fetch tools the model may call.

The set of tools is closed: :class:`ToolName` enumerates every tool and
:meth:`ToolRegistry.execute` dispatches over it explicitly. Name lookup only
happens once, in :meth:`ToolRegistry.resolve`, where untrusted names coming
back from the model are turned into enum members.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Mapping

from ...chat.message_model import StockToolResult
from ..errors import ToolArgumentError, ToolExecutionError
from .stock_market import get_stock_market_data

__all__ = [
    "ToolName",
    "ToolSpec",
    "StockDataProvider",
    "ToolRegistry",
    "STOCK_MARKET_DATA_SPEC",
]

LOGGER = logging.getLogger(__name__)

StockDataProvider = Callable[[str], Awaitable[StockToolResult]]


class ToolName(str, enum.Enum):
    """Identifiers of every tool advertised to the model."""

    GET_STOCK_MARKET_DATA = "get_stock_market_data"


@dataclass(slots=True, frozen=True)
class ToolSpec:
    """Specification for a tool's interface.

    Attributes:
        name: Tool identifier.
        description: Human-readable description of what the tool does.
        parameters: JSON Schema for the tool's parameters.
    """

    name: ToolName
    description: str
    parameters: Mapping[str, Any] = field(default_factory=dict)

    def to_openai_tool(self) -> dict[str, Any]:
        """Convert to OpenAI tool definition format."""
        return {
            "type": "function",
            "function": {
                "name": self.name.value,
                "description": self.description,
                "parameters": dict(self.parameters) if self.parameters else {
                    "type": "object",
                    "properties": {},
                },
            },
        }


STOCK_MARKET_DATA_SPEC = ToolSpec(
    name=ToolName.GET_STOCK_MARKET_DATA,
    description=(
        "Fetches real-time stock market data, historical prices, and volume for a given stock symbol."
    ),
    parameters={
        "type": "object",
        "properties": {
            "symbol": {
                "type": "string",
                "description": "The stock ticker symbol (e.g., AAPL, TSLA, GOOGL).",
            },
        },
        "required": ["symbol"],
    },
)


class ToolRegistry:
    """Static mapping from advertised tool names to their implementations."""

    def __init__(self, *, stock_data_provider: StockDataProvider | None = None) -> None:
        self._stock_data_provider: StockDataProvider = stock_data_provider or get_stock_market_data
        self._specs: dict[ToolName, ToolSpec] = {
            ToolName.GET_STOCK_MARKET_DATA: STOCK_MARKET_DATA_SPEC,
        }

    @property
    def specs(self) -> tuple[ToolSpec, ...]:
        return tuple(self._specs.values())

    def resolve(self, name: str) -> ToolName | None:
        """Return the tool registered under ``name``, or ``None`` if unknown."""

        try:
            tool = ToolName(name)
        except ValueError:
            return None
        return tool if tool in self._specs else None

    def declarations(self) -> list[dict[str, Any]]:
        """Tool declarations in the chat-completion ``tools`` format."""

        return [spec.to_openai_tool() for spec in self._specs.values()]

    async def execute(self, tool: ToolName, arguments: Mapping[str, Any]) -> StockToolResult:
        """Run ``tool`` with the model-supplied ``arguments``.

        Raises:
            ToolArgumentError: If the arguments are unusable.
            ToolExecutionError: If the implementation fails.
        """

        if tool is ToolName.GET_STOCK_MARKET_DATA:
            symbol = _require_symbol(tool, arguments)
            LOGGER.info("Fetching market data for %s", symbol)
            try:
                return await self._stock_data_provider(symbol)
            except ToolExecutionError:
                raise
            except Exception as exc:
                raise ToolExecutionError(tool.value, str(exc) or type(exc).__name__) from exc
        raise ToolExecutionError(str(tool), "no implementation registered")


def _require_symbol(tool: ToolName, arguments: Mapping[str, Any]) -> str:
    raw = arguments.get("symbol")
    if not isinstance(raw, str) or not raw.strip():
        raise ToolArgumentError(tool.value, "a non-empty 'symbol' string is required")
    return raw.strip().upper()
