"""Tests for the tool registry and its dispatch."""

from __future__ import annotations

import pytest

from stockagent.ai.errors import ToolArgumentError, ToolExecutionError
from stockagent.ai.tools.registry import STOCK_MARKET_DATA_SPEC, ToolName, ToolRegistry
from tests.helpers import StubStockProvider, fake_stock


def test_declarations_advertise_stock_tool() -> None:
    registry = ToolRegistry(stock_data_provider=StubStockProvider())

    declarations = registry.declarations()

    assert len(declarations) == 1
    function = declarations[0]["function"]
    assert declarations[0]["type"] == "function"
    assert function["name"] == "get_stock_market_data"
    assert function["parameters"]["required"] == ["symbol"]
    assert function["parameters"]["properties"]["symbol"]["type"] == "string"
    assert registry.specs == (STOCK_MARKET_DATA_SPEC,)


def test_resolve_returns_enum_or_none() -> None:
    registry = ToolRegistry(stock_data_provider=StubStockProvider())

    assert registry.resolve("get_stock_market_data") is ToolName.GET_STOCK_MARKET_DATA
    assert registry.resolve("get_weather") is None
    assert registry.resolve("") is None


@pytest.mark.asyncio
async def test_execute_normalizes_symbol_and_calls_provider() -> None:
    expected = fake_stock("NVDA", price=880.0, change=2.5)
    provider = StubStockProvider({"NVDA": expected})
    registry = ToolRegistry(stock_data_provider=provider)

    result = await registry.execute(ToolName.GET_STOCK_MARKET_DATA, {"symbol": "  nvda "})

    assert result is expected
    assert provider.symbols == ["NVDA"]


@pytest.mark.asyncio
@pytest.mark.parametrize("arguments", [{}, {"symbol": ""}, {"symbol": "   "}, {"symbol": 42}])
async def test_execute_rejects_unusable_symbol(arguments: dict) -> None:
    provider = StubStockProvider()
    registry = ToolRegistry(stock_data_provider=provider)

    with pytest.raises(ToolArgumentError):
        await registry.execute(ToolName.GET_STOCK_MARKET_DATA, arguments)

    assert provider.symbols == []


@pytest.mark.asyncio
async def test_execute_wraps_provider_failures() -> None:
    provider = StubStockProvider(error=ConnectionError("feed offline"))
    registry = ToolRegistry(stock_data_provider=provider)

    with pytest.raises(ToolExecutionError) as excinfo:
        await registry.execute(ToolName.GET_STOCK_MARKET_DATA, {"symbol": "TSLA"})

    assert excinfo.value.tool_name == "get_stock_market_data"
    assert "feed offline" in str(excinfo.value)
    assert isinstance(excinfo.value.__cause__, ConnectionError)
