"""Data-fetch tools exposed to the model."""

from .registry import STOCK_MARKET_DATA_SPEC, StockDataProvider, ToolName, ToolRegistry, ToolSpec
from .stock_market import generate_stock_data, get_stock_market_data

__all__ = [
    "STOCK_MARKET_DATA_SPEC",
    "StockDataProvider",
    "ToolName",
    "ToolRegistry",
    "ToolSpec",
    "generate_stock_data",
    "get_stock_market_data",
]
