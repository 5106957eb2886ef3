"""Mock market data source producing random-walk price histories."""

from __future__ import annotations

import asyncio
import random
from datetime import date, timedelta

from ...chat.message_model import StockDataPoint, StockToolResult

__all__ = ["DEFAULT_LATENCY_SECONDS", "generate_stock_data", "get_stock_market_data"]

DEFAULT_LATENCY_SECONDS = 0.8
_DEFAULT_DAYS = 30
_MAX_DAILY_SWING = 0.04


def generate_stock_data(
    symbol: str,
    days: int = _DEFAULT_DAYS,
    *,
    rng: random.Random | None = None,
    today: date | None = None,
) -> StockToolResult:
    """Build ``days`` daily samples ending yesterday for ``symbol``."""

    if days < 2:
        raise ValueError("At least two days are required to compute a change")
    source = rng or random.Random()
    anchor = today or date.today()
    price = source.random() * 200 + 50

    points: list[StockDataPoint] = []
    for offset in range(days, 0, -1):
        price *= 1 + (source.random() - 0.5) * _MAX_DAILY_SWING
        points.append(
            StockDataPoint(
                date=(anchor - timedelta(days=offset)).isoformat(),
                price=round(price, 2),
                volume=source.randrange(500_000, 1_500_000),
            )
        )

    last_price = points[-1].price
    previous_price = points[-2].price
    change_percent = (last_price - previous_price) / previous_price * 100
    return StockToolResult(
        symbol=symbol.upper(),
        current_price=round(last_price, 2),
        change_percent=round(change_percent, 2),
        data=tuple(points),
    )


async def get_stock_market_data(
    symbol: str,
    *,
    latency: float = DEFAULT_LATENCY_SECONDS,
    rng: random.Random | None = None,
) -> StockToolResult:
    """Return a simulated market snapshot for ``symbol`` after a network-like delay."""

    if latency > 0:
        await asyncio.sleep(latency)
    return generate_stock_data(symbol, rng=rng)
