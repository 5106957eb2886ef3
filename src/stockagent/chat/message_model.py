"""Chat message and stock payload data models."""

from __future__ import annotations

import enum
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Sequence


def _utcnow() -> datetime:
    """Return the current UTC time as a timezone-aware datetime."""

    return datetime.now(timezone.utc)


def _new_message_id() -> str:
    return uuid.uuid4().hex


class Role(str, enum.Enum):
    """Who a chat row is attributed to in the UI."""

    USER = "user"
    MODEL = "model"
    TOOL = "tool"


@dataclass(slots=True, frozen=True)
class StockDataPoint:
    """One daily sample of a price series."""

    date: str
    price: float
    volume: int

    def to_dict(self) -> Dict[str, Any]:
        return {"date": self.date, "price": self.price, "volume": self.volume}

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "StockDataPoint":
        return cls(
            date=str(payload["date"]),
            price=float(payload["price"]),
            volume=int(payload["volume"]),
        )


@dataclass(slots=True, frozen=True)
class StockToolResult:
    """Market snapshot returned by the stock data tool."""

    symbol: str
    current_price: float
    change_percent: float
    data: tuple[StockDataPoint, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        """Serialize for the model transcript and for persistence."""

        return {
            "symbol": self.symbol,
            "current_price": self.current_price,
            "change_percent": self.change_percent,
            "data": [point.to_dict() for point in self.data],
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "StockToolResult":
        points = payload.get("data") or ()
        return cls(
            symbol=str(payload["symbol"]),
            current_price=float(payload["current_price"]),
            change_percent=float(payload["change_percent"]),
            data=tuple(StockDataPoint.from_dict(point) for point in points),
        )


@dataclass(slots=True, frozen=True)
class ChatMessage:
    """A finished, UI-ready message produced by one agent iteration.

    ``stock_data`` carries the structured tool payload for chart-style
    rendering and ``should_animate`` hints whether the UI should reveal the
    text progressively. The agent never mutates a message after creating it;
    any truncation on cancellation happens on the caller's copy.
    """

    role: Role
    content: str
    id: str = field(default_factory=_new_message_id)
    stock_data: tuple[StockToolResult, ...] | None = None
    should_animate: bool = False
    metadata: Mapping[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=_utcnow)

    @classmethod
    def user(cls, content: str) -> "ChatMessage":
        return cls(role=Role.USER, content=content)

    @classmethod
    def model(cls, content: str, *, should_animate: bool = True, **metadata: Any) -> "ChatMessage":
        return cls(role=Role.MODEL, content=content, should_animate=should_animate, metadata=metadata)

    @classmethod
    def tool(
        cls,
        content: str,
        stock_data: Sequence[StockToolResult],
        **metadata: Any,
    ) -> "ChatMessage":
        return cls(
            role=Role.TOOL,
            content=content,
            stock_data=tuple(stock_data),
            should_animate=False,
            metadata=metadata,
        )

    def to_dict(self) -> Dict[str, Any]:
        """Serialize the message for persistence."""

        payload: Dict[str, Any] = {
            "id": self.id,
            "role": self.role.value,
            "content": self.content,
            "should_animate": self.should_animate,
            "created_at": self.created_at.isoformat(),
            "metadata": dict(self.metadata),
        }
        if self.stock_data is not None:
            payload["stock_data"] = [result.to_dict() for result in self.stock_data]
        return payload

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "ChatMessage":
        """Rebuild a message persisted with :meth:`to_dict`."""

        stock_payload = payload.get("stock_data")
        stock_data = None
        if stock_payload is not None:
            stock_data = tuple(StockToolResult.from_dict(item) for item in stock_payload)
        created_raw = payload.get("created_at")
        created_at = datetime.fromisoformat(created_raw) if created_raw else _utcnow()
        return cls(
            role=Role(payload["role"]),
            content=str(payload.get("content", "")),
            id=str(payload.get("id") or _new_message_id()),
            stock_data=stock_data,
            should_animate=bool(payload.get("should_animate", False)),
            metadata=dict(payload.get("metadata") or {}),
            created_at=created_at,
        )


# The agent-facing name for a UI message.
AgentResponse = ChatMessage


__all__ = [
    "Role",
    "StockDataPoint",
    "StockToolResult",
    "ChatMessage",
    "AgentResponse",
]
