"""Persona prompt and user-facing strings for the stock analyst agent."""

from __future__ import annotations

from typing import Iterable

from .errors import ModelErrorKind, ModelsExhaustedError, StockAgentError

__all__ = [
    "SYSTEM_INSTRUCTION",
    "FINAL_ANSWER_FALLBACK",
    "ITERATION_LIMIT_NOTICE",
    "GENERATION_STOPPED_NOTICE",
    "WELCOME_MESSAGE",
    "NEW_SESSION_TITLE",
    "tool_summary",
    "user_message_for",
]

SYSTEM_INSTRUCTION = """你是一个专业的金融分析智能体。
在给出建议之前，请务必使用可用工具验证市场数据。
收到股票数据后，请深入分析趋势。
如果用户要求图表，只需获取数据，UI 会负责渲染图表。
保持回答简洁、专业且有见地。
请始终使用中文回复。"""

FINAL_ANSWER_FALLBACK = "我已处理该请求。"
ITERATION_LIMIT_NOTICE = "已达到本轮对话的最大处理步数，请缩小问题范围后重试。"
GENERATION_STOPPED_NOTICE = "生成已停止。"
WELCOME_MESSAGE = (
    "你好！我是你的金融智能助手。我可以分析股市、可视化趋势并提供专业见解。"
    "试着问我“苹果股价”或“对比特斯拉和福特”。"
)
NEW_SESSION_TITLE = "新对话"

_GENERIC_ERROR = "处理您的请求时遇到错误。"
_MODELS_EXHAUSTED = "所有可用模型的免费配额均已耗尽。请稍后再试。"
_QUOTA_EXHAUSTED = "API 配额已耗尽。请稍后再试。"
_MODEL_UNAVAILABLE = "配置的模型不可用。"


def tool_summary(symbols: Iterable[str]) -> str:
    """Display text for a tool row listing the symbols just fetched."""

    return f"已获取 {', '.join(symbols)} 的数据"


def user_message_for(exc: BaseException) -> str:
    """Pick the chat text shown for a failed run."""

    if isinstance(exc, ModelsExhaustedError):
        return _MODELS_EXHAUSTED
    kind = exc.kind if isinstance(exc, StockAgentError) else ModelErrorKind.UNKNOWN
    if kind is ModelErrorKind.CAPACITY:
        return _QUOTA_EXHAUSTED
    if kind is ModelErrorKind.NOT_FOUND:
        return _MODEL_UNAVAILABLE
    return _GENERIC_ERROR
