"""Conversational stock analyst agent."""

__version__ = "0.1.0"
