"""Realtime voice agent session orchestration."""

__version__ = "0.1.0"
