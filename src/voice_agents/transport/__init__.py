"""Realtime transport interface, notifications and wire events."""

from voice_agents.transport.base import OutputFilter, RealtimeTransport
from voice_agents.transport.notifications import Notification, SessionStatus

__all__ = ["Notification", "OutputFilter", "RealtimeTransport", "SessionStatus"]
