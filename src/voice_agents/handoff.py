"""Agent handoff routing.

Tracks which agent of the selected agent set is active and carries the
one-shot "just handed off" latch. When control moves to another agent the
session configuration is re-announced for the new agent, but the greeting
turn must not be triggered, otherwise the new agent would talk over the
conversation already in progress. The latch is consumed by exactly one
announcement and discarded at the start of every connection attempt.
"""

import logging

from voice_agents.agents.models import AgentSet

logger = logging.getLogger(__name__)


class HandoffRouter:
    """Active agent bookkeeping for one agent set."""

    def __init__(self, agent_set: AgentSet, active_agent_name: str | None = None) -> None:
        self._agent_set = agent_set
        self._active = agent_set.agents[0].name
        self._handoff_pending = False
        if active_agent_name is not None:
            self.select(active_agent_name)

    @property
    def agent_set(self) -> AgentSet:
        return self._agent_set

    @property
    def active_agent_name(self) -> str:
        return self._active

    @property
    def handoff_pending(self) -> bool:
        return self._handoff_pending

    def on_handoff(self, agent_name: str) -> bool:
        """Record that the transport transferred control to `agent_name`.

        Returns:
            False if the agent is not part of the current set (ignored)
        """
        if self._agent_set.get(agent_name) is None:
            logger.warning(
                "Handoff to unknown agent ignored",
                extra={"agent": agent_name, "agent_set": self._agent_set.key},
            )
            return False

        logger.info(f"Agent handoff: {self._active} -> {agent_name}")
        self._active = agent_name
        self._handoff_pending = True
        return True

    def consume_handoff(self) -> bool:
        """Read and clear the latch; True at most once per handoff."""
        pending = self._handoff_pending
        self._handoff_pending = False
        return pending

    def discard(self) -> None:
        """Drop a latch left over from a previous connection."""
        self._handoff_pending = False

    def select(self, agent_name: str) -> bool:
        """Make `agent_name` active without a handoff (user selection)."""
        if self._agent_set.get(agent_name) is None:
            logger.warning(
                "Unknown agent selected",
                extra={"agent": agent_name, "agent_set": self._agent_set.key},
            )
            return False
        self._active = agent_name
        return True

    def reset(self, agent_set: AgentSet) -> None:
        """Switch to another agent set; its first agent becomes active."""
        self._agent_set = agent_set
        self._active = agent_set.agents[0].name
        self._handoff_pending = False
