"""Agent definitions and agent sets.

Agents are data: a name, a voice, instructions, function tools and the names
of the agents they may hand off to. An agent set groups agents that share one
moderation policy; where the set came from decides which policy that is.
"""

import re
from collections.abc import Awaitable, Callable, Iterator, Sequence
from dataclasses import dataclass, field
from typing import Any

from voice_agents.errors import AgentConfigError

ToolHandler = Callable[[dict[str, Any]], Awaitable[Any]]

_HANDOFF_NAME_RE = re.compile(r"[^a-zA-Z0-9]+")


@dataclass(frozen=True)
class Tool:
    """Function tool exposed to the model.

    Attributes:
        name: Function name
        description: What the tool does (shown to the model)
        parameters: JSON schema of the arguments object
        handler: Coroutine executing the call; `None` means the transport
            answers with a stub result.
    """

    name: str
    description: str
    parameters: dict[str, Any] = field(
        default_factory=lambda: {
            "type": "object",
            "properties": {},
            "required": [],
            "additionalProperties": False,
        }
    )
    handler: ToolHandler | None = field(default=None, compare=False, repr=False)

    def schema(self) -> dict[str, Any]:
        """Realtime function-tool description."""
        return {
            "type": "function",
            "name": self.name,
            "description": self.description,
            "parameters": self.parameters,
        }


@dataclass(frozen=True)
class Agent:
    """Immutable agent record; `name` is unique within an agent set."""

    name: str
    voice: str = "sage"
    instructions: str = ""
    handoff_description: str = ""
    tools: tuple[Tool, ...] = ()
    handoff_targets: frozenset[str] = frozenset()

    def find_tool(self, name: str) -> Tool | None:
        return next((t for t in self.tools if t.name == name), None)


def handoff_tool_name(agent_name: str) -> str:
    """Function name the model calls to transfer control to `agent_name`."""
    return "transfer_to_" + _HANDOFF_NAME_RE.sub("_", agent_name).strip("_").lower()


@dataclass(frozen=True)
class BuiltinSet:
    """Agent set shipped with the application, moderated for `company_name`."""

    name: str
    company_name: str


@dataclass(frozen=True)
class CustomSet:
    """Agent set built in the agent builder; moderated under its own name."""

    name: str


Provenance = BuiltinSet | CustomSet


def policy_name(provenance: Provenance) -> str:
    """Moderation policy identifier for an agent set."""
    if isinstance(provenance, BuiltinSet):
        return provenance.company_name
    if isinstance(provenance, CustomSet):
        return provenance.name
    raise AgentConfigError(f"Unknown agent set provenance: {provenance!r}")


@dataclass(frozen=True)
class AgentSet:
    """Ordered agents sharing one moderation policy."""

    key: str
    provenance: Provenance
    agents: tuple[Agent, ...]

    def __post_init__(self) -> None:
        if not self.agents:
            raise AgentConfigError(f"Agent set '{self.key}' has no agents")
        names = [a.name for a in self.agents]
        if len(set(names)) != len(names):
            raise AgentConfigError(f"Agent set '{self.key}' has duplicate agent names")

    def __iter__(self) -> Iterator[Agent]:
        return iter(self.agents)

    def __len__(self) -> int:
        return len(self.agents)

    @property
    def names(self) -> list[str]:
        return [a.name for a in self.agents]

    @property
    def policy_name(self) -> str:
        return policy_name(self.provenance)

    def get(self, name: str) -> Agent | None:
        return next((a for a in self.agents if a.name == name), None)

    def ordered_for(self, active_agent_name: str) -> list[Agent]:
        """Agents with `active_agent_name` promoted to the front.

        The transport selects its initial agent by position, so this ordering
        is what makes the requested agent active. Unknown names keep the
        original order.
        """
        return promote(self.agents, active_agent_name)


def promote(agents: Sequence[Agent], name: str) -> list[Agent]:
    """Return `agents` with the agent called `name` moved to index 0."""
    reordered = list(agents)
    idx = next((i for i, a in enumerate(reordered) if a.name == name), -1)
    if idx > 0:
        reordered.insert(0, reordered.pop(idx))
    return reordered
