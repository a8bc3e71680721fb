"""Agent set registry.

Merges the builtin agent sets with custom agents saved by the agent builder.
The builder stores a JSON list of agent configs; each config becomes its own
single-agent set keyed `custom_<name>`.
"""

import logging
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, Field, TypeAdapter, ValidationError

from voice_agents.agents.builtin import BUILTIN_AGENT_SETS, DEFAULT_AGENT_SET_KEY
from voice_agents.agents.models import Agent, AgentSet, CustomSet, Tool, ToolHandler

logger = logging.getLogger(__name__)

CUSTOM_KEY_PREFIX = "custom_"

ParameterType = Literal["string", "number", "boolean", "object", "array"]
VoiceOption = Literal["sage", "alloy", "echo", "fable", "onyx", "shimmer"]


class BuilderToolParameter(BaseModel):
    """Builder: one argument of a tool."""

    name: str = Field(..., min_length=1)
    type: ParameterType = "string"
    description: str = ""
    required: bool = False


class BuilderTool(BaseModel):
    """Builder: tool definition."""

    id: str = ""
    name: str = Field(..., min_length=1)
    description: str = ""
    parameters: list[BuilderToolParameter] = Field(default_factory=list)


class BuilderAgentConfig(BaseModel):
    """Builder: saved agent definition."""

    id: str = ""
    name: str = Field(..., min_length=1)
    voice: VoiceOption = "sage"
    handoffDescription: str = ""
    instructions: str = ""
    tools: list[BuilderTool] = Field(default_factory=list)
    handoffs: list[str] = Field(default_factory=list)
    createdAt: str | None = None
    updatedAt: str | None = None


_BUILDER_FILE = TypeAdapter(list[BuilderAgentConfig])


def _stub_handler(tool_name: str) -> ToolHandler:
    async def execute(arguments: dict[str, Any]) -> dict[str, Any]:
        logger.info(
            "Custom agent tool called",
            extra={"tool": tool_name, "arguments": arguments},
        )
        return {
            "success": True,
            "message": f"Tool {tool_name} executed successfully",
            "input": arguments,
        }

    return execute


def convert_builder_tool(tool: BuilderTool) -> Tool:
    """Convert a builder tool into a JSON-schema function tool."""
    properties = {p.name: {"type": p.type, "description": p.description} for p in tool.parameters}
    required = [p.name for p in tool.parameters if p.required]
    return Tool(
        name=tool.name,
        description=tool.description,
        parameters={
            "type": "object",
            "properties": properties,
            "required": required,
            "additionalProperties": False,
        },
        handler=_stub_handler(tool.name),
    )


def convert_builder_agent(config: BuilderAgentConfig) -> Agent:
    """Convert a builder agent config into an `Agent`.

    Builder handoffs reference agents by id and each custom agent is its own
    set, so handoff targets are left empty.
    """
    return Agent(
        name=config.name,
        voice=config.voice,
        instructions=config.instructions,
        handoff_description=config.handoffDescription,
        tools=tuple(convert_builder_tool(t) for t in config.tools),
    )


def load_custom_agent_sets(path: Path) -> dict[str, AgentSet]:
    """Load builder-saved agents from `path`.

    Returns an empty mapping (and logs) when the file is missing or invalid.
    """
    if not path.exists():
        return {}

    try:
        configs = _BUILDER_FILE.validate_json(path.read_bytes())
    except (OSError, ValidationError) as e:
        logger.error(
            "Failed to load custom agents",
            extra={"path": str(path), "error": str(e)},
        )
        return {}

    agent_sets: dict[str, AgentSet] = {}
    for config in configs:
        key = f"{CUSTOM_KEY_PREFIX}{config.name}"
        agent_sets[key] = AgentSet(
            key=key,
            provenance=CustomSet(name=config.name),
            agents=(convert_builder_agent(config),),
        )

    logger.info(
        "Loaded custom agents",
        extra={"path": str(path), "count": len(agent_sets)},
    )
    return agent_sets


class AgentSetRegistry:
    """Lookup of builtin and custom agent sets by key."""

    def __init__(
        self,
        builtin: dict[str, AgentSet] | None = None,
        custom_agents_path: Path | None = None,
        default_key: str = DEFAULT_AGENT_SET_KEY,
    ) -> None:
        self._builtin = dict(BUILTIN_AGENT_SETS if builtin is None else builtin)
        self._custom_agents_path = custom_agents_path
        self._custom: dict[str, AgentSet] = {}
        self.default_key = default_key
        self.reload()

    def reload(self) -> None:
        """Re-read the builder file (builder saves happen out of process)."""
        if self._custom_agents_path is not None:
            self._custom = load_custom_agent_sets(self._custom_agents_path)

    @property
    def builtin_keys(self) -> list[str]:
        return list(self._builtin)

    @property
    def custom_keys(self) -> list[str]:
        return list(self._custom)

    def keys(self) -> list[str]:
        return self.builtin_keys + [k for k in self._custom if k not in self._builtin]

    def get(self, key: str) -> AgentSet | None:
        return self._custom.get(key) or self._builtin.get(key)

    def resolve(self, key: str | None) -> AgentSet:
        """Return the set for `key`, falling back to the default set.

        Raises:
            KeyError: If neither `key` nor the default key is registered
        """
        if key:
            agent_set = self.get(key)
            if agent_set is not None:
                return agent_set
            logger.warning(
                "Unknown agent set, using default",
                extra={"requested": key, "default": self.default_key},
            )

        agent_set = self.get(self.default_key)
        if agent_set is None:
            raise KeyError(f"Default agent set '{self.default_key}' is not registered")
        return agent_set
