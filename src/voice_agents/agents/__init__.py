"""Agent definitions, builtin agent sets and the agent set registry."""

from voice_agents.agents.models import (
    Agent,
    AgentSet,
    BuiltinSet,
    CustomSet,
    Tool,
    handoff_tool_name,
    policy_name,
    promote,
)
from voice_agents.agents.registry import AgentSetRegistry, load_custom_agent_sets

__all__ = [
    "Agent",
    "AgentSet",
    "AgentSetRegistry",
    "BuiltinSet",
    "CustomSet",
    "Tool",
    "handoff_tool_name",
    "load_custom_agent_sets",
    "policy_name",
    "promote",
]
