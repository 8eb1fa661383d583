"""LLM collaborators of the search agent."""

from .runner import AgentRunner, parse_structured, resolve_structured
from .registry import agent_registry, AgentConfig, AgentRegistry
from .manager import AgentManager, AgentDefinition

__all__ = [
    "AgentRunner",
    "parse_structured",
    "resolve_structured",
    "agent_registry",
    "AgentConfig",
    "AgentRegistry",
    "AgentManager",
    "AgentDefinition"
]
