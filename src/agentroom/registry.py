"""Agent and provider registry, built once at startup."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path

from pydantic import TypeAdapter, ValidationError

from .errors import InvalidRequestError
from .images import ImageHandler
from .models import AgentDescriptor, ProviderType
from .providers import AnthropicProvider, ClaudeCodeProvider, OpenAIProvider, Provider

logger = logging.getLogger(__name__)

ORCHESTRATOR_ID = "orchestrator"

DEFAULT_AGENTS = [
    AgentDescriptor(
        id="ux-designer",
        name="UX Designer",
        description="OpenAI-powered UX designer for analyzing interfaces and providing design feedback",
        provider=ProviderType.OPENAI,
        temperature=0.7,
        max_tokens=2000,
    ),
    AgentDescriptor(
        id="implementation",
        name="Implementation Agent",
        description="Claude Code agent for implementing changes and capturing screenshots",
        provider=ProviderType.CLAUDE_CODE,
    ),
    AgentDescriptor(
        id=ORCHESTRATOR_ID,
        name="Orchestrator",
        description="Coordinates multi-agent workflows and manages task delegation",
        provider=ProviderType.CLAUDE_CODE,
        is_orchestrator=True,
    ),
]


@dataclass(frozen=True)
class ResolvedAgent:
    agent: AgentDescriptor
    provider: Provider


class ProviderRegistry:
    """Maps agent ids to their descriptor and provider instance.

    Populated before any request is served; lookups afterwards are read-only.
    """

    def __init__(self):
        self._providers: dict[ProviderType, Provider] = {}
        self._agents: dict[str, AgentDescriptor] = {}

    def register(self, provider: Provider):
        if not isinstance(provider, Provider):
            raise TypeError(f"Not a Provider: {provider!r}")
        self._providers[provider.provider_type] = provider
        logger.debug("Registered provider %s", provider.provider_type.value)

    def register_agent(self, agent: AgentDescriptor):
        self._agents[agent.id] = agent
        logger.debug("Registered agent %s (%s)", agent.id, agent.provider.value)

    def remove_agent(self, agent_id: str) -> bool:
        return self._agents.pop(agent_id, None) is not None

    def get_provider(self, provider_type: ProviderType) -> Provider | None:
        return self._providers.get(provider_type)

    def get_agent(self, agent_id: str) -> AgentDescriptor | None:
        return self._agents.get(agent_id)

    def all_agents(self) -> list[AgentDescriptor]:
        return list(self._agents.values())

    def resolve_adapter_for(self, agent_id: str) -> ResolvedAgent | None:
        """The agent and its provider, or None when either is missing."""
        agent = self._agents.get(agent_id)
        if agent is None:
            return None
        provider = self._providers.get(agent.provider)
        if provider is None:
            logger.debug("Agent %s needs provider %s, which is not registered", agent_id, agent.provider.value)
            return None
        return ResolvedAgent(agent=agent, provider=provider)

    def orchestrator(self) -> AgentDescriptor | None:
        for agent in self._agents.values():
            if agent.is_orchestrator:
                return agent
        return self._agents.get(ORCHESTRATOR_ID)

    @classmethod
    def from_config(
        cls,
        *,
        claude_path: str | None = None,
        openai_api_key: str | None = None,
        anthropic_api_key: str | None = None,
        agents_file: Path | None = None,
        image_handler: ImageHandler | None = None,
        include_defaults: bool = True,
    ) -> ProviderRegistry:
        """Register every provider with credentials, then the default and configured agents."""
        registry = cls()
        if claude_path:
            registry.register(ClaudeCodeProvider(claude_path, image_handler=image_handler))
        if openai_api_key:
            registry.register(OpenAIProvider(openai_api_key))
        if anthropic_api_key:
            registry.register(AnthropicProvider(anthropic_api_key))

        if include_defaults:
            for agent in DEFAULT_AGENTS:
                registry.register_agent(agent)

        if agents_file is not None and agents_file.exists():
            for agent in load_agents_file(agents_file):
                registry.register_agent(agent)

        return registry


def load_agents_file(path: Path) -> list[AgentDescriptor]:
    """Read a JSON list of agent descriptors (camelCase or snake_case keys)."""
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
        agents = TypeAdapter(list[AgentDescriptor]).validate_python(data)
    except (ValueError, ValidationError) as e:
        raise InvalidRequestError(f"Invalid agents file {path}: {e}") from e
    logger.info("Loaded %d agents from %s", len(agents), path)
    return agents
