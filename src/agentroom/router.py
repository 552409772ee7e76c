"""Decide where a chat message goes: one agent, a capability, or the orchestrator."""

from __future__ import annotations

import logging
import re
from enum import Enum
from typing import Container

from pydantic import BaseModel

from .models import AgentCommand, CommandVerb

logger = logging.getLogger(__name__)

MENTION_RE = re.compile(r"@([\w-]+)")
COMMAND_RE = re.compile(
    r"@([\w-]+) (" + "|".join(v.value for v in CommandVerb) + r")\b(?:[ \t]+(.+))?"
)


class RoutePath(str, Enum):
    SINGLE = "single"
    CAPABILITY = "capability"
    ORCHESTRATION = "orchestration"


class RouteDecision(BaseModel):
    path: RoutePath
    agent_id: str | None = None
    command: AgentCommand | None = None
    mentions: list[str] = []


def parse_mentions(message: str) -> list[str]:
    return MENTION_RE.findall(message)


def parse_command(message: str) -> AgentCommand | None:
    """Find a structured command such as ``@impl capture_screen /dashboard``."""
    match = COMMAND_RE.search(message)
    if not match:
        return None
    agent_id, verb, target = match.groups()
    return AgentCommand(
        command=CommandVerb(verb),
        agent_id=agent_id,
        target=target.strip() if target else None,
    )


class CommandRouter:
    """Routes on addressing syntax only; it never decomposes tasks.

    ``capabilities`` holds the command verbs that are handled in-process
    instead of by an agent's provider.
    """

    def __init__(self, capabilities: Container[CommandVerb] = ()):
        self.capabilities = capabilities

    def route(self, message: str) -> RouteDecision:
        mentions = parse_mentions(message)
        command = parse_command(message)

        if command is not None and command.command in self.capabilities:
            decision = RouteDecision(
                path=RoutePath.CAPABILITY,
                agent_id=command.agent_id,
                command=command,
                mentions=mentions,
            )
        elif len(mentions) == 1:
            decision = RouteDecision(
                path=RoutePath.SINGLE, agent_id=mentions[0], command=command, mentions=mentions
            )
        else:
            decision = RouteDecision(
                path=RoutePath.ORCHESTRATION, command=command, mentions=mentions
            )

        logger.debug(
            "Routed %r -> %s (agent=%s, command=%s)",
            message[:80],
            decision.path.value,
            decision.agent_id,
            command.command.value if command else None,
        )
        return decision
