"""FastMCP server exposing agents and conversation history as tools."""

from __future__ import annotations

import logging

from mcp.server.fastmcp import FastMCP

from .context import AppContext
from .errors import AgentroomError
from .history.grouping import extract_text
from .models import AgentDescriptor, ConversationSummary, ReconstructedConversation

logger = logging.getLogger(__name__)

INSTRUCTIONS = (
    "Browse the conversation history of the user's coding agents. "
    "Use list_projects to find project names, list_histories to see the "
    "conversations of a project, and get_history to read a full transcript. "
    "Use list_agents to see which agents are configured."
)


def _format_ts(ts: str | None) -> str:
    if not ts:
        return "Unknown date"
    return ts.replace("T", " ")[:16]


def format_agents(agents: list[AgentDescriptor]) -> str:
    if not agents:
        return "No agents configured."
    lines = [f"Configured agents ({len(agents)}):\n"]
    for agent in agents:
        flag = " [orchestrator]" if agent.is_orchestrator else ""
        lines.append(f"- **@{agent.id}**: {agent.name} ({agent.provider.value}){flag}")
        if agent.description:
            lines.append(f"  {agent.description}")
    return "\n".join(lines)


def format_summaries(project: str, summaries: list[ConversationSummary]) -> str:
    if not summaries:
        return f"No conversations found for project '{project}'."

    lines = [f"Conversations in {project} ({len(summaries)}):\n"]
    for i, s in enumerate(summaries, 1):
        agent = f" | Agent: {s.agent_id}" if s.agent_id else ""
        lines.append(f"{i}. `{s.session_id}` ({_format_ts(s.start_time)} → {_format_ts(s.last_time)})")
        lines.append(f"   {s.message_count} msgs{agent}")
        if s.last_message_preview:
            lines.append(f"   Last: {s.last_message_preview.replace(chr(10), ' ')}")
    lines.append("\nUse get_history(project, session_id) to read a full transcript.")
    return "\n".join(lines)


def format_conversation(conversation: ReconstructedConversation, limit: int = 50) -> str:
    meta = conversation.metadata
    lines = [
        f"# Session {conversation.session_id}",
        "",
        f"- **Started**: {_format_ts(meta.start_time)}",
        f"- **Last activity**: {_format_ts(meta.end_time)}",
        f"- **Messages**: {meta.message_count}",
        f"- **Log files**: {len(meta.source_files)}",
        "",
    ]

    messages = conversation.messages
    if len(messages) > limit:
        lines.append(f"*Showing the last {limit} of {len(messages)} messages.*\n")
        messages = messages[-limit:]

    for msg in messages:
        text = extract_text(msg.message)
        if not text:
            continue
        role = msg.type.capitalize()
        restored = " (approx.)" if msg.timestamp_restored else ""
        lines.append(f"**{role}** [{_format_ts(msg.timestamp)}{restored}]: {text}")
        lines.append("")

    return "\n".join(lines)


def create_mcp_server(context: AppContext) -> FastMCP:
    mcp = FastMCP("agentroom", instructions=INSTRUCTIONS)

    @mcp.tool()
    def list_agents() -> str:
        """List the configured agents and which backend each one uses."""
        return format_agents(context.registry.all_agents())

    @mcp.tool()
    async def list_projects() -> str:
        """List the projects that have conversation history."""
        projects = await context.history.list_projects()
        if not projects:
            return f"No project history found in {context.history.projects_dir}."
        return "Projects:\n" + "\n".join(f"- `{p}`" for p in projects)

    @mcp.tool()
    async def list_histories(project: str, agent_id: str | None = None) -> str:
        """List conversations recorded for a project, newest first.

        Args:
            project: Encoded project name (as returned by list_projects)
            agent_id: Only show conversations of this agent
        """
        try:
            summaries = await context.history.list_summaries(project, agent_id=agent_id)
        except AgentroomError as e:
            return e.message
        return format_summaries(project, summaries)

    @mcp.tool()
    async def get_history(project: str, session_id: str, limit: int = 50) -> str:
        """Read the reconstructed transcript of one conversation.

        Args:
            project: Encoded project name
            session_id: Session id from list_histories
            limit: Show at most this many of the latest messages (default 50)
        """
        try:
            conversation = await context.history.get_conversation(project, session_id)
        except AgentroomError as e:
            return e.message
        return format_conversation(conversation, limit=limit)

    return mcp
