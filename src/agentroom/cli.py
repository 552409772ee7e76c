"""CLI interface for agentroom."""

from __future__ import annotations

import asyncio
import json
import logging
import shutil
import sys

import click

from . import __version__
from . import config as settings
from .errors import AgentroomError


def _setup_logging(debug: bool):
    # stdout is the MCP JSON-RPC transport
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.WARNING,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        stream=sys.stderr,
    )


def _context(debug: bool = False):
    from .context import AppContext

    try:
        return AppContext.from_config(debug=debug or None)
    except AgentroomError as e:
        raise click.ClickException(e.message) from e


def _project_name(project: str) -> str:
    from .history import encode_project_path

    if "/" in project or "\\" in project:
        return encode_project_path(project)
    return project


@click.group()
@click.version_option(version=__version__, prog_name="agentroom")
def cli():
    """agentroom: talk to several AI agents and browse their history.

    Routes @mentions to the right backend (the local claude CLI or a hosted
    LLM API), streams the answers, and rebuilds conversations from the
    session logs the claude CLI writes.
    """
    pass


@cli.command()
@click.option("--host", default=settings.HOST, show_default=True)
@click.option("--port", default=settings.PORT, show_default=True, type=int)
@click.option("--debug", is_flag=True, default=settings.DEBUG_MODE, help="Verbose logging")
def serve(host: str, port: int, debug: bool):
    """Start the HTTP API server."""
    import uvicorn

    from .api import create_app

    _setup_logging(debug)
    ctx = _context(debug)
    if not ctx.registry.all_agents():
        click.echo("Warning: no agents configured.", err=True)

    removed = asyncio.run(ctx.images.cleanup_temp_images())
    if removed:
        logging.getLogger(__name__).info("Removed %d stale screenshots", removed)

    uvicorn.run(create_app(ctx), host=host, port=port, log_level="debug" if debug else "info")


@cli.command()
def mcp():
    """Start the MCP server (stdio transport).

    This is used by MCP clients such as Claude Desktop to browse agent
    history. You usually don't need to run this manually.
    """
    from .server import create_mcp_server

    _setup_logging(settings.DEBUG_MODE)
    if not settings.PROJECTS_DIR.exists():
        click.echo(f"Warning: history directory {settings.PROJECTS_DIR} does not exist.", err=True)

    create_mcp_server(_context()).run(transport="stdio")


@cli.command()
def agents():
    """Show the configured agents and whether their provider is available."""
    ctx = _context()
    registry = ctx.registry

    click.echo()
    click.echo(click.style("Agents", bold=True))
    for agent in registry.all_agents():
        available = registry.resolve_adapter_for(agent.id) is not None
        status = click.style("ready", fg="green") if available else click.style("no provider", fg="yellow")
        flag = " (orchestrator)" if agent.is_orchestrator else ""
        click.echo(f"  @{agent.id:<16} {agent.provider.value:<12} {status}{flag}")
    click.echo()


@cli.command()
@click.argument("project")
@click.option("--agent", "agent_id", default=None, help="Only show this agent's conversations")
def histories(project: str, agent_id: str | None):
    """List the conversations recorded for PROJECT (an encoded name or a path)."""
    ctx = _context()
    encoded = _project_name(project)
    try:
        summaries = asyncio.run(ctx.history.list_summaries(encoded, agent_id=agent_id))
    except AgentroomError as e:
        raise click.ClickException(e.message) from e

    if not summaries:
        click.echo("No conversations found.")
        return

    click.echo()
    click.echo(click.style(f"Conversations in {encoded}", bold=True))
    for s in summaries:
        click.echo(f"  {s.session_id}  {s.last_time}  {s.message_count:>4} msgs")
        if s.last_message_preview:
            click.echo(f"      {s.last_message_preview.replace(chr(10), ' ')}")
    click.echo()


@cli.command()
@click.argument("project")
@click.argument("session_id")
@click.option("--json", "as_json", is_flag=True, help="Print the reconstructed conversation as JSON")
def show(project: str, session_id: str, as_json: bool):
    """Print one reconstructed conversation."""
    from .server import format_conversation

    ctx = _context()
    try:
        conversation = asyncio.run(ctx.history.get_conversation(_project_name(project), session_id))
    except AgentroomError as e:
        raise click.ClickException(e.message) from e

    if as_json:
        click.echo(conversation.model_dump_json(by_alias=True, indent=2))
    else:
        click.echo(format_conversation(conversation, limit=len(conversation.messages)))


@cli.command()
def config():
    """Print the configuration snippet for MCP clients."""
    agentroom_path = shutil.which("agentroom")

    if agentroom_path:
        server = {"command": agentroom_path, "args": ["mcp"]}
    else:
        server = {"command": "uvx", "args": ["agentroom", "mcp"]}

    click.echo()
    click.echo(click.style("MCP client", bold=True))
    click.echo("Add this to your client's MCP configuration:")
    click.echo()
    click.echo(json.dumps({"mcpServers": {"agentroom": server}}, indent=2))
    click.echo()

    if sys.platform == "darwin":
        click.echo(
            "Claude Desktop config: "
            "~/Library/Application Support/Claude/claude_desktop_config.json"
        )
    elif sys.platform == "win32":
        click.echo("Claude Desktop config: %APPDATA%\\Claude\\claude_desktop_config.json")
    else:
        click.echo("Claude Desktop config: ~/.config/Claude/claude_desktop_config.json")

    click.echo()
    click.echo(click.style("Environment", bold=True))
    click.echo(f"  History directory: {settings.PROJECTS_DIR}")
    click.echo(f"  Agents file:       {settings.AGENTS_FILE}")
    click.echo(f"  claude CLI:        {settings.CLAUDE_PATH or 'not found'}")
    click.echo(f"  OpenAI:            {'configured' if settings.OPENAI_API_KEY else 'not configured'}")
    click.echo(f"  Anthropic:         {'configured' if settings.ANTHROPIC_API_KEY else 'not configured'}")
    click.echo()
