"""History queries over a root of per-project session log directories."""

from __future__ import annotations

import logging
from pathlib import Path

from ..errors import InvalidRequestError, NotFoundError
from ..models import ConversationSummary, ReconstructedConversation
from .grouping import MergedConversation, group_conversations, summarize, to_reconstructed
from .parser import parse_all_history_files
from .paths import list_project_dirs, resolve_project_dir, validate_encoded_project_name

logger = logging.getLogger(__name__)


class HistoryService:
    """Read-only view of the CLI's history tree.

    Nothing is cached: every query re-reads the logs, since the CLI keeps
    appending to them.
    """

    def __init__(self, projects_dir: Path):
        self.projects_dir = Path(projects_dir)

    async def list_projects(self) -> list[str]:
        return await list_project_dirs(self.projects_dir)

    async def _load(self, encoded_name: str) -> list[MergedConversation]:
        if not validate_encoded_project_name(encoded_name):
            raise InvalidRequestError(f"Invalid encoded project name: {encoded_name!r}")

        history_dir = await resolve_project_dir(self.projects_dir, encoded_name)
        if history_dir is None:
            raise NotFoundError(f"Project not found: {encoded_name}")

        files = await parse_all_history_files(history_dir)
        merged = group_conversations(files)
        logger.debug(
            "%s: %d files, %d conversations", history_dir.name, len(files), len(merged)
        )
        return merged

    async def list_summaries(
        self, encoded_name: str, agent_id: str | None = None
    ) -> list[ConversationSummary]:
        """Summaries of every conversation in the project, newest first."""
        summaries = [summarize(m) for m in await self._load(encoded_name)]
        if agent_id:
            summaries = [s for s in summaries if s.agent_id == agent_id]
        return summaries

    async def get_conversation(
        self, encoded_name: str, session_id: str
    ) -> ReconstructedConversation:
        for merged in await self._load(encoded_name):
            if merged.session_id == session_id:
                return to_reconstructed(merged)
        raise NotFoundError(f"Session not found: {session_id}")
