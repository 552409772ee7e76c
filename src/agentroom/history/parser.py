"""Parse the CLI's append-only JSON-lines session logs."""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Any

import aiofiles
import aiofiles.os

from ..errors import PartialParseError
from ..models import ConversationFragmentFile, RawRecord

logger = logging.getLogger(__name__)

HISTORY_SUFFIX = ".jsonl"

# Record types that carry a conversation message
MESSAGE_TYPES = {"user", "assistant", "system"}


def _str_or_none(value: Any) -> str | None:
    return value if isinstance(value, str) and value else None


def _parse_line(path: Path, line_no: int, line: str) -> RawRecord:
    try:
        data = json.loads(line)
    except ValueError as e:
        raise PartialParseError(str(path), line_no, f"invalid JSON: {e}") from e

    if not isinstance(data, dict):
        raise PartialParseError(str(path), line_no, "record is not a JSON object")

    kind = data.get("type")
    if not isinstance(kind, str):
        raise PartialParseError(str(path), line_no, "record has no type")

    return RawRecord(
        line_no=line_no,
        type=kind,
        session_id=_str_or_none(data.get("sessionId")),
        timestamp=_str_or_none(data.get("timestamp")),
        uuid=_str_or_none(data.get("uuid")),
        parent_uuid=_str_or_none(data.get("parentUuid")),
        agent_id=_str_or_none(data.get("agentId")),
        message=data.get("message"),
    )


def is_message_record(record: RawRecord) -> bool:
    return record.type in MESSAGE_TYPES and record.message is not None


def parse_history_text(path: Path, text: str) -> list[RawRecord]:
    """Parse every line of a log; corrupt lines are logged and skipped."""
    records: list[RawRecord] = []
    for line_no, line in enumerate(text.splitlines(), 1):
        if not line.strip():
            continue
        try:
            records.append(_parse_line(path, line_no, line))
        except PartialParseError as e:
            logger.warning("Skipping history line %s", e)
    return records


async def parse_history_file(path: Path) -> ConversationFragmentFile | None:
    """Parse one session log.

    Returns None if the file cannot be read or holds no valid records.
    """
    try:
        stat = await aiofiles.os.stat(path)
        async with aiofiles.open(path, "r", encoding="utf-8", errors="replace") as f:
            text = await f.read()
    except OSError as e:
        logger.warning("Cannot read history file %s: %s", path, e)
        return None

    records = parse_history_text(path, text)
    if not records:
        logger.debug("History file %s has no valid records", path)
        return None

    session_id = next((r.session_id for r in records if r.session_id), path.stem)
    agent_id = next((r.agent_id for r in records if r.agent_id), None)

    return ConversationFragmentFile(
        path=path,
        session_id=session_id,
        agent_id=agent_id,
        mtime=stat.st_mtime,
        records=records,
    )


async def parse_all_history_files(history_dir: Path) -> list[ConversationFragmentFile]:
    """Parse every ``*.jsonl`` log in a project's history directory."""
    names = sorted(
        name for name in await aiofiles.os.listdir(history_dir) if name.endswith(HISTORY_SUFFIX)
    )
    parsed = await asyncio.gather(*(parse_history_file(history_dir / name) for name in names))
    files = [f for f in parsed if f is not None]
    logger.debug("Parsed %d of %d history files in %s", len(files), len(names), history_dir)
    return files
