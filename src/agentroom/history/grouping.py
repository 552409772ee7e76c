"""Merge session log fragments into conversations and summarise them."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any, Iterable

from pydantic import BaseModel

from ..config import PREVIEW_CHARS
from ..models import (
    ConversationFragmentFile,
    ConversationMetadata,
    ConversationSummary,
    RawRecord,
    ReconstructedConversation,
    TimestampedMessage,
)
from .parser import is_message_record

logger = logging.getLogger(__name__)


class MergedConversation(BaseModel):
    session_id: str
    agent_id: str | None = None
    messages: list[TimestampedMessage] = []
    source_files: list[str] = []


class _Entry:
    __slots__ = ("record", "source", "timestamp", "restored")

    def __init__(self, record: RawRecord, source: ConversationFragmentFile):
        self.record = record
        self.source = source
        self.timestamp = parse_timestamp(record.timestamp)
        self.restored = False


def parse_timestamp(value: str | None) -> datetime | None:
    """Parse an ISO-8601 timestamp; naive values are taken as UTC."""
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def format_timestamp(value: datetime) -> str:
    return value.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _content_key(record: RawRecord) -> str:
    return json.dumps(record.message, sort_keys=True, separators=(",", ":"), ensure_ascii=False, default=str)


def extract_text(message: Any) -> str:
    """Text of a message body: a string, or the text blocks of a content list."""
    if isinstance(message, str):
        return message.strip()
    if not isinstance(message, dict):
        return ""

    content = message.get("content")
    if isinstance(content, str):
        return content.strip()
    if isinstance(content, list):
        parts = []
        for block in content:
            if isinstance(block, str):
                parts.append(block)
            elif isinstance(block, dict) and block.get("type") == "text":
                parts.append(str(block.get("text", "")))
        return "\n".join(parts).strip()
    return ""


def restore_timestamps(entries: list[_Entry]):
    """Fill in missing timestamps from the nearest timestamped neighbours.

    A run of k missing timestamps between two known ones is spread evenly
    across the interval. A run with a neighbour on one side only copies that
    neighbour; with no neighbour at all the source file's mtime is used.
    """
    n = len(entries)
    i = 0
    while i < n:
        if entries[i].timestamp is not None:
            i += 1
            continue

        j = i
        while j < n and entries[j].timestamp is None:
            j += 1

        before = entries[i - 1].timestamp if i > 0 else None
        after = entries[j].timestamp if j < n else None
        step = (after - before) / (j - i + 1) if before and after else None

        for k in range(i, j):
            if step is not None:
                restored = before + step * (k - i + 1)
            elif before or after:
                restored = before or after
            else:
                restored = datetime.fromtimestamp(entries[k].source.mtime, tz=timezone.utc)
            entries[k].timestamp = restored
            entries[k].restored = True
        i = j


def merge_session(session_id: str, entries: list[_Entry]) -> MergedConversation:
    """Deduplicate and timestamp one session's entries, already in merge order."""
    seen: set[tuple[str, str | None]] = set()
    unique: list[_Entry] = []
    for entry in entries:
        # Same instant written in different formats counts as one timestamp
        when = format_timestamp(entry.timestamp) if entry.timestamp else entry.record.timestamp
        key = (_content_key(entry.record), when)
        if key in seen:
            continue
        seen.add(key)
        unique.append(entry)

    if len(unique) != len(entries):
        logger.debug("Session %s: dropped %d duplicate records", session_id, len(entries) - len(unique))

    restore_timestamps(unique)

    source_files: list[str] = []
    agent_id = None
    messages = []
    for entry in unique:
        path = str(entry.source.path)
        if path not in source_files:
            source_files.append(path)
        agent_id = agent_id or entry.record.agent_id or entry.source.agent_id
        messages.append(
            TimestampedMessage(
                type=entry.record.type,
                timestamp=format_timestamp(entry.timestamp) if entry.restored else entry.record.timestamp,
                uuid=entry.record.uuid,
                parent_uuid=entry.record.parent_uuid,
                session_id=session_id,
                message=entry.record.message,
                timestamp_restored=entry.restored,
                source_file=path,
            )
        )

    return MergedConversation(
        session_id=session_id, agent_id=agent_id, messages=messages, source_files=source_files
    )


def group_conversations(files: Iterable[ConversationFragmentFile]) -> list[MergedConversation]:
    """Group fragments by session id and merge each group.

    Files are merged oldest-modified first, records in file order. Sessions
    without any message records are left out.
    """
    ordered = sorted(files, key=lambda f: (f.mtime, str(f.path)))
    sessions: dict[str, list[_Entry]] = {}
    for fragment in ordered:
        for record in fragment.records:
            if not is_message_record(record):
                continue
            session_id = record.session_id or fragment.session_id
            sessions.setdefault(session_id, []).append(_Entry(record, fragment))

    merged = [merge_session(session_id, entries) for session_id, entries in sessions.items()]
    merged.sort(key=lambda m: _time_range(m.messages)[1], reverse=True)
    return merged


def _time_range(messages: list[TimestampedMessage]) -> tuple[datetime, datetime]:
    stamps = [parse_timestamp(m.timestamp) for m in messages]
    known = [s for s in stamps if s is not None]
    return min(known), max(known)


def last_message_preview(messages: list[TimestampedMessage], limit: int = PREVIEW_CHARS) -> str:
    """Prefix of the latest message that has text."""
    for message in reversed(messages):
        text = extract_text(message.message)
        if text:
            return text[:limit] + "..." if len(text) > limit else text
    return ""


def summarize(merged: MergedConversation) -> ConversationSummary:
    start, last = _time_range(merged.messages)
    return ConversationSummary(
        session_id=merged.session_id,
        start_time=format_timestamp(start),
        last_time=format_timestamp(last),
        message_count=len(merged.messages),
        last_message_preview=last_message_preview(merged.messages),
        agent_id=merged.agent_id,
        source_files=merged.source_files,
    )


def to_reconstructed(merged: MergedConversation) -> ReconstructedConversation:
    start, end = _time_range(merged.messages)
    return ReconstructedConversation(
        session_id=merged.session_id,
        messages=merged.messages,
        metadata=ConversationMetadata(
            start_time=format_timestamp(start),
            end_time=format_timestamp(end),
            message_count=len(merged.messages),
            source_files=merged.source_files,
            agent_id=merged.agent_id,
        ),
    )
