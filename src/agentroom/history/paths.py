"""Mapping between project paths and the CLI's history directory names."""

from __future__ import annotations

import logging
import re
from pathlib import Path

import aiofiles.os

logger = logging.getLogger(__name__)

# The CLI replaces '/', '\', ':' and '.' with '-'
_SEPARATORS = re.compile(r"[/\\:.]")
_DANGEROUS = re.compile(r'[<>:"|?*\x00-\x1f/\\]')


def encode_project_path(project_path: str) -> str:
    """``/Users/me/tmp/`` -> ``-Users-me-tmp``."""
    normalized = project_path.rstrip("/\\")
    return _SEPARATORS.sub("-", normalized)


def validate_encoded_project_name(encoded_name: str) -> bool:
    """True if the name is safe to use as a single directory component."""
    if not encoded_name or encoded_name in (".", ".."):
        return False
    return not _DANGEROUS.search(encoded_name)


async def list_project_dirs(root: Path) -> list[str]:
    if not await aiofiles.os.path.isdir(root):
        return []
    names = []
    for name in sorted(await aiofiles.os.listdir(root)):
        if await aiofiles.os.path.isdir(root / name):
            names.append(name)
    return names


async def resolve_project_dir(root: Path, encoded_name: str) -> Path | None:
    """Find the history directory for an encoded project name.

    An exact match wins. Otherwise the first directory named
    ``<encoded_name>-<suffix>`` is used, which covers sessions started from a
    subdirectory of the project.
    """
    entries = await list_project_dirs(root)
    if encoded_name in entries:
        return root / encoded_name

    prefix = encoded_name + "-"
    matches = [name for name in entries if name.startswith(prefix)]
    if matches:
        logger.debug("No exact history dir for %s, using %s", encoded_name, matches[0])
        return root / matches[0]

    logger.debug("No history dir for %s under %s", encoded_name, root)
    return None
