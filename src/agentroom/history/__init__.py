"""Reconstruct conversations from the CLI's session logs."""

from .grouping import group_conversations, summarize, to_reconstructed
from .parser import parse_all_history_files, parse_history_file
from .paths import encode_project_path, resolve_project_dir, validate_encoded_project_name
from .service import HistoryService

__all__ = [
    "HistoryService",
    "encode_project_path",
    "group_conversations",
    "parse_all_history_files",
    "parse_history_file",
    "resolve_project_dir",
    "summarize",
    "to_reconstructed",
    "validate_encoded_project_name",
]
