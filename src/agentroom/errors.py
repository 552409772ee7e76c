"""Error taxonomy shared by the streaming and non-streaming paths."""

from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    NOT_FOUND = "not_found"
    VALIDATION = "validation_error"
    ADAPTER = "adapter_error"
    ABORTED = "aborted"
    PARTIAL_PARSE = "partial_parse_error"


class AgentroomError(Exception):
    """Base error carrying a human-readable message and a machine-readable kind."""

    kind: ErrorKind = ErrorKind.ADAPTER

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFoundError(AgentroomError):
    """Unknown agent, project or session."""

    kind = ErrorKind.NOT_FOUND


class InvalidRequestError(AgentroomError):
    kind = ErrorKind.VALIDATION


class AdapterError(AgentroomError):
    """Upstream API or subprocess failure (rate limits and crashes included)."""

    kind = ErrorKind.ADAPTER


class AbortedError(AgentroomError):
    kind = ErrorKind.ABORTED

    def __init__(self, message: str = "Request aborted"):
        super().__init__(message)


class PartialParseError(AgentroomError):
    """One corrupt history line. Recovered where it is raised, never surfaced."""

    kind = ErrorKind.PARTIAL_PARSE

    def __init__(self, path: str, line_no: int, reason: str):
        super().__init__(f"{path}:{line_no}: {reason}")
        self.path = path
        self.line_no = line_no
        self.reason = reason
