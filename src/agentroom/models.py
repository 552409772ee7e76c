"""Data models for chat requests, streamed responses and reconstructed histories."""

from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from .errors import ErrorKind


class WireModel(BaseModel):
    """camelCase on the wire, snake_case in Python; either accepted on input."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ProviderType(str, Enum):
    CLAUDE_CODE = "claude-code"
    OPENAI = "openai"
    ANTHROPIC = "anthropic"


class AgentDescriptor(WireModel):
    id: str
    name: str
    description: str = ""
    provider: ProviderType = ProviderType.CLAUDE_CODE
    working_context: str | None = None
    endpoint: str | None = None
    is_orchestrator: bool = False
    temperature: float | None = None
    max_tokens: int | None = None
    system_prompt: str | None = None


class ProviderImage(WireModel):
    type: Literal["base64", "url"] = "base64"
    data: str
    mime_type: str = "image/png"


class ContextMessage(WireModel):
    role: Literal["user", "assistant", "system"]
    content: str
    timestamp: str | None = None


class ChatTurnRequest(WireModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    message: str = Field(min_length=1)
    request_id: str = Field(min_length=1)
    session_id: str | None = None
    working_context: str | None = None
    available_agents: list[AgentDescriptor] | None = None
    images: list[ProviderImage] | None = None


class FragmentType(str, Enum):
    TEXT = "text"
    IMAGE = "image"
    TOOL_USE = "tool_use"
    ERROR = "error"
    DONE = "done"


class ResponseFragment(WireModel):
    type: FragmentType
    content: str | None = None
    image_data: str | None = None
    tool_name: str | None = None
    tool_input: Any = None
    error: str | None = None
    error_kind: ErrorKind | None = None
    metadata: dict[str, Any] = {}

    @property
    def is_terminal(self) -> bool:
        return self.type in (FragmentType.DONE, FragmentType.ERROR)

    @property
    def is_aborted(self) -> bool:
        return self.type == FragmentType.ERROR and self.error_kind == ErrorKind.ABORTED

    @classmethod
    def text(cls, content: str, **metadata: Any) -> ResponseFragment:
        return cls(type=FragmentType.TEXT, content=content, metadata=metadata)

    @classmethod
    def done(cls, **metadata: Any) -> ResponseFragment:
        return cls(type=FragmentType.DONE, metadata=metadata)

    @classmethod
    def failure(cls, message: str, kind: ErrorKind = ErrorKind.ADAPTER) -> ResponseFragment:
        return cls(type=FragmentType.ERROR, error=message, error_kind=kind)

    @classmethod
    def aborted(cls) -> ResponseFragment:
        return cls.failure("Request aborted", ErrorKind.ABORTED)


class EnvelopeKind(str, Enum):
    CLAUDE_JSON = "claude_json"
    ERROR = "error"
    DONE = "done"
    ABORTED = "aborted"


class StreamEnvelope(WireModel):
    kind: EnvelopeKind
    payload: dict[str, Any] | None = None
    error_message: str | None = None
    error_kind: ErrorKind | None = None

    @property
    def is_terminal(self) -> bool:
        return self.kind != EnvelopeKind.CLAUDE_JSON

    def to_ndjson(self) -> str:
        return self.model_dump_json(by_alias=True, exclude_none=True) + "\n"

    @classmethod
    def json_payload(cls, payload: dict[str, Any]) -> StreamEnvelope:
        return cls(kind=EnvelopeKind.CLAUDE_JSON, payload=payload)

    @classmethod
    def done(cls) -> StreamEnvelope:
        return cls(kind=EnvelopeKind.DONE)

    @classmethod
    def failure(cls, message: str, kind: ErrorKind = ErrorKind.ADAPTER) -> StreamEnvelope:
        if kind == ErrorKind.ABORTED:
            return cls.aborted(message)
        return cls(kind=EnvelopeKind.ERROR, error_message=message, error_kind=kind)

    @classmethod
    def aborted(cls, message: str = "Request aborted") -> StreamEnvelope:
        return cls(kind=EnvelopeKind.ABORTED, error_message=message, error_kind=ErrorKind.ABORTED)


class ChatRoomMessage(WireModel):
    """Provider-neutral rendering of an agent event for the shared room view."""

    type: Literal["text", "image", "command", "analysis", "implementation"]
    content: str
    agent_id: str
    timestamp: str
    image_data: str | None = None
    metadata: dict[str, Any] | None = None


class CommandVerb(str, Enum):
    CAPTURE_SCREEN = "capture_screen"
    ANALYZE_IMAGE = "analyze_image"
    IMPLEMENT_CHANGES = "implement_changes"
    REVIEW_CODE = "review_code"


class AgentCommand(WireModel):
    command: CommandVerb
    agent_id: str
    target: str | None = None


# -- history ---------------------------------------------------------------


class RawRecord(BaseModel):
    """One parsed line of a session log, kept close to what the CLI wrote."""

    line_no: int
    type: str
    session_id: str | None = None
    timestamp: str | None = None
    uuid: str | None = None
    parent_uuid: str | None = None
    agent_id: str | None = None
    message: Any = None


class ConversationFragmentFile(BaseModel):
    path: Path
    session_id: str
    agent_id: str | None = None
    mtime: float
    records: list[RawRecord] = []


class TimestampedMessage(WireModel):
    type: str
    timestamp: str
    uuid: str | None = None
    parent_uuid: str | None = None
    session_id: str | None = None
    message: Any = None
    timestamp_restored: bool = False
    source_file: str | None = None


class ConversationSummary(WireModel):
    session_id: str
    start_time: str
    last_time: str
    message_count: int
    last_message_preview: str
    agent_id: str | None = None
    source_files: list[str] = []


class ConversationMetadata(WireModel):
    start_time: str | None = None
    end_time: str | None = None
    message_count: int = 0
    source_files: list[str] = []
    agent_id: str | None = None


class ReconstructedConversation(WireModel):
    session_id: str
    messages: list[TimestampedMessage] = []
    metadata: ConversationMetadata = Field(default_factory=ConversationMetadata)
