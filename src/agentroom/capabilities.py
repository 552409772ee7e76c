"""In-process command handlers that answer without calling a provider."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import AsyncIterator

from .cancellation import CancellationToken
from .images import ImageHandler
from .models import AgentCommand, ChatRoomMessage, ChatTurnRequest, CommandVerb, StreamEnvelope

logger = logging.getLogger(__name__)


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def room_envelope(message: ChatRoomMessage, session_id: str | None) -> StreamEnvelope:
    return StreamEnvelope.json_payload(
        {
            "type": "chat_room_message",
            "message": message.model_dump(by_alias=True, exclude_none=True),
            "session_id": session_id,
        }
    )


class Capability(ABC):
    verb: CommandVerb

    @abstractmethod
    def run(
        self, command: AgentCommand, request: ChatTurnRequest, cancellation: CancellationToken
    ) -> AsyncIterator[StreamEnvelope]:
        """Yield envelopes for the command, ending with a terminal one."""


class CaptureScreenCapability(Capability):
    verb = CommandVerb.CAPTURE_SCREEN

    def __init__(self, images: ImageHandler):
        self.images = images

    async def run(
        self, command: AgentCommand, request: ChatTurnRequest, cancellation: CancellationToken
    ) -> AsyncIterator[StreamEnvelope]:
        logger.debug("Capturing screen for agent %s", command.agent_id)
        capture = await self.images.capture_screenshot(fmt="png")

        if cancellation.cancelled:
            yield StreamEnvelope.aborted()
            return

        if not capture.success:
            yield StreamEnvelope.failure(f"Screenshot capture failed: {capture.error}")
            return

        meta = capture.metadata
        yield room_envelope(
            ChatRoomMessage(
                type="image",
                content=f"Screenshot captured: {meta.timestamp}",
                image_data=capture.image_data,
                agent_id=command.agent_id,
                timestamp=utc_now(),
                metadata={"command": command.command.value, "target": command.target},
            ),
            request.session_id,
        )
        yield StreamEnvelope.json_payload(
            {
                "type": "assistant",
                "content": (
                    "\U0001f4f8 **SCREENSHOT_CAPTURED**\n\n"
                    "I've captured a screenshot of the current interface. The image is now "
                    "available for analysis by other agents in the chat room.\n\n"
                    "Image details:\n"
                    f"- Format: {meta.format}\n"
                    f"- Timestamp: {meta.timestamp}\n"
                    f"- Size: {meta.width}x{meta.height}\n"
                    f"- Path: {capture.image_path}"
                ),
                "session_id": request.session_id,
            }
        )
        yield StreamEnvelope.done()
