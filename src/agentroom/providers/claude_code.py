"""Provider that drives the local ``claude`` CLI as a subprocess."""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
from typing import Any, AsyncIterator

from ..config import PROCESS_GRACE_SECONDS
from ..errors import AdapterError
from ..images import ImageHandler
from ..models import FragmentType, ProviderType, ResponseFragment
from .base import Provider, ProviderOptions, ProviderRequest

logger = logging.getLogger(__name__)

STDOUT_LIMIT = 10 * 1024 * 1024  # stream-json lines can carry whole file contents


class ClaudeCodeProvider(Provider):
    provider_type = ProviderType.CLAUDE_CODE
    name = "Claude Code"

    def __init__(
        self,
        claude_path: str,
        executable: str | None = None,
        image_handler: ImageHandler | None = None,
        grace_seconds: float = PROCESS_GRACE_SECONDS,
    ):
        self.claude_path = claude_path
        self.executable = executable
        self.image_handler = image_handler
        self.grace_seconds = grace_seconds

    def supports_images(self) -> bool:
        # Images are handed over as files the CLI reads itself
        return True

    def build_command(self, prompt: str, session_id: str | None = None) -> list[str]:
        cmd = [self.executable] if self.executable else []
        cmd += [
            self.claude_path,
            "-p",
            prompt,
            "--output-format",
            "stream-json",
            "--verbose",
            "--permission-mode",
            "bypassPermissions",
        ]
        if session_id:
            cmd += ["--resume", session_id]
        return cmd

    async def prepare_prompt(self, request: ProviderRequest) -> str:
        prompt = request.message[1:] if request.message.startswith("/") else request.message

        for i, image in enumerate(request.images):
            if image.type == "url":
                prompt += f"\n\nPlease analyze the image at {image.data}."
                continue
            if self.image_handler is None:
                logger.warning("[Claude Code] No image directory configured, dropping image %d", i)
                continue
            ext = image.mime_type.split("/")[-1]
            path = await self.image_handler.save_image_from_base64(
                image.data, ext, filename=f"screenshot_{request.request_id}_{i}.{ext}"
            )
            prompt += (
                f"\n\nPlease analyze the screenshot at {path}. "
                "The image has been captured and is available for analysis."
            )
        return prompt

    def translate(self, line: bytes) -> list[ResponseFragment]:
        """Turn one stream-json stdout line into fragments."""
        try:
            data = json.loads(line)
        except ValueError:
            logger.warning("[Claude Code] Skipping non-JSON output: %r", line[:200])
            return []
        if not isinstance(data, dict):
            return []

        kind = data.get("type")
        session_id = data.get("session_id")

        if kind == "assistant":
            message = data.get("message") or {}
            model = message.get("model")
            content = message.get("content", data.get("content"))
            if isinstance(content, str):
                return [ResponseFragment.text(content, model=model, session_id=session_id)]

            fragments = []
            for block in content or []:
                if isinstance(block, str):
                    fragments.append(ResponseFragment.text(block, model=model, session_id=session_id))
                elif not isinstance(block, dict):
                    continue
                elif block.get("type") == "text":
                    fragments.append(
                        ResponseFragment.text(block.get("text", ""), model=model, session_id=session_id)
                    )
                elif block.get("type") == "tool_use":
                    fragments.append(
                        ResponseFragment(
                            type=FragmentType.TOOL_USE,
                            tool_name=block.get("name"),
                            tool_input=block.get("input"),
                            metadata={"session_id": session_id},
                        )
                    )
            return fragments

        if kind == "system":
            text = json.dumps(data)
            if "screenshot" in text or "capture" in text:
                return [
                    ResponseFragment(
                        type=FragmentType.IMAGE,
                        content="Screenshot captured successfully",
                        metadata={"capture_type": "screenshot", "session_id": session_id},
                    )
                ]
            return []

        if kind == "result":
            if data.get("is_error") or data.get("subtype", "success") != "success":
                return [ResponseFragment.failure(data.get("result") or f"claude failed: {data.get('subtype')}")]
            metadata: dict[str, Any] = {"session_id": session_id}
            if data.get("usage"):
                metadata["usage"] = data["usage"]
            return [ResponseFragment.done(**metadata)]

        return []

    async def _terminate(self, process: asyncio.subprocess.Process):
        with contextlib.suppress(ProcessLookupError):
            process.terminate()
        try:
            await asyncio.wait_for(process.wait(), self.grace_seconds)
        except asyncio.TimeoutError:
            logger.warning("[Claude Code] pid %s ignored SIGTERM, killing", process.pid)
            with contextlib.suppress(ProcessLookupError):
                process.kill()
            await process.wait()

    async def _stream(
        self, request: ProviderRequest, options: ProviderOptions
    ) -> AsyncIterator[ResponseFragment]:
        prompt = await self.prepare_prompt(request)
        cmd = self.build_command(prompt, request.session_id)

        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=request.working_directory,
                limit=STDOUT_LIMIT,
            )
        except OSError as e:
            raise AdapterError(f"Failed to start claude CLI ({self.claude_path}): {e}") from e

        logger.debug("[Claude Code] started pid %s for %s", process.pid, request.request_id)
        stderr_task = asyncio.ensure_future(process.stderr.read())
        terminal: ResponseFragment | None = None
        try:
            while terminal is None:
                line = await options.cancellation.guard(process.stdout.readline())
                if not line:
                    break
                if not line.strip():
                    continue
                for fragment in self.translate(line):
                    if options.debug:
                        logger.debug("[Claude Code] fragment %s", fragment.type.value)
                    if fragment.is_terminal:
                        terminal = fragment
                        break
                    yield fragment

            returncode = await options.cancellation.guard(process.wait())
            if terminal is not None:
                yield terminal
                return

            stderr = (await stderr_task).decode("utf-8", errors="replace").strip()
            if returncode != 0:
                tail = stderr[-500:] if stderr else "no output"
                raise AdapterError(f"claude exited with code {returncode}: {tail}")
            yield ResponseFragment.done()
        finally:
            if process.returncode is None:
                await self._terminate(process)
            if not stderr_task.done():
                stderr_task.cancel()
            await asyncio.gather(stderr_task, return_exceptions=True)
