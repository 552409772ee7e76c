"""Shared fixtures: fake providers, a fake claude CLI, and history log writers."""

import json
import os
import sys
from pathlib import Path

import pytest

from agentroom.images import ImageHandler
from agentroom.models import ProviderType, ResponseFragment
from agentroom.providers import ClaudeCodeProvider, Provider
from agentroom.registry import DEFAULT_AGENTS, ProviderRegistry

FAKE_CLAUDE = r'''
import json
import sys
import time

args = sys.argv[1:]
prompt = args[args.index("-p") + 1]
session = args[args.index("--resume") + 1] if "--resume" in args else "sess-new"


def emit(obj):
    sys.stdout.write(json.dumps(obj) + "\n")
    sys.stdout.flush()


emit({"type": "system", "subtype": "init", "session_id": session})

if prompt.startswith("crash"):
    sys.stderr.write("boom: something went wrong\n")
    sys.exit(3)

if prompt.startswith("fail"):
    emit({"type": "result", "subtype": "error_during_execution", "is_error": True,
          "result": "Something broke", "session_id": session})
    sys.exit(1)

if prompt.startswith("slow"):
    emit({"type": "assistant", "session_id": session,
          "message": {"model": "fake", "content": [{"type": "text", "text": "working"}]}})
    time.sleep(30)
    sys.exit(0)

if prompt.startswith("silent"):
    sys.exit(0)

if prompt.startswith("garbage"):
    sys.stdout.write("this is not json\n")
    sys.stdout.flush()

emit({"type": "assistant", "session_id": session, "message": {"model": "fake", "content": [
    {"type": "text", "text": "echo: " + prompt},
    {"type": "tool_use", "name": "Read", "input": {"file": "a.txt"}},
]}})
emit({"type": "result", "subtype": "success", "is_error": False, "result": "ok",
      "session_id": session, "usage": {"output_tokens": 3}})
'''


class FakeProvider(Provider):
    """Replays a fixed list of fragments.

    With ``gate`` set, the stream waits on it (cancellably) after the first
    fragment.
    """

    def __init__(
        self,
        provider_type=ProviderType.CLAUDE_CODE,
        fragments=None,
        images=True,
        gate=None,
        fail_with=None,
    ):
        self.provider_type = provider_type
        self.name = f"fake-{provider_type.value}"
        self.fragments = fragments if fragments is not None else [
            ResponseFragment.text("hello", model="fake-model"),
            ResponseFragment.done(),
        ]
        self.images = images
        self.gate = gate
        self.fail_with = fail_with
        self.requests = []
        self.options = []

    def supports_images(self):
        return self.images

    async def _stream(self, request, options):
        self.requests.append(request)
        self.options.append(options)
        for i, fragment in enumerate(self.fragments):
            yield fragment
            if i == 0 and self.gate is not None:
                await options.cancellation.guard(self.gate.wait())
        if self.fail_with is not None:
            raise self.fail_with


@pytest.fixture
def fake_provider():
    return FakeProvider()


@pytest.fixture
def registry(fake_provider):
    """Default agents with every agent served by the fake claude-code provider."""
    registry = ProviderRegistry()
    registry.register(fake_provider)
    for agent in DEFAULT_AGENTS:
        registry.register_agent(agent.model_copy(update={"provider": ProviderType.CLAUDE_CODE}))
    return registry


@pytest.fixture
def image_handler(tmp_path):
    return ImageHandler(tmp_path / "images")


@pytest.fixture
def fake_claude_script(tmp_path):
    script = tmp_path / "fake_claude.py"
    script.write_text(FAKE_CLAUDE, encoding="utf-8")
    return script


@pytest.fixture
def claude_provider(fake_claude_script, image_handler):
    return ClaudeCodeProvider(
        str(fake_claude_script),
        executable=sys.executable,
        image_handler=image_handler,
        grace_seconds=1.0,
    )


@pytest.fixture
def projects_dir(tmp_path):
    root = tmp_path / "projects"
    root.mkdir()
    return root


@pytest.fixture
def write_log():
    """Write a JSON-lines session log; ``records`` may mix dicts and raw strings."""

    def _write(path: Path, records, mtime: float | None = None) -> Path:
        path.parent.mkdir(parents=True, exist_ok=True)
        lines = [r if isinstance(r, str) else json.dumps(r) for r in records]
        path.write_text("\n".join(lines) + "\n", encoding="utf-8")
        if mtime is not None:
            os.utime(path, (mtime, mtime))
        return path

    return _write


@pytest.fixture
def record():
    """Build a session log record: ``record("user", "hi", timestamp=...)``."""

    def _record(kind, text, session_id="abc", timestamp=None, **extra):
        if kind == "assistant":
            message = {"role": "assistant", "content": [{"type": "text", "text": text}]}
        else:
            message = {"role": kind, "content": text}
        data = {"type": kind, "sessionId": session_id, "message": message, **extra}
        if timestamp is not None:
            data["timestamp"] = timestamp
        return data

    return _record
