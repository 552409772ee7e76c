"""Application context: the one place shared objects are created and owned."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from . import config
from .cancellation import CancellationRegistry
from .capabilities import CaptureScreenCapability
from .history import HistoryService
from .images import ImageHandler
from .lifecycle import RequestLifecycleManager
from .registry import ProviderRegistry


@dataclass
class AppContext:
    registry: ProviderRegistry
    cancellations: CancellationRegistry
    lifecycle: RequestLifecycleManager
    history: HistoryService
    images: ImageHandler
    debug: bool = False

    @classmethod
    def create(
        cls,
        registry: ProviderRegistry,
        projects_dir: Path,
        images: ImageHandler | None = None,
        debug: bool = False,
        serialize_sessions: bool = False,
    ) -> AppContext:
        images = images or ImageHandler(config.TEMP_IMAGE_DIR)
        cancellations = CancellationRegistry()
        lifecycle = RequestLifecycleManager(
            registry,
            cancellations,
            capabilities=[CaptureScreenCapability(images)],
            debug=debug,
            serialize_sessions=serialize_sessions,
        )
        return cls(
            registry=registry,
            cancellations=cancellations,
            lifecycle=lifecycle,
            history=HistoryService(projects_dir),
            images=images,
            debug=debug,
        )

    @classmethod
    def from_config(cls, debug: bool | None = None) -> AppContext:
        """Build everything from ``agentroom.config`` (environment overrides included)."""
        images = ImageHandler(config.TEMP_IMAGE_DIR)
        registry = ProviderRegistry.from_config(
            claude_path=config.CLAUDE_PATH,
            openai_api_key=config.OPENAI_API_KEY,
            anthropic_api_key=config.ANTHROPIC_API_KEY,
            agents_file=config.AGENTS_FILE,
            image_handler=images,
        )
        return cls.create(
            registry,
            config.PROJECTS_DIR,
            images=images,
            debug=config.DEBUG_MODE if debug is None else debug,
            serialize_sessions=config.SERIALIZE_SESSIONS,
        )
