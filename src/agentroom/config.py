"""Central configuration for paths and constants."""

import os
import shutil
import tempfile
from pathlib import Path


def _env_flag(name: str) -> bool:
    return os.environ.get(name, "").strip().lower() in ("1", "true", "yes", "on")


# Data directory, override with AGENTROOM_DATA_DIR env var
DATA_DIR = Path(
    os.environ.get("AGENTROOM_DATA_DIR", str(Path.home() / ".agentroom"))
)

# Where the claude CLI writes its per-project session logs
PROJECTS_DIR = Path(
    os.environ.get("AGENTROOM_PROJECTS_DIR", str(Path.home() / ".claude" / "projects"))
)

# Optional JSON list of agent descriptors, merged over the defaults
AGENTS_FILE = Path(os.environ.get("AGENTROOM_AGENTS_FILE", str(DATA_DIR / "agents.json")))

# Screenshots and images handed to the CLI provider
TEMP_IMAGE_DIR = Path(
    os.environ.get("AGENTROOM_TEMP_DIR", str(Path(tempfile.gettempdir()) / "agentroom"))
)

# Providers
CLAUDE_PATH = os.environ.get("AGENTROOM_CLAUDE_PATH") or shutil.which("claude")
OPENAI_API_KEY = os.environ.get("OPENAI_API_KEY")
OPENAI_BASE_URL = os.environ.get("OPENAI_BASE_URL", "https://api.openai.com/v1")
OPENAI_MODEL = os.environ.get("OPENAI_MODEL", "gpt-4o")
ANTHROPIC_API_KEY = os.environ.get("ANTHROPIC_API_KEY")
ANTHROPIC_BASE_URL = os.environ.get("ANTHROPIC_BASE_URL", "https://api.anthropic.com")
ANTHROPIC_MODEL = os.environ.get("ANTHROPIC_MODEL", "claude-sonnet-4-20250514")

# Sampling defaults when an agent does not set its own
DEFAULT_TEMPERATURE = 0.7
DEFAULT_MAX_TOKENS = 4000

# Seconds to wait for the CLI to exit after SIGTERM before killing it
PROCESS_GRACE_SECONDS = 5.0

# History summaries
PREVIEW_CHARS = 100  # Length of lastMessagePreview

DEBUG_MODE = _env_flag("AGENTROOM_DEBUG")
SERIALIZE_SESSIONS = _env_flag("AGENTROOM_SERIALIZE_SESSIONS")

# HTTP server
HOST = os.environ.get("AGENTROOM_HOST", "127.0.0.1")
PORT = int(os.environ.get("AGENTROOM_PORT", "8080"))
