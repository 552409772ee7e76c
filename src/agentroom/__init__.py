"""agentroom: chat with several AI agents and browse their conversation history."""

__version__ = "0.1.0"
