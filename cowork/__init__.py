"""cowork-bridge: runs Claude Code sessions behind a channel fan-out."""

__version__ = "0.1.0"
