"""Session engine: spawns Claude Code per message and classifies its output."""
from .models import (
    Attachment,
    ClassifiedEvent,
    ErrorEvent,
    EventKind,
    MessageEvent,
    PassthroughEvent,
    ResultEvent,
    SessionOptions,
    SessionRecord,
    SessionStatus,
    SystemEvent,
    TranscriptEntry,
)
from .config import BridgeConfig
from .classifier import classify_line
from .conversation_store import ConversationStore
from .env_policy import filter_env, is_path_safe
from .errors import (
    AgentExitError,
    AgentSpawnError,
    BacklogFullError,
    BridgeError,
    ConfigError,
    SessionStoppedError,
    UnknownSessionError,
)

__all__ = [
    # Process manager (lazy import)
    "SessionProcessManager",
    "resolve_agent_command",
    # Models
    "Attachment",
    "ClassifiedEvent",
    "ErrorEvent",
    "EventKind",
    "MessageEvent",
    "PassthroughEvent",
    "ResultEvent",
    "SessionOptions",
    "SessionRecord",
    "SessionStatus",
    "SystemEvent",
    "TranscriptEntry",
    # Config
    "BridgeConfig",
    "load_yaml_config",
    # Pure helpers
    "classify_line",
    "filter_env",
    "is_path_safe",
    "ConversationStore",
    # Errors
    "AgentExitError",
    "AgentSpawnError",
    "BacklogFullError",
    "BridgeError",
    "ConfigError",
    "SessionStoppedError",
    "UnknownSessionError",
]


def __getattr__(name: str):
    if name == "SessionProcessManager":
        from .process_manager import SessionProcessManager
        return SessionProcessManager
    if name == "resolve_agent_command":
        from .process_manager import resolve_agent_command
        return resolve_agent_command
    if name == "load_yaml_config":
        from .yaml_config import load_yaml_config
        return load_yaml_config
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
