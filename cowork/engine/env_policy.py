"""Environment and filesystem path policy for spawned agents.

The allowlist is a visibility boundary: it keeps unrelated variables
from the desktop session out of the sandboxed agent. It is not a
secrecy mechanism. Both helpers are pure string arithmetic and never
touch the filesystem.
"""
from __future__ import annotations

import os
from collections.abc import Iterable, Mapping

# Authentication variables passed through verbatim. Their values must
# never be logged unredacted (see redaction.py).
AUTH_ENV_VARS: frozenset[str] = frozenset({
    "ANTHROPIC_API_KEY",
    "ANTHROPIC_AUTH_TOKEN",
    "CLAUDE_CODE_OAUTH_TOKEN",
    "CLAUDE_CODE_USE_BEDROCK",
    "CLAUDE_CODE_USE_VERTEX",
})

ENV_ALLOWLIST: frozenset[str] = frozenset({
    "PATH", "HOME", "USER", "SHELL", "TERM", "LANG", "LC_ALL", "LC_CTYPE",
    "XDG_RUNTIME_DIR", "XDG_CONFIG_HOME", "XDG_DATA_HOME", "XDG_CACHE_HOME",
    "DISPLAY", "WAYLAND_DISPLAY", "DBUS_SESSION_BUS_ADDRESS",
    "NODE_ENV", "ELECTRON_RUN_AS_NODE",
}) | AUTH_ENV_VARS


def filter_env(
    source_env: Mapping[str, str],
    additional_env: Mapping[str, str] | None = None,
    allowlist: Iterable[str] = ENV_ALLOWLIST,
) -> dict[str, str]:
    """Copy allowlisted variables, then overlay trusted additions.

    Additions come from the controlling application and bypass the
    allowlist. Returns a new dict; inputs are not modified.
    """
    allowed = allowlist if isinstance(allowlist, (set, frozenset)) else set(allowlist)
    filtered = {
        key: value
        for key, value in source_env.items()
        if key in allowed
    }
    if additional_env:
        filtered.update(additional_env)
    return filtered


def is_path_safe(base_dir: str, candidate: str) -> bool:
    """True when *candidate* resolves to *base_dir* or somewhere below it.

    Relative candidates are resolved against the base; absolute ones
    are taken as-is. ``..`` segments are collapsed before the check,
    so traversal out of the base is rejected.
    """
    if not isinstance(base_dir, str) or not isinstance(candidate, str):
        return False
    if not base_dir or "\x00" in base_dir or "\x00" in candidate:
        return False
    base = os.path.normpath(os.path.abspath(base_dir))
    resolved = os.path.normpath(os.path.join(base, candidate))
    try:
        return os.path.commonpath([base, resolved]) == base
    except ValueError:
        return False
