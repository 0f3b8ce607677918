"""Scrubs credentials out of diagnostic text before it is logged.

Agent stderr, spawn command lines and environment dumps can all carry
auth material; RedactingFilter is attached to every log handler so
nothing reaches a log file unredacted.
"""
from __future__ import annotations

import logging
import os
import re
from collections.abc import Iterable, Mapping

from .env_policy import AUTH_ENV_VARS

REDACTED = "[REDACTED]"

_PATTERNS: list[tuple[re.Pattern[str], str]] = [
    # Authorization: Bearer <token>
    (re.compile(r"(\bBearer\s+)[A-Za-z0-9._~+/=-]+", re.IGNORECASE), rf"\1{REDACTED}"),
    # "api_key": "value" and friends inside JSON
    (
        re.compile(
            r'("(?:api[_-]?key|apiKey|access[_-]?token|accessToken|refresh[_-]?token'
            r'|refreshToken|auth[_-]?token|authToken|password|secret|token)"\s*:\s*")'
            r'[^"]*(")',
            re.IGNORECASE,
        ),
        rf"\1{REDACTED}\2",
    ),
    # NAME=value for credential-looking environment variables
    (
        re.compile(r"\b([A-Z0-9_]*(?:API_KEY|AUTH_TOKEN|OAUTH_TOKEN|SECRET|PASSWORD)=)\S+"),
        rf"\1{REDACTED}",
    ),
    # Cookie / Set-Cookie headers
    (re.compile(r"\b((?:set-)?cookie\s*:\s*).+", re.IGNORECASE), rf"\1{REDACTED}"),
    # Anthropic key material anywhere else
    (re.compile(r"\bsk-ant-[A-Za-z0-9_-]+"), REDACTED),
]

# Values shorter than this are flags like "1", not secrets.
_MIN_SECRET_LENGTH = 8


def redact_for_logs(text: str, secrets: Iterable[str] = ()) -> str:
    """Return *text* with credentials replaced by ``[REDACTED]``."""
    if not text:
        return text
    for value in secrets:
        if value and len(value) >= _MIN_SECRET_LENGTH and value in text:
            text = text.replace(value, REDACTED)
    for pattern, replacement in _PATTERNS:
        text = pattern.sub(replacement, text)
    return text


def secret_env_values(env: Mapping[str, str] | None = None) -> list[str]:
    """Values of auth variables present in *env* (default: os.environ)."""
    env = os.environ if env is None else env
    return [env[name] for name in sorted(AUTH_ENV_VARS) if env.get(name)]


class RedactingFilter(logging.Filter):
    """Logging filter that redacts the fully formatted message.

    The message is rendered once, scrubbed, and stored back with its
    args cleared so later handlers cannot re-expand the secret.
    """

    def __init__(self, env: Mapping[str, str] | None = None) -> None:
        super().__init__()
        self._secrets = secret_env_values(env)

    def filter(self, record: logging.LogRecord) -> bool:
        try:
            message = record.getMessage()
        except (TypeError, ValueError):
            return True
        redacted = redact_for_logs(message, self._secrets)
        if redacted != message or record.args:
            record.msg = redacted
            record.args = None
        return True
