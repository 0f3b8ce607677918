"""Builds the stdin text for one agent invocation.

The CLI only sees text, so GUI attachments are rendered as path lists
ahead of the user's message.
"""
from __future__ import annotations

import logging
import os
from collections.abc import Iterable
from typing import Any

from .env_policy import is_path_safe
from .models import Attachment

logger = logging.getLogger(__name__)

EMPTY_MESSAGE_FALLBACK = (
    "The user sent an attachment but no message text was captured. "
    "Please acknowledge and ask them to describe what they need."
)


def coerce_attachments(items: Iterable[Any] | None) -> list[Attachment]:
    """Normalize GUI attachment items (dicts, paths or Attachments).

    Raises TypeError for a dict whose path or name is not a string.
    Items of any other type are ignored.
    """
    attachments: list[Attachment] = []
    for item in items or ():
        if isinstance(item, Attachment):
            attachments.append(item)
        elif isinstance(item, dict):
            attachments.append(Attachment.from_dict(item))
        elif isinstance(item, str):
            attachments.append(Attachment(path=item))
    return attachments


def _render(attachment: Attachment, cwd: str | None, placeholder: str) -> str:
    path = attachment.path
    if path and cwd and not os.path.isabs(path):
        if is_path_safe(cwd, path):
            path = os.path.normpath(os.path.join(cwd, path))
        else:
            logger.warning("Attachment path escapes session cwd, using name only: %s", path)
            path = None
    return f"  - {path or attachment.name or placeholder}"


def build_outbound_message(
    message: str | None,
    images: Iterable[Any] | None = None,
    files: Iterable[Any] | None = None,
    cwd: str | None = None,
) -> str:
    """Render files, then images, then the message text.

    Never returns an empty string: when nothing was supplied a fixed
    instruction is sent instead.
    """
    parts: list[str] = []

    file_refs = [_render(a, cwd, "(unknown)") for a in coerce_attachments(files)]
    if file_refs:
        parts.append("[Attached files]\n" + "\n".join(file_refs))

    image_refs = [_render(a, cwd, "(image)") for a in coerce_attachments(images)]
    if image_refs:
        parts.append("[Attached images]\n" + "\n".join(image_refs))

    if message and message.strip():
        parts.append(message)

    if not parts:
        return EMPTY_MESSAGE_FALLBACK
    return "\n\n".join(parts)
