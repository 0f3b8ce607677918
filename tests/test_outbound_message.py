from __future__ import annotations

import pytest

from cowork.engine.models import Attachment, SessionOptions
from cowork.engine.outbound import (
    EMPTY_MESSAGE_FALLBACK,
    build_outbound_message,
    coerce_attachments,
)


def test_plain_message_is_sent_verbatim():
    assert build_outbound_message("list files") == "list files"


def test_files_then_images_then_message():
    text = build_outbound_message(
        "what is this?",
        images=[{"filePath": "/tmp/shot.png"}],
        files=[Attachment(path="/tmp/a.txt"), {"name": "b.txt"}],
    )

    assert text == (
        "[Attached files]\n  - /tmp/a.txt\n  - b.txt\n\n"
        "[Attached images]\n  - /tmp/shot.png\n\n"
        "what is this?"
    )


def test_attachments_without_message_omit_message_section():
    text = build_outbound_message("", images=[{}])
    assert text == "[Attached images]\n  - (image)"


def test_nothing_supplied_uses_fallback():
    assert build_outbound_message(None) == EMPTY_MESSAGE_FALLBACK
    assert build_outbound_message("  \n ", images=[], files=[]) == EMPTY_MESSAGE_FALLBACK


def test_relative_paths_resolve_against_cwd():
    text = build_outbound_message("x", files=["docs/readme.md"], cwd="/work")
    assert "  - /work/docs/readme.md" in text


def test_escaping_relative_path_falls_back_to_name():
    text = build_outbound_message(
        "x", files=[{"path": "../../etc/passwd", "name": "passwd"}], cwd="/work",
    )

    assert "/etc/passwd" not in text
    assert "  - passwd" in text


def test_coerce_attachments_ignores_unknown_item_types():
    items = coerce_attachments(["/tmp/a.txt", {"name": "b"}, 7, None])
    assert items == [Attachment(path="/tmp/a.txt"), Attachment(name="b")]


@pytest.mark.parametrize("item", [{"path": 5}, {"filePath": ["x"]}, {"name": {"n": 1}}])
def test_attachment_with_non_string_fields_is_rejected(item):
    with pytest.raises(TypeError, match="must be a string"):
        coerce_attachments([item])


def test_session_options_accept_camel_case():
    options = SessionOptions.from_dict({
        "workingDirectory": "/work",
        "systemPrompt": "be brief",
        "info": {"message": "hello"},
        "env": {"DEBUG": 1},
    })

    assert options.cwd == "/work"
    assert options.system_prompt == "be brief"
    assert options.initial_message == "hello"
    assert options.env == {"DEBUG": "1"}


@pytest.mark.parametrize("body", [
    {"model": 5},
    {"cwd": ["/work"]},
    {"systemPrompt": ["be", "brief"]},
    {"initialMessage": {"text": "hi"}},
    {"env": ["A=1"]},
])
def test_session_options_with_wrong_field_types_are_rejected(body):
    with pytest.raises(TypeError):
        SessionOptions.from_dict(body)
