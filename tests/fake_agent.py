"""Writes a stand-in for the claude binary used by subprocess tests.

The script reads the whole message from stdin, answers in
stream-json, and changes behaviour on a few keywords:

- ``fail``   exit with status 4 after partial output
- ``sleep``  block until killed
- ``split``  write one JSON line in two separate flushes
"""
from __future__ import annotations

import sys
from pathlib import Path

_SCRIPT = '''\
#!{python}
import json
import sys
import time

args = sys.argv[1:]
resume = args[args.index("--resume") + 1] if "--resume" in args else None
prompt = sys.stdin.read()
conversation = resume or "conv-123"

def emit(obj):
    sys.stdout.write(json.dumps(obj) + "\\n")
    sys.stdout.flush()

emit({{"type": "system", "subtype": "init", "session_id": conversation}})
sys.stderr.write("loading ANTHROPIC_API_KEY=sk-ant-secret123456\\n")
sys.stderr.flush()
emit({{"type": "assistant", "text": "echo: " + prompt + " resumed=" + str(resume)}})
sys.stdout.write("plain progress line\\n")
sys.stdout.flush()

if "split" in prompt:
    line = json.dumps({{"type": "assistant", "text": "joined \\u00e9"}}, ensure_ascii=False) + "\\n"
    raw = line.encode("utf-8")
    half = raw.index(b"\\xc3") + 1
    sys.stdout.buffer.write(raw[:half])
    sys.stdout.flush()
    time.sleep(0.05)
    sys.stdout.buffer.write(raw[half:])
    sys.stdout.flush()
if "sleep" in prompt:
    time.sleep(30)
if "fail" in prompt:
    sys.exit(4)

emit({{"type": "result", "session_id": conversation, "result": "done"}})
'''


def write_fake_agent(directory: Path) -> Path:
    """Create an executable fake claude in *directory* and return its path."""
    path = directory / "claude"
    path.write_text(_SCRIPT.format(python=sys.executable), encoding="utf-8")
    path.chmod(0o755)
    return path
