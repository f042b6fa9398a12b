"""Recover the JSON answer from free-form agent stdout."""

from __future__ import annotations

import json
import re

_FENCE_RE = re.compile(r"```[a-zA-Z]*\s*\n?(.*?)```", re.DOTALL)
_DECODER = json.JSONDecoder()


def parse_json_object(stdout_text: str) -> dict[str, object] | None:
    """Return the answer object in ``stdout_text`` or ``None``.

    A bare object wins, then the last fenced block holding an object, then the
    last top-level object found in the surrounding prose.
    """

    text = stdout_text.strip()
    if not text:
        return None

    whole = _load_dict(text)
    if whole is not None:
        return whole

    for block in reversed(_FENCE_RE.findall(text)):
        fenced = _load_dict(block.strip())
        if fenced is not None:
            return fenced

    return _last_embedded_dict(text)


def _load_dict(raw: str) -> dict[str, object] | None:
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        return None
    return parsed if isinstance(parsed, dict) else None


def _last_embedded_dict(text: str) -> dict[str, object] | None:
    found: dict[str, object] | None = None
    position = text.find("{")
    while position != -1:
        try:
            parsed, end = _DECODER.raw_decode(text, position)
        except json.JSONDecodeError:
            position = text.find("{", position + 1)
            continue
        if isinstance(parsed, dict):
            found = parsed
        position = text.find("{", end)
    return found
