"""Helpers for decoding structured answers from generative model text."""

import json
import re
from typing import Optional

_FENCED_JSON = re.compile(r"```(?:json)?\s*([\s\S]*?)```")
_BARE_OBJECT = re.compile(r"\{[\s\S]*\}")


def extract_json_object(content: str) -> Optional[dict]:
    """
    Decode the JSON object in a model answer.

    A ```json fenced block wins; otherwise the outermost {...} span is used.
    Returns None when nothing decodes to a JSON object.
    """
    text = content.strip()
    fenced = _FENCED_JSON.search(text)
    if fenced:
        text = fenced.group(1).strip()
    else:
        bare = _BARE_OBJECT.search(text)
        if bare:
            text = bare.group(0)
    try:
        parsed = json.loads(text)
    except json.JSONDecodeError:
        return None
    return parsed if isinstance(parsed, dict) else None
