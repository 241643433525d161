"""Output extraction utilities for parsing language-model responses."""

from __future__ import annotations

import json
import re
from typing import Any, Dict, Optional

_THINK_CLOSE = "</think>"
_FENCED_JSON = re.compile(r"```(?:json)?\s*(\{.*?\})\s*```", re.DOTALL)


def strip_think(text: str) -> str:
    """Drop everything up to and including the last ``</think>`` tag."""
    if not text:
        return ""
    if _THINK_CLOSE in text:
        text = text.rsplit(_THINK_CLOSE, 1)[1]
    return text.strip()


def extract_think(text: str) -> str:
    """Return the content of a leading ``<think>`` block, or an empty string."""
    match = re.search(r"<think>(.*?)</think>", text or "", re.DOTALL)
    return match.group(1).strip() if match else ""


def _balanced_object(text: str, start: int) -> Optional[str]:
    """Return the JSON object text starting at ``start``, honouring strings."""
    depth = 0
    in_string = False
    escaped = False
    for i in range(start, len(text)):
        ch = text[i]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return text[start:i + 1]
    return None


def extract_json_object(text: str) -> Optional[Dict[str, Any]]:
    """Extract the first JSON object from model output.

    Supports bare JSON, markdown code blocks and objects embedded in prose.
    Returns None when no object can be decoded.
    """
    if not text:
        return None

    try:
        data = json.loads(text.strip())
        if isinstance(data, dict):
            return data
    except (json.JSONDecodeError, ValueError):
        pass

    fenced = _FENCED_JSON.search(text)
    if fenced:
        try:
            data = json.loads(fenced.group(1))
            if isinstance(data, dict):
                return data
        except (json.JSONDecodeError, ValueError):
            pass

    start = text.find("{")
    while start != -1:
        candidate = _balanced_object(text, start)
        if candidate is None:
            return None
        try:
            data = json.loads(candidate)
            if isinstance(data, dict):
                return data
        except (json.JSONDecodeError, ValueError):
            pass
        start = text.find("{", start + 1)

    return None


def extract_text(output: Any) -> str:
    """Extract text content from various output formats."""
    if output is None:
        return ""
    if isinstance(output, str):
        return output
    if isinstance(output, dict):
        for key in ["output", "text", "content", "answer", "result"]:
            if key in output:
                return str(output[key])
        return json.dumps(output, ensure_ascii=False)
    if hasattr(output, "content"):
        return str(output.content)
    return str(output)
