"""
Best-effort JSON extraction from model output.

Structured replies arrive wrapped in prose or code fences, with bare keys,
trailing commas or Python literal syntax. ``extract_json_object`` cuts
out the first bracketed block and parses it as strict JSON, then as
repaired JSON, then as a Python literal.
"""

import ast
import json
import logging
import re
from typing import Any

logger = logging.getLogger(__name__)

_TRAILING_COMMA = re.compile(r",(\s*[}\]])")
_BARE_KEY = re.compile(r"([{,]\s*)([A-Za-z_][\w-]*)(\s*:)")


def _repair(text: str) -> str:
    return _BARE_KEY.sub(r'\1"\2"\3', _TRAILING_COMMA.sub(r"\1", text))


def _plain(value: Any) -> Any:
    if isinstance(value, dict):
        return {str(k): _plain(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [_plain(v) for v in value]
    return value


def parse_json_loose(raw: str) -> dict[str, Any] | list[Any] | None:
    """Parse a dict or list from ``raw``, or return None."""
    text = (raw or "").strip()
    if not text:
        return None

    attempts = ((json.loads, text), (json.loads, _repair(text)), (ast.literal_eval, text))
    for parse, candidate in attempts:
        try:
            value = parse(candidate)
        except (ValueError, SyntaxError, MemoryError, RecursionError):
            continue
        if isinstance(value, (dict, list, tuple, set)):
            return _plain(value)
    return None


def _find_balanced(content: str) -> str | None:
    start = content.find("{")
    if start == -1:
        start = content.find("[")
    if start == -1:
        return None

    opening = content[start]
    closing = "}" if opening == "{" else "]"
    depth = 0
    for i in range(start, len(content)):
        if content[i] == opening:
            depth += 1
        elif content[i] == closing:
            depth -= 1
            if depth == 0:
                return content[start : i + 1]
    return content[start:]


def extract_json_object(content: str) -> dict[str, Any]:
    """
    Pull the first JSON object out of free text.

    A top-level array is wrapped as ``{"items": [...]}``.

    Returns:
        Parsed dict, or an empty dict when nothing parses.
    """
    content = (content or "").strip()
    block = _find_balanced(content)
    if block is None:
        logger.debug(f"No JSON found in model output: {content[:200]}")
        return {}

    parsed = parse_json_loose(block)
    if isinstance(parsed, dict):
        return parsed
    if isinstance(parsed, list):
        return {"items": parsed}
    logger.debug(f"Unparseable JSON block in model output: {block[:200]}")
    return {}
