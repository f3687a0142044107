# truthstake/json_repair.py
"""
Progressive repair of model output that should have been plain JSON.

Stages, each tried only if the previous text still fails to parse:

1. strip ``` / ```json code fences
2. curly quotes -> ASCII quotes
3. drop trailing commas before } or ]
4. cut out the longest balanced {...} / [...] span and re-apply 2 and 3
"""
import json
import logging
import re
from typing import Any, Optional

logger = logging.getLogger(__name__)

_FENCE_RE = re.compile(r"^\s*```[a-zA-Z]*\s*|\s*```\s*$")
_TRAILING_COMMA_RE = re.compile(r",\s*([}\]])")
_DOUBLE_QUOTES = "“”„‟″‶"
_SINGLE_QUOTES = "‘’"
_QUOTE_TABLE = str.maketrans({**{c: '"' for c in _DOUBLE_QUOTES}, **{c: "'" for c in _SINGLE_QUOTES}})
_PAIRS = {"}": "{", "]": "["}


def try_parse(text: str) -> Optional[Any]:
    """json.loads, but only objects and arrays count as structured data."""
    try:
        parsed = json.loads(text)
    except (ValueError, TypeError):
        return None
    return parsed if isinstance(parsed, (dict, list)) else None


def strip_code_fences(text: str) -> str:
    return _FENCE_RE.sub("", str(text)).strip()


def normalize_quotes(text: str) -> str:
    return text.translate(_QUOTE_TABLE)


def trim_trailing_commas(text: str) -> str:
    return _TRAILING_COMMA_RE.sub(r"\1", text)


def largest_json_block(text: str) -> str:
    """Longest span whose brackets balance, ignoring brackets inside strings."""
    best = ""
    stack = []
    in_string = False
    escaped = False
    for i, ch in enumerate(text):
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
        elif ch in "{[":
            stack.append((ch, i))
        elif ch in "}]":
            if not stack or stack[-1][0] != _PAIRS[ch]:
                # unbalanced, start over from here
                stack = []
                continue
            _, start = stack.pop()
            if i + 1 - start > len(best):
                best = text[start:i + 1]
    return best


def repair_json(raw: str) -> Optional[Any]:
    if not raw:
        return None

    text = strip_code_fences(raw)
    parsed = try_parse(text)
    if parsed is not None:
        return parsed

    text = normalize_quotes(text)
    parsed = try_parse(text)
    if parsed is not None:
        logger.debug("JSON repaired after quote normalization")
        return parsed

    text = trim_trailing_commas(text)
    parsed = try_parse(text)
    if parsed is not None:
        logger.debug("JSON repaired after trailing-comma removal")
        return parsed

    block = largest_json_block(text)
    if block and block != text:
        parsed = try_parse(trim_trailing_commas(normalize_quotes(block)))
        if parsed is not None:
            logger.debug("JSON repaired from largest balanced block")
            return parsed

    logger.debug(f"JSON repair failed for response: {str(raw)[:200]}")
    return None
