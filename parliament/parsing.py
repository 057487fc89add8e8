"""Forgiving JSON extraction for model output."""

import json
import re
from typing import Any, Dict, List, Optional

_CODE_FENCE = re.compile(r"```(?:json|JSON)?\s*([\s\S]*?)```")
_TRAILING_COMMA = re.compile(r",(\s*[}\]])")


def strip_code_fence(text: str) -> str:
    if not text:
        return ""
    match = _CODE_FENCE.search(text)
    if match:
        return match.group(1).strip()
    return text.strip()


def strip_trailing_commas(text: str) -> str:
    return _TRAILING_COMMA.sub(r"\1", text)


def outermost_object_span(text: str) -> Optional[str]:
    start = text.find("{")
    if start == -1:
        return None
    end = text.rfind("}")
    if end <= start:
        return None
    return text[start:end + 1]


def parse_json_object(text: str) -> Optional[Dict[str, Any]]:
    """
    Parse a single top-level JSON object out of model text.

    Tries, in order: the raw text, the text with markdown fences removed,
    the outermost {...} span, and each of those with trailing commas
    stripped. Returns None when nothing parses to a dict.
    """
    if not text or not isinstance(text, str):
        return None

    candidates: List[str] = [text.strip()]
    unfenced = strip_code_fence(text)
    if unfenced not in candidates:
        candidates.append(unfenced)
    span = outermost_object_span(unfenced)
    if span and span not in candidates:
        candidates.append(span)

    for candidate in list(candidates):
        repaired = strip_trailing_commas(candidate)
        if repaired not in candidates:
            candidates.append(repaired)

    for candidate in candidates:
        try:
            data = json.loads(candidate)
        except json.JSONDecodeError:
            continue
        if isinstance(data, dict):
            return data
    return None


def clean_string_list(value: Any, limit: Optional[int] = None) -> List[str]:
    if not isinstance(value, list):
        return []
    items = [str(item).strip() for item in value if item is not None]
    items = [item for item in items if item]
    if limit is not None:
        items = items[:limit]
    return items


def clean_text(value: Any) -> str:
    if value is None:
        return ""
    text = str(value).strip()
    if text.lower() == "null":
        return ""
    return text
