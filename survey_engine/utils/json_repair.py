"""
Cleanup of JSON objects emitted by language models.

Extraction prompts ask for a single JSON object. Models wrap it in
markdown fences, add chatter before or after it, or stop before the final
closing brace. Only dict output is supported.
"""

import json
import logging
import re
from typing import Any, Dict

logger = logging.getLogger(__name__)

FENCE_PATTERN = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)


def _strip_fences(text: str) -> str:
    return FENCE_PATTERN.sub("", text.strip()).strip()


def _brace_depths(text: str):
    """Yield (index, depth after char) for braces outside string literals"""
    depth = 0
    in_string = False
    escaped = False
    for i, char in enumerate(text):
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue
        if char == '"':
            in_string = True
        elif char == "{":
            depth += 1
            yield i, depth
        elif char == "}":
            depth -= 1
            yield i, depth


def repair_json(text: str) -> str:
    """
    Cut the first JSON object out of model output and balance its braces.

    Args:
        text: Raw LLM output

    Returns:
        str: Cleaned JSON string (may still fail to parse)
    """
    text = _strip_fences(text)
    start = text.find("{")
    if start == -1:
        logger.warning("No JSON object found in model output")
        return text

    text = text[start:]
    end = None
    depth = 0
    for index, depth in _brace_depths(text):
        if depth == 0:
            end = index
            break

    if end is not None:
        # Drop trailing chatter and surplus closing braces
        return text[:end + 1]

    text = text.rstrip().rstrip(",")
    if depth > 0:
        logger.debug(f"Closing {depth} unbalanced brace(s) in truncated output")
        text += "}" * depth
    return text


def parse_json_object(text: str) -> Dict[str, Any]:
    """
    Repair and parse a JSON object.

    Raises:
        ValueError: If the text is not a JSON object after repair
    """
    repaired = repair_json(text)
    try:
        data = json.loads(repaired)
    except json.JSONDecodeError as e:
        raise ValueError(f"Invalid JSON after repair: {e}") from e
    if not isinstance(data, dict):
        raise ValueError(f"Expected JSON object, got {type(data).__name__}")
    return data
