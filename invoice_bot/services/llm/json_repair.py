"""Best-effort recovery of a JSON object from model output.

Models wrap JSON in markdown fences, leave trailing commas, or stop mid-object
when they hit the token limit. Each strategy is tried in order and the first
one that parses wins.
"""

import json
import re
from typing import Callable

from invoice_bot.logging_config import get_logger

logger = get_logger("llm.json_repair")

_FENCE_RE = re.compile(r"```(?:json)?\s*", re.IGNORECASE)
_OBJECT_RE = re.compile(r"\{[\s\S]*\}")
_TRAILING_COMMA_RE = re.compile(r",(\s*[}\]])")


class JSONRepairError(ValueError):
    pass


def extract_json_text(generated: str) -> str:
    """Cut the JSON object out of surrounding prose and code fences."""
    cleaned = _FENCE_RE.sub("", generated or "").strip()
    match = _OBJECT_RE.search(cleaned)
    if match:
        return match.group(0)
    start = cleaned.find("{")
    if start == -1:
        raise JSONRepairError("No JSON object in model output")
    return cleaned[start:]


def remove_trailing_commas(text: str) -> str:
    return _TRAILING_COMMA_RE.sub(r"\1", text)


def close_truncated(text: str) -> str:
    """Terminate an open string and close every open object/array, innermost first."""
    stack: list[str] = []
    in_string = False
    escaped = False
    for char in text:
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
        elif char in "{[":
            stack.append("}" if char == "{" else "]")
        elif char in "}]" and stack:
            stack.pop()

    fixed = text
    if in_string:
        if escaped:
            fixed = fixed[:-1]
        fixed += '"'

    fixed = fixed.rstrip()
    if fixed.endswith(","):
        fixed = fixed[:-1]
    elif fixed.endswith(":"):
        fixed += " null"

    return fixed + "".join(reversed(stack))


def _strategies(text: str) -> list[tuple[str, Callable[[], object]]]:
    return [
        ("as_is", lambda: json.loads(text)),
        ("trailing_commas", lambda: json.loads(remove_trailing_commas(text))),
        ("close_truncated", lambda: json.loads(close_truncated(text))),
        ("combined", lambda: json.loads(remove_trailing_commas(close_truncated(remove_trailing_commas(text))))),
    ]


def parse_model_json(generated: str) -> dict:
    """Parse the invoice object out of raw model text. Raises JSONRepairError."""
    json_text = extract_json_text(generated)

    last_error = None
    for name, strategy in _strategies(json_text):
        try:
            parsed = strategy()
        except ValueError as e:
            last_error = e
            continue
        if not isinstance(parsed, dict):
            raise JSONRepairError("Model output is not a JSON object")
        if name != "as_is":
            logger.info(f"Model JSON recovered with strategy {name}")
        return parsed

    logger.error(
        "Failed to parse model JSON",
        extra={"context": {"error": str(last_error), "preview": json_text[:500]}},
    )
    raise JSONRepairError(f"Failed to parse JSON: {last_error}")
