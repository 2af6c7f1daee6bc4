"""Text helpers for model output and rendered summaries."""

import json
import re
from typing import Any

# ```json ... ``` (language tag optional), possibly surrounded by prose
_FENCED_BLOCK = re.compile(r"```[a-zA-Z]*\s*\n?([\s\S]*?)\n?\s*```")


def strip_markdown_json(text: str) -> str:
    """
    Return the JSON payload of a model reply.

    Models often wrap JSON in a fenced code block, sometimes with a sentence
    before or after it. The first fenced block wins; unfenced text is
    returned trimmed.
    """
    text = text.strip()
    fenced = _FENCED_BLOCK.search(text)
    if fenced:
        return fenced.group(1).strip()
    # An opening fence that was never closed (truncated reply)
    if text.startswith("```"):
        return text.split("\n", 1)[1].strip() if "\n" in text else text[3:].strip()
    return text


def loads_markdown_json(text: str) -> Any:
    """json.loads for fenced model output; raises json.JSONDecodeError."""
    return json.loads(strip_markdown_json(text))


def collapse_whitespace(text: str) -> str:
    """Collapse runs of whitespace (including newlines) into single spaces."""
    return " ".join(text.split())
