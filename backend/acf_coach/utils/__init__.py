"""Utility modules."""

from acf_coach.utils.text import (
    strip_markdown_json,
    loads_markdown_json,
    collapse_whitespace,
)
from acf_coach.utils.priority import (
    to_text,
    to_stored,
    normalize_status,
    completion_changes,
)

__all__ = [
    "strip_markdown_json",
    "loads_markdown_json",
    "collapse_whitespace",
    "to_text",
    "to_stored",
    "normalize_status",
    "completion_changes",
]
