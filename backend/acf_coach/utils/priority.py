"""Priority and status normalization between the API and the store.

The API and the coaching flow speak in textual priority bands
(``low`` / ``medium`` / ``high``); the ``action_items`` table stores an
integer. Statuses have no numeric encoding.
"""

from datetime import datetime
from typing import Any, Literal

PriorityText = Literal["low", "medium", "high"]
Status = Literal["pending", "in_progress", "completed", "blocked"]

PRIORITY_BANDS: tuple[str, ...] = ("low", "medium", "high")
STATUSES: tuple[str, ...] = ("pending", "in_progress", "completed", "blocked")

DEFAULT_PRIORITY: PriorityText = "medium"

_STORED_PRIORITY: dict[str, int] = {
    "high": 5,
    "medium": 3,
    "low": 1,
}


def _band_for_number(value: float) -> PriorityText:
    if value >= 4:
        return "high"
    if value >= 2:
        return "medium"
    return "low"


def to_text(stored: Any) -> PriorityText:
    """
    Convert a stored (or user-supplied) priority to its textual band.

    - Textual bands pass through (case-insensitive).
    - Integers and numeric strings: >= 4 is high, >= 2 is medium, else low.
      Out-of-range values clamp into the nearest band.
    - Anything else (None, unknown words) coerces to medium.
    """
    if isinstance(stored, bool) or stored is None:
        return DEFAULT_PRIORITY

    if isinstance(stored, (int, float)):
        return _band_for_number(stored)

    if isinstance(stored, str):
        value = stored.strip().lower()
        if value in PRIORITY_BANDS:
            return value  # type: ignore[return-value]
        try:
            return _band_for_number(float(value))
        except ValueError:
            return DEFAULT_PRIORITY

    return DEFAULT_PRIORITY


def to_stored(priority: Any) -> int:
    """Convert a priority band (or any value to_text accepts) to the stored integer."""
    return _STORED_PRIORITY[to_text(priority)]


def normalize_status(value: str) -> Status:
    """Validate a status value; raises ValueError for anything unknown."""
    status = value.strip().lower() if isinstance(value, str) else value
    if status not in STATUSES:
        raise ValueError(f"Invalid status {value!r}; expected one of {', '.join(STATUSES)}")
    return status  # type: ignore[return-value]


def completion_changes(
    status: str,
    previous_status: str | None = None,
    completed_at: datetime | None = None,
) -> dict[str, Any]:
    """
    Extra column changes implied by a status update.

    Moving to ``completed`` records a completion timestamp whether or not
    notes were supplied; moving away from ``completed`` clears it.
    """
    status = normalize_status(status)
    if status == "completed":
        if previous_status == "completed" and completed_at is None:
            return {}
        return {"completed_at": completed_at or datetime.utcnow()}
    if previous_status == "completed":
        return {"completed_at": None}
    return {}
