"""Exceptions raised by the coaching services.

Routers translate these into HTTP responses; services never catch their own
invariant violations.
"""


class CoachingError(Exception):
    """Base class for coaching service errors."""


class SessionNotFoundError(CoachingError):
    """The session id does not exist (never created, or deleted concurrently).

    Callers should restart the session rather than retry.
    """

    def __init__(self, session_id: str) -> None:
        super().__init__(f"Session {session_id} not found")
        self.session_id = session_id


class ActionItemNotFoundError(CoachingError):
    """No action item with this id."""

    def __init__(self, item_id: str) -> None:
        super().__init__(f"Action item {item_id} not found")
        self.item_id = item_id


class InvalidTransitionError(CoachingError):
    """A stage transition was requested before it is allowed."""


class AlreadyCompleteError(CoachingError):
    """The session has finished all five stages."""

    def __init__(self, session_id: str) -> None:
        super().__init__(f"Session {session_id} is already complete")
        self.session_id = session_id


class TurnInProgressError(CoachingError):
    """A turn is already awaiting a coach reply for this session."""


class InitializationError(CoachingError):
    """Starting a session failed; nothing usable was created and start can be retried."""


class ModelUnavailableError(CoachingError):
    """The model-call service failed to produce usable text. User-retryable."""

    reason = "unavailable"


class ModelTransportError(ModelUnavailableError):
    """Network, HTTP status, timeout or rate-limit failure."""

    reason = "transport"


class ContentBlockedError(ModelUnavailableError):
    """The provider refused to answer for content-safety reasons."""

    reason = "blocked"


class ResponseTruncatedError(ModelUnavailableError):
    """The token limit was hit before any usable text was produced."""

    reason = "truncated"


class EmptyResponseError(ModelUnavailableError):
    """The provider returned no text."""

    reason = "empty"


class StoreUnavailableError(CoachingError):
    """The database could not be read or written. User-retryable."""
