# =============================================================================
# Pipeline Errors
# =============================================================================
#
# Failure taxonomy for one advisory run:
#
#   AdvisorError
#   ├── DataAccessError      — snapshot fetch failed (fatal, user-visible)
#   ├── ClassificationError  — classifier output unusable (fatal, user-visible)
#   ├── ExpertOutputError    — one expert's output unusable (always absorbed)
#   ├── StreamError          — synthesis stream broke mid-flight (fatal)
#   └── ClientGoneError      — the caller disconnected (control signal only)
#
# Request-body validation failures never reach the pipeline; the API layer
# rejects them with HTTP 400 before a stream is opened.
# =============================================================================

from __future__ import annotations


class AdvisorError(Exception):
    """Base class for every error raised by the advisory pipeline."""

    # Whether the message may be shown to the end user in an error event
    user_visible: bool = True


class DataAccessError(AdvisorError):
    """The snapshot provider could not load the account's records."""


class ClassificationError(AdvisorError):
    """The classifier returned something that is not a valid Classification."""


class ExpertOutputError(AdvisorError):
    """An expert returned output that does not match its declared schema."""

    user_visible = False

    def __init__(self, expert_id: str, reason: str) -> None:
        super().__init__(f"{expert_id}: {reason}")
        self.expert_id = expert_id
        self.reason = reason


class StreamError(AdvisorError):
    """The final answer stream failed after it started."""


class ClientGoneError(AdvisorError):
    """The client closed the connection. Stops work without an error event."""

    user_visible = False
