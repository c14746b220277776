from __future__ import annotations


class AgentError(Exception):
    """Base exception for the watch agent."""


class ValidationError(AgentError):
    """Raised when an externally sourced transaction batch is malformed."""


class ExecutionError(AgentError):
    """Raised when one step of a transaction batch fails.

    Steps before ``step`` were already broadcast and are not rolled back;
    their hashes are kept in ``completed`` so callers can decide whether to
    retry only the remainder.
    """

    def __init__(
        self,
        action: str,
        step: int,
        total_steps: int,
        reason: str,
        completed: list[str] | None = None,
    ) -> None:
        self.action = action
        self.step = step
        self.total_steps = total_steps
        self.reason = reason
        self.completed = list(completed or [])
        super().__init__(f"{action}: step {step}/{total_steps} failed: {reason}")


class UpstreamApiError(AgentError):
    """Raised when the marketplace or price feed fails or returns junk."""


class PersistenceError(AgentError):
    """Raised when the watch-request store cannot be read or written."""


class NotificationError(AgentError):
    """Raised when an alert channel refuses or keeps rate limiting a message."""
