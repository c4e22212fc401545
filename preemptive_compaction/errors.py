"""Exceptions raised by the compaction scheduler."""


class CompactionError(Exception):
    """Base class for all compaction scheduler errors."""


class InvalidStateError(CompactionError):
    """
    Exception raised when a compaction transition is requested from the wrong state.

    Double-starting a compaction, or completing/failing one that was never
    started, is a bug in the caller and is never silently ignored.
    """

    def __init__(self, reason: str | None = None, session_id: str | None = None):
        self.reason = reason
        self.session_id = session_id
        message = reason or "Invalid compaction state transition"
        if session_id:
            message += f" (session_id: {session_id})"
        super().__init__(message)


class ConfigurationError(CompactionError):
    """
    Exception raised for out-of-range thresholds, negative cooldowns,
    or malformed usage samples.
    """


class CompactionTimeoutError(CompactionError):
    """
    Exception raised when the executor does not confirm a compaction in time.
    """

    def __init__(self, session_id: str | None = None, timeout_seconds: float | None = None):
        self.session_id = session_id
        self.timeout_seconds = timeout_seconds
        message = f"Compaction timed out after {timeout_seconds} seconds"
        if session_id:
            message += f" (session_id: {session_id})"
        super().__init__(message)
