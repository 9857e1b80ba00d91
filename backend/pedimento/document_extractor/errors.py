"""Exceptions raised by the extraction stages."""


class TranscriptionError(Exception):
    """The transcription collaborator failed for a chunk. Not retried."""


class TranscriptionRateLimited(TranscriptionError):
    """The collaborator asked us to slow down. The only retryable failure."""

    def __init__(self, message: str = "rate limited", retry_after: float | None = None):
        super().__init__(message)
        self.retry_after = retry_after


class RetryExhausted(Exception):
    """Bounded retry gave up. The last error is chained as ``__cause__``."""

    def __init__(self, attempts: int, message: str = ""):
        super().__init__(message or f"gave up after {attempts} attempts")
        self.attempts = attempts
