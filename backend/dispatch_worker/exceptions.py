class DispatchWorkerError(RuntimeError):
    """Base exception for dispatch worker failures."""


class ConfigError(DispatchWorkerError):
    """Raised when required configuration or credentials are missing."""


class FeedError(DispatchWorkerError):
    """Raised when the upstream call feed returns an error or a malformed page."""


class AuthenticationError(FeedError):
    """Raised when the feed credentials are rejected."""


class WorkerStateError(DispatchWorkerError):
    """Raised when the persisted cursor cannot be read."""


class TranscriptionError(DispatchWorkerError):
    """Raised when the transcription provider fails for one call."""


class ExtractionError(DispatchWorkerError):
    """Raised when the generative provider returns an unusable response."""
