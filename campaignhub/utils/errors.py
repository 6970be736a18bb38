"""
Error taxonomy for the ingestion and campaign pipeline.

Synchronous, API-facing operations raise these and the routers translate
them into HTTP responses. Background loops catch and log them.
"""


class PipelineError(Exception):
    """Base class for every error raised by the pipeline."""
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(PipelineError):
    """Malformed or missing input. Raised before any queue or state mutation."""
    status_code = 400


class NotFoundError(PipelineError):
    """A referenced segment or campaign does not exist."""
    status_code = 404


class ConflictError(PipelineError):
    """Duplicate external id on a direct creation path."""
    status_code = 409


class TransientIOError(PipelineError):
    """Stream, store or network hiccup. Safe to retry."""
    status_code = 503


class PermanentProcessingError(PipelineError):
    """A queued message can never be processed as-is (bad payload, broken invariant)."""
    status_code = 422
