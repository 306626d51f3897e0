"""Errors raised by services and collaborators; the API maps them to status codes."""


class AppError(Exception):
    """Root of every error the platform raises on purpose."""

    def __init__(self, message: str, original_error: Exception = None):
        super().__init__(message)
        self.message = message
        self.original_error = original_error


class ValidationError(AppError):
    """Bad caller input: names, rules, graphs, retrieval parameters."""
    pass


class NotFoundError(AppError):
    """Raised when a document, dataset, workflow or sub-workflow is missing."""
    pass


class ForbiddenError(AppError):
    """Raised when a resource belongs to another account."""
    pass


class ConflictError(AppError):
    """Raised when a uniqueness rule (e.g. tool_call_name) would be broken."""
    pass


class DatabaseError(AppError):
    pass


class APIClientError(AppError):
    """An upstream service (LLM gateway, code runner, remote HTTP) answered with an error."""
    pass


class APITimeoutError(APIClientError):
    pass


class LockError(AppError):
    """Raised when a distributed lock cannot be acquired in time."""
    pass


class IndexingError(AppError):
    """Raised inside the indexing pipeline when a stage fails."""
    pass
