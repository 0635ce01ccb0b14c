"""
Centralized exception definitions for the backend application.
"""

class AppError(Exception):
    """Base class for application errors."""
    def __init__(self, message: str, status_code: int = 500, detail: str = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.detail = detail or message

class NotFoundError(AppError):
    """Raised when a resource is not found."""
    def __init__(self, message: str = "Resource not found"):
        super().__init__(message, status_code=404)

class ValidationError(AppError):
    """Raised when input validation fails."""
    def __init__(self, message: str = "Invalid input"):
        super().__init__(message, status_code=400)

class ConflictError(AppError):
    """Raised when there is a resource conflict."""
    def __init__(self, message: str = "Resource conflict"):
        super().__init__(message, status_code=409)

class InvalidTransitionError(ConflictError):
    """Raised when an export job is moved to a state it cannot reach."""
    def __init__(self, message: str = "Invalid status transition"):
        super().__init__(message)


# --- Export job errors ---
# Job-scoped: they end up on ExportJob.last_error and never stop the queue.

class ExportError(AppError):
    """Base class for errors scoped to a single export job."""
    def __init__(self, message: str = "Export failed", status_code: int = 422):
        super().__init__(message, status_code=status_code)

class SourceUnavailable(ExportError):
    """The transcoder could not obtain or prepare the source."""
    def __init__(self, message: str = "Failed to create export session."):
        super().__init__(message)

class TranscodeFailed(ExportError):
    """The transcoder ran and failed, or its output could not be confirmed."""
    def __init__(self, message: str = "Failed to export."):
        super().__init__(message)

class DestinationUnallocatable(ExportError):
    """No writable destination path could be created."""
    def __init__(self, message: str = "Could not allocate a destination path"):
        super().__init__(message, status_code=507)

class ExportCancelled(ExportError):
    """A cooperative cancellation was honored."""
    def __init__(self, message: str = "Export cancelled"):
        super().__init__(message, status_code=409)
