"""
Exception types raised by the printflow engine.

Only the workflow state machine and the repository raise during normal
operation; scoring functions degrade to defaults instead.
"""


class PrintflowError(Exception):
    """Base exception for all printflow errors."""
    error_code = "printflow_error"

    def __init__(self, message: str, error_code: str | None = None):
        self.message = message
        if error_code:
            self.error_code = error_code
        super().__init__(self.message)


class InvalidTransition(PrintflowError):
    """Raised when a stage or substage move is not allowed for the line."""
    error_code = "invalid_transition"


class InsufficientData(PrintflowError):
    """Raised when strict baseline access finds too few samples."""
    error_code = "insufficient_data"


class ConcurrentUpdate(PrintflowError):
    """Raised when another writer committed the line after it was read."""
    error_code = "concurrent_update"


class LineNotFound(PrintflowError):
    """Raised when a repository lookup misses."""
    error_code = "line_not_found"
