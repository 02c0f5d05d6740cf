"""
Defines custom exceptions used throughout the application.

These exceptions allow for more specific error handling than built-in exceptions.
"""

class QueueError(Exception):
    """Base class for errors raised by the download queue."""
    pass

class ValidationError(QueueError):
    """Raised when a required job field is missing from the submitted form."""
    def __init__(self, field: str, message: str = ""):
        self.field = field
        super().__init__(message or f"'{field}' is required.")

class DuplicateJobError(QueueError):
    """Raised when a URL is already waiting in the queue."""
    def __init__(self, url: str):
        self.url = url
        super().__init__(f"This URL is already in the queue: {url}")

class IndexOutOfRangeError(QueueError, IndexError):
    """Raised when a queue index does not point at a queued job."""
    pass

class EmptyQueueError(QueueError):
    """Raised when dequeuing from an empty queue."""
    pass

class WorkerStartError(QueueError):
    """Raised when the worker could not be launched for a job."""
    pass

class DownloadCancelledError(Exception):
    """Custom exception for cancelled downloads."""
    pass

class URLExtractionError(Exception):
    """Custom exception for URL processing failures."""
    pass
