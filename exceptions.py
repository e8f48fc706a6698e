"""
Custom exception classes for the chatstream client core.
"""


class ChatStreamError(Exception):
    """Base exception class for chatstream errors."""
    pass


class TransportError(ChatStreamError):
    """Exception raised when the response stream cannot be opened or drops."""
    pass


class HttpStatusError(TransportError):
    """Exception raised for a non-retryable HTTP status on the chat endpoint."""

    def __init__(self, status_code: int, url: str, body_snippet: str = None):
        message = f"HTTP {status_code} for POST {url}"
        if body_snippet:
            message += f" (body: {body_snippet})"
        super().__init__(message)
        self.status_code = status_code
        self.url = url


class ConfigValidationError(ChatStreamError):
    """Exception raised when client configuration is missing or invalid."""
    pass


class UnknownAppError(ChatStreamError, ValueError):
    """Exception raised when an app id outside the known app table is supplied."""
    pass


class TaskNotFoundError(ChatStreamError, KeyError):
    """Exception raised by explicit task lookups for an unknown task id."""
    pass
