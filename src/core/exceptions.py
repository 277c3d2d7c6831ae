from typing import Optional


class OneDriveError(Exception):
    """Base exception for all OneDrive client errors."""
    pass


class InvalidArgumentError(OneDriveError, ValueError):
    """Raised when a caller passes an argument the API cannot accept."""
    pass


class TransportError(OneDriveError):
    """Raised when the HTTP transport fails to deliver a request."""
    pass


class ApiError(TransportError):
    """Raised when the API answers with a non-2xx status."""

    def __init__(self, message: str, status_code: Optional[int] = None, body: Optional[str] = None):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class IOFailureError(OneDriveError, IOError):
    """Raised when writing downloaded content to its destination fails."""
    pass


class DecodeError(OneDriveError):
    """Raised when a response body is not valid JSON."""
    pass


class ConfigurationError(OneDriveError):
    """Raised when the environment does not provide a usable client configuration."""
    pass
