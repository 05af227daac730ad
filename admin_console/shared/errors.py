"""
MODULE OVERVIEW:
The error taxonomy of the network core.

WHAT IS HAPPENING HERE:
Callers only ever need to tell four situations apart: the server answered with an error
(ApiError), the server could not be reached (NetworkError), the session is gone for good
(SessionExpiredError), or the live stream dropped (StreamError). Everything else is an
implementation detail of httpx or websockets and is translated at the boundary.
"""
from typing import Any


class ApiError(Exception):
    """Raised when a request completes with a non-2xx status."""

    def __init__(self, message: str, status: int | None = None, payload: Any = None):
        super().__init__(message)
        self.message = message
        self.status = status
        self.payload = payload


class NetworkError(ApiError):
    """Raised when the request never got a response."""

    def __init__(self, message: str = "Cannot reach API server. Is backend running?"):
        super().__init__(message)


class SessionExpiredError(ApiError):
    """Raised after a terminal auth failure; the credential has already been cleared."""

    def __init__(self, message: str = "Session expired. Please sign in again."):
        super().__init__(message, status=401)


class AuthError(Exception):
    """Raised when a login attempt is rejected."""


class StreamError(Exception):
    """Raised when the event stream closes or fails."""


class StreamAuthError(StreamError):
    """Raised when the event stream endpoint rejects the credential."""
