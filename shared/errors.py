from __future__ import annotations
from typing import Any, Optional


class ApiError(Exception):
    """
    Error surfaced to a session's ``on_error`` callback.

    Carries a human readable ``message`` and a numeric ``status``. For socket
    failures the status is the close code (e.g. 1006); for HTTP failures it is
    the response status code.
    """

    def __init__(self, message: str, status: int, body: Optional[Any] = None) -> None:
        super().__init__(message)
        self.message = message
        self.status = status
        self.body = body

    def to_dict(self) -> dict:
        result = {"status": self.status, "message": self.message}
        if self.body is not None:
            result["body"] = self.body
        return result

    def __repr__(self) -> str:
        return f"{type(self).__name__}(message={self.message!r}, status={self.status})"


class AuthError(ApiError):
    """Raised when the token-issuing call fails."""
    pass


class ConnectionFailedError(ApiError):
    """Raised when a socket fails to open, errors, or closes abnormally."""
    pass


class ProtocolError(ApiError):
    """Raised when an inbound frame is not a well-formed JSON object."""
    pass
