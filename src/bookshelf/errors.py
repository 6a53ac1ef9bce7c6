from __future__ import annotations

from enum import StrEnum


class ErrorCode(StrEnum):
    TIMEOUT = "TIMEOUT"
    CANCELLED = "CANCELLED"
    UPSTREAM_HTTP_ERROR = "UPSTREAM_HTTP_ERROR"
    NETWORK_ERROR = "NETWORK_ERROR"
    NO_READABLE_FORMAT = "NO_READABLE_FORMAT"
    INVALID_INPUT = "INVALID_INPUT"
    BOOK_NOT_FOUND = "BOOK_NOT_FOUND"
    URL_NOT_ALLOWED = "URL_NOT_ALLOWED"


class BookshelfError(Exception):
    """Raised for all expected failure conditions.

    Caught by server.py and serialised into the HTTP error response.
    Never catch this inside business logic; let it propagate to the
    HTTP layer so the client receives a structured error with a suggestion.

    ``status_code`` carries the upstream HTTP status for
    ``UPSTREAM_HTTP_ERROR`` and is ``None`` otherwise.
    """

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        suggestion: str,
        recoverable: bool = False,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.suggestion = suggestion
        self.recoverable = recoverable
        self.status_code = status_code

    def to_dict(self) -> dict:
        return {
            "error": {
                "code": self.code,
                "message": self.message,
                "suggestion": self.suggestion,
                "recoverable": self.recoverable,
            }
        }
