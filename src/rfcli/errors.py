from __future__ import annotations

from enum import StrEnum


class ErrorCode(StrEnum):
    VALIDATION_ERROR = "VALIDATION_ERROR"
    RFC_NOT_FOUND = "RFC_NOT_FOUND"
    CACHE_IO_ERROR = "CACHE_IO_ERROR"
    FETCH_FAILED = "FETCH_FAILED"
    DERIVE_FAILED = "DERIVE_FAILED"
    TIMEOUT = "TIMEOUT"
    CANCELLED = "CANCELLED"


class RfcliError(Exception):
    """Raised for all expected failure conditions.

    Front-ends (CLI, MCP server) catch this and render it; business logic
    lets it propagate. A cache miss is never an error; lookups return None.
    ``recoverable`` marks transient conditions the Summary Service may retry.
    """

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        suggestion: str,
        recoverable: bool = False,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.suggestion = suggestion
        self.recoverable = recoverable

    def to_dict(self) -> dict:
        return {
            "error": {
                "code": self.code,
                "message": self.message,
                "suggestion": self.suggestion,
                "recoverable": self.recoverable,
            }
        }
