"""Hard failures raised by the contract pipeline."""

from __future__ import annotations

from dataclasses import dataclass

DESCRIPTOR_NOT_FOUND = "DESCRIPTOR_NOT_FOUND"
DESCRIPTOR_FETCH_FAILED = "DESCRIPTOR_FETCH_FAILED"
SYNC_WRITE_FAILED = "SYNC_WRITE_FAILED"
SYNC_PATH_INVALID = "SYNC_PATH_INVALID"


@dataclass
class PipelineError(Exception):
    code: str
    message: str
    operation: str
    cause: BaseException | None = None

    def __str__(self) -> str:
        if self.cause is not None:
            return f"{self.operation} failed: {self.message} ({type(self.cause).__name__}: {self.cause})"
        return f"{self.operation} failed: {self.message}"


def describe_error(exc: BaseException, operation: str | None = None) -> dict:
    """Failure result naming the operation and the underlying cause."""
    if isinstance(exc, PipelineError):
        cause = exc.cause
        return {
            "code": exc.code,
            "operation": operation or exc.operation,
            "message": exc.message,
            "cause": f"{type(cause).__name__}: {cause}" if cause is not None else None,
            "text": str(exc),
        }
    op = operation or "unknown"
    return {
        "code": "INTERNAL_ERROR",
        "operation": op,
        "message": str(exc) or type(exc).__name__,
        "cause": type(exc).__name__,
        "text": f"{op} failed: {exc}",
    }
