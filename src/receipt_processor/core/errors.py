from __future__ import annotations

import enum


class FailureKind(str, enum.Enum):
    VALIDATION = "validation"
    RATE_LIMIT = "rate_limit"
    EXTRACTION = "extraction"
    CONFIGURATION = "configuration"
    TIMEOUT = "timeout"
    UPSTREAM = "upstream"
    FILESYSTEM = "filesystem"
    STORE = "store"

    @property
    def retriable(self) -> bool:
        # Only a rate limit is worth another attempt later.
        return self is FailureKind.RATE_LIMIT


class PipelineError(RuntimeError):
    kind: FailureKind = FailureKind.UPSTREAM

    def __init__(self, message: str, *, kind: FailureKind | None = None) -> None:
        super().__init__(message)
        if kind is not None:
            self.kind = kind


class RecordValidationError(PipelineError):
    kind = FailureKind.VALIDATION


class FileSystemError(PipelineError):
    kind = FailureKind.FILESYSTEM


class StoreError(PipelineError):
    kind = FailureKind.STORE


class IllegalTransitionError(StoreError):
    pass
