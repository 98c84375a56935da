"""Domain error kinds for the weighing core."""

from __future__ import annotations

from enum import Enum
from typing import Any


class ErrorKind(Enum):
    """Machine-checkable error kinds."""

    VALIDATION = "validation"
    CONFLICT = "conflict"
    NOT_FOUND = "not_found"
    TRANSIENT_INGESTION = "transient_ingestion"
    TRANSPORT = "transport"


class DomainError(Exception):
    """Base domain error with kind, user-safe message and resolution context."""

    kind: ErrorKind = ErrorKind.VALIDATION

    def __init__(self, message: str, **context: Any) -> None:
        super().__init__(message)
        self.message = message
        self.context = context

    def __str__(self) -> str:
        return f"{self.kind.value}: {self.message}"


class ValidationError(DomainError):
    """Malformed or out-of-range input. Never retried."""

    kind = ErrorKind.VALIDATION


class ConflictError(DomainError):
    """Session-state or uniqueness violation."""

    kind = ErrorKind.CONFLICT


class NotFoundError(DomainError):
    """Unknown session, entry or batch."""

    kind = ErrorKind.NOT_FOUND


class TransientIngestionError(DomainError):
    """Malformed telemetry payload; logged and dropped by the pipeline."""

    kind = ErrorKind.TRANSIENT_INGESTION


class TransportError(DomainError):
    """Connection to the pub/sub broker was lost."""

    kind = ErrorKind.TRANSPORT
