"""
Error taxonomy for the approval engine.

This module provides a hierarchical exception system with:
- Error codes for programmatic handling
- Retryable vs non-retryable classification
- Structured context for debugging
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorCode(str, Enum):
    """Standardized error codes for the approval engine."""

    # Request errors (1xxx)
    VALIDATION_FAILURE = "WF_1000"

    # Log write errors (2xxx)
    APPEND_FAILURE = "WF_2000"

    # Delivery errors (3xxx)
    DELIVERY_ERROR = "WF_3000"
    DECODE_ERROR = "WF_3001"
    HANDLER_FAILURE = "WF_3002"

    # Background maintenance errors (4xxx)
    RECOVERY_ERROR = "WF_4000"
    RECONSTRUCTION_DEGRADED = "WF_4001"

    # Configuration errors (6xxx)
    CONFIG_ERROR = "WF_6000"

    # Internal errors (9xxx)
    INTERNAL_ERROR = "WF_9000"


@dataclass
class ErrorContext:
    """Structured context for error debugging."""

    event_id: str | None = None
    stream: str | None = None
    group: str | None = None
    consumer: str | None = None
    operation: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "event_id": self.event_id,
            "stream": self.stream,
            "group": self.group,
            "consumer": self.consumer,
            "operation": self.operation,
            **self.extra,
        }


class WorkflowError(Exception):
    """
    Base exception for all approval engine errors.

    Attributes:
        code: Standardized error code for programmatic handling
        message: Human-readable error message
        retryable: Whether the operation can be retried
        context: Structured debugging context
        cause: Original exception that caused this error
    """

    code: ErrorCode = ErrorCode.INTERNAL_ERROR
    retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        code: ErrorCode | None = None,
        retryable: bool | None = None,
        context: ErrorContext | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        if retryable is not None:
            self.retryable = retryable
        self.context = context or ErrorContext()
        self.cause = cause

    def __str__(self) -> str:
        parts = [f"[{self.code.value}] {self.message}"]
        if self.context.event_id:
            parts.append(f"(event_id={self.context.event_id})")
        return " ".join(parts)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging/serialization."""
        return {
            "error_type": self.__class__.__name__,
            "code": self.code.value,
            "message": self.message,
            "retryable": self.retryable,
            "context": self.context.to_dict(),
            "cause": str(self.cause) if self.cause else None,
        }


class ValidationFailure(WorkflowError):
    """Malformed or missing request fields. Nothing was appended."""

    code = ErrorCode.VALIDATION_FAILURE
    retryable = False

    def __init__(
        self,
        message: str,
        *,
        field_name: str | None = None,
        **kwargs,
    ):
        super().__init__(message, **kwargs)
        self.field_name = field_name


class AppendFailure(WorkflowError):
    """The log was unreachable or rejected the write.

    The caller must not assume the event was recorded; resubmitting is safe
    from the engine's point of view.
    """

    code = ErrorCode.APPEND_FAILURE
    retryable = True


class DeliveryError(WorkflowError):
    """Transient failure of a blocking group read. Retried after a backoff."""

    code = ErrorCode.DELIVERY_ERROR
    retryable = True


class DecodeError(WorkflowError):
    """A log entry could not be decoded into a workflow event."""

    code = ErrorCode.DECODE_ERROR
    retryable = False


class HandlerFailure(WorkflowError):
    """A side-effect handler raised. The entry stays pending."""

    code = ErrorCode.HANDLER_FAILURE
    retryable = True


class RecoveryError(WorkflowError):
    """Listing or claiming stale entries failed. The next sweep retries."""

    code = ErrorCode.RECOVERY_ERROR
    retryable = True


class ReconstructionDegradation(WorkflowError):
    """A board sub-query failed and a conservative default was used."""

    code = ErrorCode.RECONSTRUCTION_DEGRADED
    retryable = True


class ConfigError(WorkflowError):
    """Invalid engine configuration."""

    code = ErrorCode.CONFIG_ERROR
    retryable = False


__all__ = [
    "ErrorCode",
    "ErrorContext",
    "WorkflowError",
    "ValidationFailure",
    "AppendFailure",
    "DeliveryError",
    "DecodeError",
    "HandlerFailure",
    "RecoveryError",
    "ReconstructionDegradation",
    "ConfigError",
]
