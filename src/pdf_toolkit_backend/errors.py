"""
Error taxonomy for the transformation pipeline.

Every error carries an HTTP status and optional details that are merged into
the JSON error envelope by the exception handlers registered in ``main``.
"""

from __future__ import annotations

from typing import Any, Dict


class PipelineError(Exception):
    """Base class for all errors raised while handling a transformation request."""

    status_code = 500
    code = "internal_error"

    def __init__(self, message: str, **details: Any) -> None:
        self.message = message
        self.details: Dict[str, Any] = details
        super().__init__(message)

    def to_payload(self) -> Dict[str, Any]:
        return {"ok": False, "error": self.message, "code": self.code, **self.details}


class ValidationError(PipelineError):
    """Missing or malformed request fields."""

    status_code = 400
    code = "validation_error"


class PayloadTooLarge(PipelineError):
    """A source exceeded the configured byte ceiling."""

    status_code = 413
    code = "payload_too_large"


class SourceUnavailable(PipelineError):
    """A remote source could not be fetched."""

    code = "source_unavailable"


class InvalidEncoding(SourceUnavailable):
    """A base64 source could not be decoded."""

    code = "invalid_encoding"


class NoValidPages(PipelineError):
    """A page selection resolved to zero pages."""

    code = "no_valid_pages"


class TransformationError(PipelineError):
    """The PDF library or an external process failed."""

    code = "transformation_error"


class DeliveryError(PipelineError):
    """Streaming or uploading the result failed after processing succeeded."""

    code = "delivery_error"


class DeadlineExceeded(PipelineError):
    """Acquisition and transformation did not finish within the request deadline."""

    status_code = 504
    code = "deadline_exceeded"
