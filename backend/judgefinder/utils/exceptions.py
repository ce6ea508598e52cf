"""
Custom exception classes
"""
from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import HTTPException


class JudgeFinderError(Exception):
    """Base for domain errors rendered as ``{error, code, message}`` JSON."""
    status_code: int = 500
    code: str = "internal_error"
    public_message: str = "Internal server error"

    def __init__(self, message: Optional[str] = None, **context: Any):
        self.message = message or self.public_message
        self.context = context
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.public_message, "code": self.code, "message": self.message}


class ValidationError(JudgeFinderError):
    """Bad input to an API or search call"""
    status_code = 400
    code = "validation_error"
    public_message = "Invalid request"

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message, field=field)
        self.field = field

    def to_dict(self) -> Dict[str, Any]:
        out = super().to_dict()
        if self.field:
            out["field"] = self.field
        return out


class RateLimited(JudgeFinderError):
    """Upstream quota exhausted; recoverable once the window rolls over"""
    status_code = 429
    code = "rate_limited"
    public_message = "Rate limit exceeded"

    def __init__(self, message: str = "CourtListener quota exhausted", retry_after: float = 0.0):
        super().__init__(message, retry_after=retry_after)
        self.retry_after = max(0.0, float(retry_after))

    def to_dict(self) -> Dict[str, Any]:
        out = super().to_dict()
        out["retry_after"] = int(self.retry_after) + (1 if self.retry_after % 1 else 0)
        return out


class UpstreamError(JudgeFinderError):
    """External data source answered with an error (or not at all)"""
    status_code = 502
    code = "upstream_error"
    public_message = "Upstream data source error"

    def __init__(self, message: str, status: Optional[int] = None, retryable: bool = False):
        super().__init__(message, status=status)
        self.status = status
        self.retryable = retryable


class SyncExhausted(UpstreamError):
    """Retries used up; carries the last observed status"""
    code = "upstream_exhausted"

    def __init__(self, message: str, last_status: Optional[int], attempts: int):
        super().__init__(message, status=last_status, retryable=True)
        self.last_status = last_status
        self.attempts = attempts


class CacheUnavailable(JudgeFinderError):
    """A cache tier could not be reached. Callers degrade, never surface it."""
    status_code = 503
    code = "cache_unavailable"
    public_message = "Cache unavailable"


class DataIntegrityError(JudgeFinderError):
    """Data that could not be resolved cleanly (e.g. court/county assignment)"""
    status_code = 409
    code = "data_integrity"
    public_message = "Data integrity problem"

    def __init__(self, message: str, confidence: Optional[str] = None):
        super().__init__(message, confidence=confidence)
        self.confidence = confidence


class NotFoundError(JudgeFinderError):
    status_code = 404
    code = "not_found"
    public_message = "Not found"


class WorkerNotConfiguredError(HTTPException):
    """Raised when the sync worker token is unset"""
    def __init__(self):
        super().__init__(
            status_code=503,
            detail={"error": "Worker endpoint not configured", "code": "worker_disabled",
                    "message": "SYNC_WORKER_TOKEN is unset"},
        )


class InvalidWorkerTokenError(HTTPException):
    """Raised when the sync worker token doesn't match"""
    def __init__(self):
        super().__init__(
            status_code=401,
            detail={"error": "Unauthorized", "code": "invalid_token",
                    "message": "Invalid or missing x-sync-token"},
        )
