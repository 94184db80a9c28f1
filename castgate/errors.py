"""
castgate/errors.py

Error taxonomy shared by the lifecycle manager and the HTTP layer.

Each error carries:
  - kind        : machine-readable tag returned to clients as "error"
  - status_code : HTTP status the API layer maps it to
  - guidance    : optional actionable hint (posting failures mostly)
"""

from typing import Any, Dict, Optional


class CastgateError(Exception):
    kind = "error"
    status_code = 500

    def __init__(self, message: str, guidance: Optional[str] = None, **extra: Any):
        super().__init__(message)
        self.message = message
        self.guidance = guidance
        self.extra = extra

    def to_detail(self) -> Dict[str, Any]:
        detail: Dict[str, Any] = {"error": self.kind, "message": self.message}
        if self.guidance:
            detail["guidance"] = self.guidance
        if self.extra:
            detail.update(self.extra)
        return detail


class ValidationError(CastgateError):
    kind = "validation_error"
    status_code = 400


class NotFoundError(CastgateError):
    kind = "not_found"
    status_code = 404


class RateLimitError(CastgateError):
    kind = "rate_limited"
    status_code = 429


class UpstreamError(CastgateError):
    kind = "upstream_error"
    status_code = 500


class NotReadyError(CastgateError):
    kind = "not_ready"
    status_code = 400


class PendingConfirmationError(CastgateError):
    kind = "pending_confirmation"
    status_code = 400
