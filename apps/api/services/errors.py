"""Service-layer error taxonomy with stable logical codes."""

from __future__ import annotations

from typing import Any, Dict, Optional


class ServiceError(Exception):
    """Base class for service-layer errors."""

    status_code = 400

    def __init__(
        self,
        message: str,
        *,
        code: Optional[str] = None,
        detail: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code or "service_error"
        self.detail = detail or {}


class ValidationError(ServiceError):
    status_code = 422

    def __init__(self, message: str = "Validation error"):
        super().__init__(message, code="validation_error")


class NotFoundError(ServiceError):
    status_code = 404

    def __init__(self, message: str = "Not found"):
        super().__init__(message, code="not_found")


class ConflictError(ServiceError):
    status_code = 409

    def __init__(self, message: str = "Conflict"):
        super().__init__(message, code="conflict")


class InsufficientCreditsError(ServiceError):
    """Raised when a credit check fails even with overage."""

    status_code = 402

    def __init__(self, check: Any, required: int):
        super().__init__(
            f"Insufficient credits. Required: {required}, remaining: {check.remaining}.",
            code="insufficient_credits",
            detail={
                "reason": check.reason,
                "remaining": check.remaining,
                "required": required,
                "is_overage": check.is_overage,
                "overage_count": check.overage_count,
                "overage_cost": check.overage_cost,
            },
        )
        self.check = check


class OverageConfirmationRequiredError(ServiceError):
    """Raised when a charge would spill into overage and the caller has not confirmed it."""

    status_code = 409

    def __init__(self, check: Any, required: int):
        super().__init__(
            f"{check.overage_count} of {required} credits would be billed as overage. Resubmit with confirmation.",
            code="overage_confirmation_required",
            detail={
                "requires_overage_confirmation": True,
                "remaining": check.remaining,
                "required": required,
                "overage_count": check.overage_count,
                "overage_cost": check.overage_cost,
            },
        )
        self.check = check


class RetryOfRetryForbiddenError(ServiceError):
    def __init__(self, job_id: str, original_job_id: str):
        super().__init__(
            "Retry attempts cannot be retried. Retry the original job instead.",
            code="retry_of_retry_forbidden",
            detail={"job_id": job_id, "original_job_id": original_job_id},
        )


class InvalidBatchStateError(ServiceError):
    def __init__(self, action: str, status: str):
        super().__init__(
            f"Cannot {action} a {status} batch",
            code="invalid_batch_state_for_action",
            detail={"action": action, "status": status},
        )


class InvalidJobStateError(ServiceError):
    def __init__(self, action: str, status: str):
        super().__init__(
            f"Cannot {action} a {status} job",
            code="invalid_job_state",
            detail={"action": action, "status": status},
        )


class RateLimitedError(ServiceError):
    status_code = 429

    def __init__(self, action: str, limit: int, window_seconds: int, retry_after: int):
        super().__init__(
            f"Too many {action} requests for this team. Try again in {retry_after} seconds.",
            code="rate_limited",
            detail={"action": action, "limit": limit, "window_seconds": window_seconds, "retry_after": retry_after},
        )
