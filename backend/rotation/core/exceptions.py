from fastapi import HTTPException, status


class AppError(HTTPException):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_detail = "Internal server error"

    def __init__(self, detail: str | None = None):
        super().__init__(status_code=self.status_code, detail=detail or self.default_detail)


class BadRequestError(AppError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = "Bad request"


class UnauthorizedError(AppError):
    status_code = status.HTTP_401_UNAUTHORIZED
    default_detail = "Not authenticated"


class ForbiddenError(AppError):
    status_code = status.HTTP_403_FORBIDDEN
    default_detail = "Forbidden"


class NotFoundError(AppError):
    status_code = status.HTTP_404_NOT_FOUND
    default_detail = "Not found"


# ── Rotation errors ─────────────────────────────────────────────────────


class RotationError(Exception):
    """Base for scheduler-level failures."""


class NoEligibleContent(RotationError):
    """Nothing approved to play. Surfaced to callers, never fatal."""

    def __init__(self, message: str = "No content available"):
        super().__init__(message)
        self.message = message


class StaleEpoch(RotationError):
    """A client acted on an epoch that is no longer current."""

    def __init__(self, current_epoch: int):
        super().__init__(f"stale epoch, current is {current_epoch}")
        self.current_epoch = current_epoch


class LedgerUnavailable(RotationError):
    """The credit ledger timed out or errored; selection degrades to organic."""


class InvariantViolation(RotationError):
    """Stream state or fairness bookkeeping would become inconsistent."""
