"""Mapping from approval-core errors to HTTP responses."""

from fastapi import HTTPException

from src.approvals.errors import (
    ExpenseNotFoundError,
    ForbiddenError,
    InconsistentStateError,
    RuleNotFoundError,
    ValidationError,
)

# Caught by every endpoint that calls into the approval core.
APPROVAL_ERRORS = (
    ValidationError,
    ExpenseNotFoundError,
    RuleNotFoundError,
    ForbiddenError,
    InconsistentStateError,
)


def http_error(exc: Exception) -> HTTPException:
    if isinstance(exc, ValidationError):
        return HTTPException(
            status_code=400,
            detail={"message": str(exc), "field": exc.field},
        )
    if isinstance(exc, (ExpenseNotFoundError, RuleNotFoundError)):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, ForbiddenError):
        return HTTPException(status_code=403, detail=str(exc))
    if isinstance(exc, InconsistentStateError):
        return HTTPException(status_code=409, detail=str(exc))
    return HTTPException(status_code=500, detail="Internal error")
