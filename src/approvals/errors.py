"""Error taxonomy for the approval core.

Each error subclasses the builtin the rest of the codebase already raises
for that situation, so callers catching ValueError / LookupError keep
working. The API layer maps them onto HTTP status codes.
"""


class ValidationError(ValueError):
    """Malformed input. ``field`` names the offending request field."""

    def __init__(self, message: str, *, field: str | None = None) -> None:
        super().__init__(message)
        self.field = field


class ExpenseNotFoundError(LookupError):
    """Expense missing, or not in the status the operation requires."""


class RuleNotFoundError(LookupError):
    """Approval rule missing."""


class ForbiddenError(PermissionError):
    """Actor may not perform this action at the expense's current level."""


class InconsistentStateError(RuntimeError):
    """Stored approval data violates its own invariants. Never auto-repaired."""
