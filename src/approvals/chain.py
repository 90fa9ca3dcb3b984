"""Load / dump of the approval chain embedded in an expense row.

The chain is trusted only after validation: structure, unique levels,
ascending order, no gaps, first level 1.
"""

import logging
from typing import NoReturn
from uuid import UUID

from pydantic import ValidationError as PydanticValidationError

from src.approvals.errors import InconsistentStateError
from src.models.approval import ApprovalStep

logger = logging.getLogger(__name__)


def dump_chain(chain: list[ApprovalStep] | None) -> list[dict] | None:
    """Serialise a chain into JSON-safe dicts for the FlexJSON column."""
    if chain is None:
        return None
    return [step.model_dump(mode="json") for step in chain]


def load_chain(raw: object, *, expense_id: UUID) -> list[ApprovalStep]:
    """Parse and validate a stored chain.

    Raises:
        InconsistentStateError: missing, empty, malformed, or with
            duplicate / missing levels.
    """
    if not raw:
        _fail(expense_id, "approval chain is missing")
    if not isinstance(raw, list):
        _fail(expense_id, "approval chain is not a list")

    try:
        steps = [ApprovalStep.model_validate(item) for item in raw]
    except PydanticValidationError as exc:
        _fail(expense_id, f"approval chain is malformed: {exc.error_count()} error(s)")

    levels = [step.level for step in steps]
    if levels != list(range(1, len(steps) + 1)):
        _fail(expense_id, f"approval chain levels {levels} are not 1..{len(steps)}")
    return steps


def step_at(chain: list[ApprovalStep], level: int | None, *, expense_id: UUID) -> ApprovalStep:
    """Return the step at ``level`` or raise InconsistentStateError."""
    if level is None or not 1 <= level <= len(chain):
        _fail(expense_id, f"current approval level {level} is outside the chain")
    return chain[level - 1]


def _fail(expense_id: UUID, reason: str) -> NoReturn:
    logger.error("Inconsistent approval state for expense %s: %s", expense_id, reason)
    msg = f"Expense {expense_id}: {reason}."
    raise InconsistentStateError(msg)
