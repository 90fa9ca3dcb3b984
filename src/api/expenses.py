"""FastAPI expense endpoints.

POST   /v1/expenses                        — submit an expense
GET    /v1/expenses?submitter_id=          — list a submitter's expenses
GET    /v1/expenses/{expense_id}           — one expense with its chain
PUT    /v1/expenses/{expense_id}           — edit a pending expense (submitter)
DELETE /v1/expenses/{expense_id}?owner_id= — delete (submitter, not approved)
POST   /v1/expenses/{expense_id}/rescind   — withdraw a pending expense
POST   /v1/expenses/{expense_id}/ledger-sync — retry a failed ledger sync

The acting user is passed explicitly; authentication happens upstream.
"""

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, Response
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from src.api.dependencies import (
    get_effect_runner,
    get_effect_scheduler,
    get_expense_repo,
    get_notification_trigger,
    get_state_machine,
    get_submission_service,
)
from src.api.errors import APPROVAL_ERRORS, http_error
from src.approvals.notifications import NotificationTrigger
from src.approvals.state_machine import ApprovalStateMachine
from src.approvals.submission import ExpenseSubmissionService
from src.db.session import get_async_session
from src.db.tables import ExpenseRow
from src.effects.runner import EffectRunner
from src.effects.tasks import EffectScheduler
from src.models.approval import ApprovalOutcome
from src.models.common import CostType, ExpenseStatus
from src.models.expense import ExpenseDraft, ExpenseUpdate
from src.repositories.expenses import ExpenseRepository

router = APIRouter(prefix="/v1/expenses", tags=["expenses"])


# ---------------------------------------------------------------------------
# Request / Response schemas
# ---------------------------------------------------------------------------


class SubmitExpenseRequest(ExpenseDraft):
    submitter_id: UUID


class UpdateExpenseRequest(ExpenseUpdate):
    owner_id: UUID


class OwnerRequest(BaseModel):
    owner_id: UUID


class ExpenseResponse(BaseModel):
    expense_id: UUID
    submitter_id: UUID
    cost_center_id: UUID | None = None
    amount: Decimal
    description: str
    category: str
    cost_type: CostType
    vendor_name: str | None = None
    expense_date: date
    is_reimbursable: bool
    status: ExpenseStatus
    current_approval_level: int | None = None
    approval_rule_id: UUID | None = None
    approval_chain: list[dict] | None = None
    approved_by: UUID | None = None
    approved_at: datetime | None = None
    rejection_reason: str | None = None
    ledger_reference: str | None = None
    ledger_sync_error: str | None = None
    marketplace_correlation_id: str | None = None
    marketplace_order_status: str | None = None
    marketplace_po_number: str | None = None
    created_at: datetime

    @classmethod
    def from_row(cls, row: ExpenseRow) -> "ExpenseResponse":
        return cls(
            expense_id=row.expense_id,
            submitter_id=row.submitter_id,
            cost_center_id=row.cost_center_id,
            amount=row.amount,
            description=row.description,
            category=row.category,
            cost_type=CostType(row.cost_type),
            vendor_name=row.vendor_name,
            expense_date=row.expense_date,
            is_reimbursable=row.is_reimbursable,
            status=ExpenseStatus(row.status),
            current_approval_level=row.current_approval_level,
            approval_rule_id=row.approval_rule_id,
            approval_chain=row.approval_chain,
            approved_by=row.approved_by,
            approved_at=row.approved_at,
            rejection_reason=row.rejection_reason,
            ledger_reference=row.ledger_reference,
            ledger_sync_error=row.ledger_sync_error,
            marketplace_correlation_id=row.marketplace_correlation_id,
            marketplace_order_status=row.marketplace_order_status,
            marketplace_po_number=row.marketplace_po_number,
            created_at=row.created_at,
        )


class ExpenseListResponse(BaseModel):
    items: list[ExpenseResponse]


class LedgerSyncResponse(BaseModel):
    expense_id: UUID
    status: str | None = Field(
        default=None,
        description="Final intent status, or null if another runner holds it.",
    )


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


@router.post("", status_code=201, response_model=ExpenseResponse)
async def submit_expense(
    body: SubmitExpenseRequest,
    background_tasks: BackgroundTasks,
    service: ExpenseSubmissionService = Depends(get_submission_service),
    notifications: NotificationTrigger = Depends(get_notification_trigger),
    scheduler: EffectScheduler = Depends(get_effect_scheduler),
    session: AsyncSession = Depends(get_async_session),
) -> ExpenseResponse:
    draft = ExpenseDraft.model_validate(body.model_dump(exclude={"submitter_id"}))
    try:
        row = await service.submit_expense(body.submitter_id, draft)
    except APPROVAL_ERRORS as exc:
        raise http_error(exc) from exc

    # notices and effects must only see a committed expense
    await session.commit()

    background_tasks.add_task(notifications.dispatch)
    if row.status == ExpenseStatus.APPROVED:
        scheduler.schedule(background_tasks, row.expense_id)
    return ExpenseResponse.from_row(row)


@router.get("", response_model=ExpenseListResponse)
async def list_expenses(
    submitter_id: UUID = Query(...),
    status: ExpenseStatus | None = Query(default=None),
    repo: ExpenseRepository = Depends(get_expense_repo),
) -> ExpenseListResponse:
    rows = await repo.list_by_submitter(submitter_id, status=status)
    return ExpenseListResponse(items=[ExpenseResponse.from_row(r) for r in rows])


@router.get("/{expense_id}", response_model=ExpenseResponse)
async def get_expense(
    expense_id: UUID,
    repo: ExpenseRepository = Depends(get_expense_repo),
) -> ExpenseResponse:
    row = await repo.get(expense_id)
    if row is None:
        raise HTTPException(status_code=404, detail=f"Expense {expense_id} not found.")
    return ExpenseResponse.from_row(row)


@router.put("/{expense_id}", response_model=ExpenseResponse)
async def update_expense(
    expense_id: UUID,
    body: UpdateExpenseRequest,
    background_tasks: BackgroundTasks,
    service: ExpenseSubmissionService = Depends(get_submission_service),
    notifications: NotificationTrigger = Depends(get_notification_trigger),
    scheduler: EffectScheduler = Depends(get_effect_scheduler),
    session: AsyncSession = Depends(get_async_session),
) -> ExpenseResponse:
    update = ExpenseUpdate.model_validate(
        body.model_dump(exclude={"owner_id"}, exclude_unset=True),
    )
    try:
        row = await service.update_expense(expense_id, body.owner_id, update)
    except APPROVAL_ERRORS as exc:
        raise http_error(exc) from exc

    # notices and effects must only see the committed edit
    await session.commit()

    background_tasks.add_task(notifications.dispatch)
    if row.status == ExpenseStatus.APPROVED:
        scheduler.schedule(background_tasks, row.expense_id)
    return ExpenseResponse.from_row(row)


@router.delete("/{expense_id}", status_code=204)
async def delete_expense(
    expense_id: UUID,
    owner_id: UUID = Query(...),
    machine: ApprovalStateMachine = Depends(get_state_machine),
) -> Response:
    try:
        await machine.delete(expense_id, owner_id)
    except APPROVAL_ERRORS as exc:
        raise http_error(exc) from exc
    return Response(status_code=204)


@router.post("/{expense_id}/rescind", response_model=ApprovalOutcome)
async def rescind_expense(
    expense_id: UUID,
    body: OwnerRequest,
    machine: ApprovalStateMachine = Depends(get_state_machine),
) -> ApprovalOutcome:
    try:
        return await machine.rescind(expense_id, body.owner_id)
    except APPROVAL_ERRORS as exc:
        raise http_error(exc) from exc


@router.post("/{expense_id}/ledger-sync", response_model=LedgerSyncResponse)
async def retry_ledger_sync(
    expense_id: UUID,
    runner: EffectRunner = Depends(get_effect_runner),
) -> LedgerSyncResponse:
    try:
        status = await runner.retry_ledger_sync(expense_id)
    except APPROVAL_ERRORS as exc:
        raise http_error(exc) from exc
    return LedgerSyncResponse(
        expense_id=expense_id,
        status=str(status) if status is not None else None,
    )
