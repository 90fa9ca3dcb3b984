"""FastAPI approval endpoints.

GET  /v1/approvals/pending?approver_id=        — expenses awaiting this approver
POST /v1/approvals/{expense_id}/approve        — approve the current level
POST /v1/approvals/{expense_id}/reject         — reject with a reason
GET  /v1/approvals/{expense_id}/history        — the stored approval chain

Completion effects and notices start only after the transition commits;
their failures never show up in these responses.
"""

from uuid import UUID

from fastapi import APIRouter, BackgroundTasks, Depends, Query
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from src.api.dependencies import (
    get_effect_scheduler,
    get_notification_trigger,
    get_state_machine,
)
from src.api.errors import APPROVAL_ERRORS, http_error
from src.api.expenses import ExpenseResponse
from src.approvals.notifications import NotificationTrigger
from src.approvals.state_machine import ApprovalStateMachine
from src.db.session import get_async_session
from src.effects.tasks import EffectScheduler
from src.models.approval import ApprovalOutcome, ApprovalStep
from src.models.common import ExpenseStatus

router = APIRouter(prefix="/v1/approvals", tags=["approvals"])


class ApproveRequest(BaseModel):
    approver_id: UUID
    comments: str | None = None


class RejectRequest(BaseModel):
    approver_id: UUID
    comments: str | None = None


class PendingApprovalsResponse(BaseModel):
    items: list[ExpenseResponse]


class HistoryResponse(BaseModel):
    expense_id: UUID
    steps: list[ApprovalStep]


@router.get("/pending", response_model=PendingApprovalsResponse)
async def list_pending(
    approver_id: UUID = Query(...),
    machine: ApprovalStateMachine = Depends(get_state_machine),
) -> PendingApprovalsResponse:
    rows = await machine.list_pending_for(approver_id)
    return PendingApprovalsResponse(items=[ExpenseResponse.from_row(r) for r in rows])


@router.post("/{expense_id}/approve", response_model=ApprovalOutcome)
async def approve_expense(
    expense_id: UUID,
    body: ApproveRequest,
    background_tasks: BackgroundTasks,
    machine: ApprovalStateMachine = Depends(get_state_machine),
    notifications: NotificationTrigger = Depends(get_notification_trigger),
    scheduler: EffectScheduler = Depends(get_effect_scheduler),
    session: AsyncSession = Depends(get_async_session),
) -> ApprovalOutcome:
    try:
        outcome = await machine.approve(expense_id, body.approver_id, body.comments)
    except APPROVAL_ERRORS as exc:
        raise http_error(exc) from exc

    # notices and effects must only see the committed transition
    await session.commit()

    background_tasks.add_task(notifications.dispatch)
    if outcome.status == ExpenseStatus.APPROVED:
        scheduler.schedule(background_tasks, expense_id)
    return outcome


@router.post("/{expense_id}/reject", response_model=ApprovalOutcome)
async def reject_expense(
    expense_id: UUID,
    body: RejectRequest,
    background_tasks: BackgroundTasks,
    machine: ApprovalStateMachine = Depends(get_state_machine),
    notifications: NotificationTrigger = Depends(get_notification_trigger),
    session: AsyncSession = Depends(get_async_session),
) -> ApprovalOutcome:
    try:
        outcome = await machine.reject(expense_id, body.approver_id, body.comments)
    except APPROVAL_ERRORS as exc:
        raise http_error(exc) from exc

    await session.commit()

    background_tasks.add_task(notifications.dispatch)
    return outcome


@router.get("/{expense_id}/history", response_model=HistoryResponse)
async def approval_history(
    expense_id: UUID,
    machine: ApprovalStateMachine = Depends(get_state_machine),
) -> HistoryResponse:
    try:
        steps = await machine.history(expense_id)
    except APPROVAL_ERRORS as exc:
        raise http_error(exc) from exc
    return HistoryResponse(expense_id=expense_id, steps=steps)
