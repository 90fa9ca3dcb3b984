"""FastAPI procurement cart endpoints.

GET    /v1/cart?user_id=                 — list cart lines
POST   /v1/cart                          — add a line
DELETE /v1/cart?user_id=                 — clear the cart
DELETE /v1/cart/{cart_item_id}?user_id=  — remove one line
POST   /v1/cart/checkout                 — one expense per line, one shared chain
"""

from decimal import Decimal
from uuid import UUID

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, Response
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from src.api.dependencies import (
    get_cart_repo,
    get_effect_scheduler,
    get_notification_trigger,
    get_submission_service,
)
from src.api.errors import APPROVAL_ERRORS, http_error
from src.api.expenses import ExpenseResponse
from src.approvals.notifications import NotificationTrigger
from src.approvals.submission import ExpenseSubmissionService
from src.db.session import get_async_session
from src.db.tables import CartItemRow
from src.effects.tasks import EffectScheduler
from src.models.common import ExpenseStatus
from src.models.expense import DEFAULT_CART_CATEGORY
from src.repositories.cart import CartItemRepository

router = APIRouter(prefix="/v1/cart", tags=["cart"])


class AddCartItemRequest(BaseModel):
    user_id: UUID
    description: str = Field(..., min_length=1, max_length=500)
    vendor_name: str = Field(..., min_length=1, max_length=255)
    unit_price: Decimal = Field(..., gt=0, max_digits=14, decimal_places=2)
    quantity: int = Field(default=1, ge=1)
    cost_center_id: UUID | None = None
    marketplace_correlation_id: str | None = None


class CartItemResponse(BaseModel):
    cart_item_id: UUID
    description: str
    vendor_name: str
    unit_price: Decimal
    quantity: int
    line_total: Decimal
    cost_center_id: UUID | None = None
    marketplace_correlation_id: str | None = None

    @classmethod
    def from_row(cls, row: CartItemRow) -> "CartItemResponse":
        return cls(
            cart_item_id=row.cart_item_id,
            description=row.description,
            vendor_name=row.vendor_name,
            unit_price=row.unit_price,
            quantity=row.quantity,
            line_total=row.line_total,
            cost_center_id=row.cost_center_id,
            marketplace_correlation_id=row.marketplace_correlation_id,
        )


class CartResponse(BaseModel):
    items: list[CartItemResponse]
    total: Decimal


class CheckoutRequest(BaseModel):
    user_id: UUID
    cost_center_id: UUID | None = None
    category: str = DEFAULT_CART_CATEGORY


class CheckoutResponse(BaseModel):
    requires_approval: bool
    expenses: list[ExpenseResponse]


@router.get("", response_model=CartResponse)
async def get_cart(
    user_id: UUID = Query(...),
    repo: CartItemRepository = Depends(get_cart_repo),
) -> CartResponse:
    rows = await repo.list_for_user(user_id)
    return CartResponse(
        items=[CartItemResponse.from_row(r) for r in rows],
        total=sum((r.line_total for r in rows), Decimal("0")),
    )


@router.post("", status_code=201, response_model=CartItemResponse)
async def add_cart_item(
    body: AddCartItemRequest,
    repo: CartItemRepository = Depends(get_cart_repo),
) -> CartItemResponse:
    row = await repo.add(**body.model_dump())
    return CartItemResponse.from_row(row)


@router.delete("", status_code=204)
async def clear_cart(
    user_id: UUID = Query(...),
    repo: CartItemRepository = Depends(get_cart_repo),
) -> Response:
    await repo.clear(user_id)
    return Response(status_code=204)


@router.delete("/{cart_item_id}", status_code=204)
async def remove_cart_item(
    cart_item_id: UUID,
    user_id: UUID = Query(...),
    repo: CartItemRepository = Depends(get_cart_repo),
) -> Response:
    if not await repo.remove(user_id, cart_item_id):
        raise HTTPException(status_code=404, detail=f"Cart item {cart_item_id} not found.")
    return Response(status_code=204)


@router.post("/checkout", status_code=201, response_model=CheckoutResponse)
async def checkout(
    body: CheckoutRequest,
    background_tasks: BackgroundTasks,
    service: ExpenseSubmissionService = Depends(get_submission_service),
    notifications: NotificationTrigger = Depends(get_notification_trigger),
    scheduler: EffectScheduler = Depends(get_effect_scheduler),
    session: AsyncSession = Depends(get_async_session),
) -> CheckoutResponse:
    try:
        rows = await service.checkout_cart(body.user_id, body.cost_center_id, body.category)
    except APPROVAL_ERRORS as exc:
        raise http_error(exc) from exc

    # notices and effects must only see committed expenses
    await session.commit()

    background_tasks.add_task(notifications.dispatch)
    for row in rows:
        if row.status == ExpenseStatus.APPROVED:
            scheduler.schedule(background_tasks, row.expense_id)
    return CheckoutResponse(
        requires_approval=any(r.status == ExpenseStatus.PENDING for r in rows),
        expenses=[ExpenseResponse.from_row(r) for r in rows],
    )
