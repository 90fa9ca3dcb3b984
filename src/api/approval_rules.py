"""FastAPI approval rule endpoints (administrators).

GET    /v1/approval-rules                 — list rules
POST   /v1/approval-rules                 — create (no overlap in scope)
POST   /v1/approval-rules/preview-chain   — prospective chain for a submitter
GET    /v1/approval-rules/{rule_id}       — one rule
PUT    /v1/approval-rules/{rule_id}       — partial update
DELETE /v1/approval-rules/{rule_id}       — delete if unreferenced
"""

from decimal import Decimal
from uuid import UUID

from fastapi import APIRouter, Depends, Response
from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from src.api.dependencies import get_chain_builder, get_rule_service
from src.api.errors import APPROVAL_ERRORS, http_error
from src.approvals.chain_builder import ApprovalChainBuilder
from src.approvals.errors import ValidationError
from src.approvals.rules_admin import ApprovalRuleService
from src.models.approval import MAX_LEVELS_REQUIRED, ApprovalRule, ApprovalStep

router = APIRouter(prefix="/v1/approval-rules", tags=["approval-rules"])


class CreateRuleRequest(BaseModel):
    name: str
    description: str = ""
    min_amount: Decimal
    max_amount: Decimal | None = None
    cost_center_id: UUID | None = None
    levels_required: int = Field(..., ge=1, le=MAX_LEVELS_REQUIRED)
    is_active: bool = True
    created_by: UUID | None = None


class UpdateRuleRequest(BaseModel):
    name: str | None = None
    description: str | None = None
    min_amount: Decimal | None = None
    max_amount: Decimal | None = None
    cost_center_id: UUID | None = None
    levels_required: int | None = None
    is_active: bool | None = None


class RuleListResponse(BaseModel):
    items: list[ApprovalRule]


class PreviewChainRequest(BaseModel):
    submitter_id: UUID
    amount: Decimal
    cost_center_id: UUID | None = None


class PreviewChainResponse(BaseModel):
    requires_approval: bool
    rule: ApprovalRule | None = None
    chain: list[ApprovalStep] = Field(default_factory=list)


@router.get("", response_model=RuleListResponse)
async def list_rules(
    service: ApprovalRuleService = Depends(get_rule_service),
) -> RuleListResponse:
    return RuleListResponse(items=await service.list_rules())


@router.post("", status_code=201, response_model=ApprovalRule)
async def create_rule(
    body: CreateRuleRequest,
    service: ApprovalRuleService = Depends(get_rule_service),
) -> ApprovalRule:
    try:
        rule = ApprovalRule.model_validate(body.model_dump())
    except PydanticValidationError as exc:
        raise http_error(ValidationError(exc.errors()[0]["msg"])) from exc
    try:
        return await service.create_rule(rule)
    except APPROVAL_ERRORS as exc:
        raise http_error(exc) from exc


@router.post("/preview-chain", response_model=PreviewChainResponse)
async def preview_chain(
    body: PreviewChainRequest,
    builder: ApprovalChainBuilder = Depends(get_chain_builder),
) -> PreviewChainResponse:
    try:
        result = await builder.preview_chain(body.submitter_id, body.amount, body.cost_center_id)
    except APPROVAL_ERRORS as exc:
        raise http_error(exc) from exc
    return PreviewChainResponse(
        requires_approval=result.requires_approval,
        rule=result.rule,
        chain=result.chain or [],
    )


@router.get("/{rule_id}", response_model=ApprovalRule)
async def get_rule(
    rule_id: UUID,
    service: ApprovalRuleService = Depends(get_rule_service),
) -> ApprovalRule:
    try:
        return await service.get_rule(rule_id)
    except APPROVAL_ERRORS as exc:
        raise http_error(exc) from exc


@router.put("/{rule_id}", response_model=ApprovalRule)
async def update_rule(
    rule_id: UUID,
    body: UpdateRuleRequest,
    service: ApprovalRuleService = Depends(get_rule_service),
) -> ApprovalRule:
    try:
        return await service.update_rule(rule_id, body.model_dump(exclude_unset=True))
    except APPROVAL_ERRORS as exc:
        raise http_error(exc) from exc


@router.delete("/{rule_id}", status_code=204)
async def delete_rule(
    rule_id: UUID,
    service: ApprovalRuleService = Depends(get_rule_service),
) -> Response:
    try:
        await service.delete_rule(rule_id)
    except APPROVAL_ERRORS as exc:
        raise http_error(exc) from exc
    return Response(status_code=204)
