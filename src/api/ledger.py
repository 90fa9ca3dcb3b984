"""FastAPI ledger endpoints — account mappings and bulk sync retry.

GET  /v1/ledger/mappings             — category -> account code mappings
PUT  /v1/ledger/mappings/{category}  — create or replace one mapping
POST /v1/ledger/sync-retry           — retry the ledger sync of several expenses

Mappings are read by every ledger sync that runs after they are saved.
"""

from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from src.api.dependencies import get_effect_runner, get_ledger_mapping_repo
from src.db.tables import LedgerAccountMappingRow
from src.effects.runner import EffectRunner, LedgerRetryOutcome
from src.models.common import EffectStatus
from src.repositories.ledger_mappings import LedgerAccountMappingRepository

router = APIRouter(prefix="/v1/ledger", tags=["ledger"])


# ---------------------------------------------------------------------------
# Request / Response schemas
# ---------------------------------------------------------------------------


class SaveMappingRequest(BaseModel):
    account_code: str = Field(..., min_length=1, max_length=20)
    account_name: str = Field(default="", max_length=255)


class MappingResponse(BaseModel):
    category: str
    account_code: str
    account_name: str
    updated_at: datetime

    @classmethod
    def from_row(cls, row: LedgerAccountMappingRow) -> "MappingResponse":
        return cls(
            category=row.category,
            account_code=row.account_code,
            account_name=row.account_name or "",
            updated_at=row.updated_at,
        )


class MappingListResponse(BaseModel):
    items: list[MappingResponse]


class SyncRetryRequest(BaseModel):
    expense_ids: list[UUID] = Field(..., min_length=1, max_length=100)


class SyncRetryResponse(BaseModel):
    synced: int
    failed: int
    items: list[LedgerRetryOutcome]


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


@router.get("/mappings", response_model=MappingListResponse)
async def list_mappings(
    repo: LedgerAccountMappingRepository = Depends(get_ledger_mapping_repo),
) -> MappingListResponse:
    rows = await repo.list_all()
    return MappingListResponse(items=[MappingResponse.from_row(r) for r in rows])


@router.put("/mappings/{category}", response_model=MappingResponse)
async def save_mapping(
    category: str,
    body: SaveMappingRequest,
    repo: LedgerAccountMappingRepository = Depends(get_ledger_mapping_repo),
) -> MappingResponse:
    category = category.strip()
    account_code = body.account_code.strip()
    if not category or len(category) > 100:
        raise HTTPException(
            status_code=400,
            detail={"message": "Category must be 1-100 characters", "field": "category"},
        )
    if not account_code:
        raise HTTPException(
            status_code=400,
            detail={"message": "Account code must not be blank", "field": "account_code"},
        )
    row = await repo.upsert(category, account_code, body.account_name.strip())
    return MappingResponse.from_row(row)


@router.post("/sync-retry", response_model=SyncRetryResponse)
async def retry_ledger_syncs(
    body: SyncRetryRequest,
    runner: EffectRunner = Depends(get_effect_runner),
) -> SyncRetryResponse:
    outcomes = await runner.retry_ledger_syncs(body.expense_ids)
    synced = sum(1 for o in outcomes if o.status == EffectStatus.SUCCEEDED)
    return SyncRetryResponse(synced=synced, failed=len(outcomes) - synced, items=outcomes)
