# =============================================================================
# Accounts API — Snapshot and Budget Views
# =============================================================================
#
# Read-only, LLM-free views of one account:
#   GET /accounts/{account_id}/snapshot — the normalised snapshot
#   GET /accounts/{account_id}/budget   — rule-of-thumb budget language
#
# Snapshot failures map to 502 (the records store is an upstream service).
# =============================================================================

from __future__ import annotations

import dataclasses
import logging

from fastapi import APIRouter, Depends, HTTPException

from app.agents.errors import DataAccessError
from app.api.deps import get_snapshot_provider
from app.models.responses import BudgetResponse, SnapshotResponse
from app.services.budget import check_budget
from app.services.snapshot import FinancialSnapshot, SnapshotProvider

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/accounts", tags=["Accounts"])


async def _load(provider: SnapshotProvider, account_id: str) -> FinancialSnapshot:
    try:
        return await provider.get_snapshot(account_id)
    except DataAccessError as e:
        logger.error("Snapshot unavailable for account %s: %s", account_id, e)
        raise HTTPException(status_code=502, detail=str(e)) from e


@router.get(
    "/{account_id}/snapshot",
    response_model=SnapshotResponse,
    summary="Normalised financial snapshot for an account",
)
async def get_snapshot(
    account_id: str,
    provider: SnapshotProvider = Depends(get_snapshot_provider),
) -> SnapshotResponse:
    snapshot = await _load(provider, account_id)
    return SnapshotResponse(account_id=account_id, **dataclasses.asdict(snapshot))


@router.get(
    "/{account_id}/budget",
    response_model=BudgetResponse,
    summary="Housing and fixed-cost share of income",
)
async def get_budget(
    account_id: str,
    provider: SnapshotProvider = Depends(get_snapshot_provider),
) -> BudgetResponse:
    snapshot = await _load(provider, account_id)
    return BudgetResponse(**dataclasses.asdict(check_budget(snapshot)))
