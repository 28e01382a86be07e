"""Enforcement API endpoints.

Hey future me - this router is thin on purpose. Everything goes through
EnforcementService; the router only translates schemas and picks status codes.

ENDPOINTS:
- POST /enforcement/plan                     → Scan library + build plan (cached)
- POST /enforcement/batches                  → Execute a cached plan (idempotent)
- GET  /enforcement/batches/{id}             → Batch with items split by outcome
- GET  /enforcement/batches/{id}/progress    → Live counts, ETA, limiter status
- POST /enforcement/batches/{id}/rollback    → Compensate a finished batch

The provider access token is taken from the Authorization header. Without it the
plan/batch must name a connection_id the token provider can resolve.
"""

import logging

from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse

from mutespot.api.dependencies import get_enforcement_service, get_provider_token
from mutespot.api.schemas.enforcement import (
    BatchProgressResponse,
    BatchResponse,
    CreatePlanRequest,
    ExecuteBatchRequest,
    PlanResponse,
    RollbackRequest,
    RollbackResponse,
)
from mutespot.application.services.enforcement_service import EnforcementService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/enforcement", tags=["enforcement"])


@router.post("/plan", response_model=PlanResponse, status_code=status.HTTP_201_CREATED)
async def create_plan(
    request: CreatePlanRequest,
    service: EnforcementService = Depends(get_enforcement_service),
    access_token: str | None = Depends(get_provider_token),
) -> PlanResponse:
    """Scan the user's library and return an enforcement plan with its impact."""
    plan = await service.create_plan(
        user_id=request.user_id,
        provider=request.provider,
        blocked_artist_ids=request.blocked_artist_ids,
        options=request.options.to_domain(),
        access_token=access_token,
        connection_id=request.connection_id,
    )
    return PlanResponse.from_entity(plan)


# Hey future me - 202 while the batch is still pending/in progress (deferred execution),
# 200 once it's terminal. A re-submitted key returns the SAME batch, never a new one.
@router.post("/batches", response_model=BatchResponse)
async def execute_batch(
    request: ExecuteBatchRequest,
    service: EnforcementService = Depends(get_enforcement_service),
    access_token: str | None = Depends(get_provider_token),
) -> JSONResponse:
    """Execute a cached plan as a durable batch."""
    result = await service.execute_batch(
        request.plan_id,
        idempotency_key=request.idempotency_key,
        execute_immediately=request.execute_immediately,
        batch_size=request.batch_size,
        access_token=access_token,
    )
    body = BatchResponse.from_result(result)
    code = status.HTTP_200_OK if result.status.is_terminal else status.HTTP_202_ACCEPTED
    return JSONResponse(status_code=code, content=body.model_dump(mode="json"))


@router.get("/batches/{batch_id}", response_model=BatchResponse)
async def get_batch(
    batch_id: str,
    service: EnforcementService = Depends(get_enforcement_service),
) -> BatchResponse:
    """Get a batch with its items."""
    return BatchResponse.from_result(await service.get_batch(batch_id))


@router.get("/batches/{batch_id}/progress", response_model=BatchProgressResponse)
async def get_batch_progress(
    batch_id: str,
    service: EnforcementService = Depends(get_enforcement_service),
) -> BatchProgressResponse:
    """Poll the progress of a batch."""
    return BatchProgressResponse.from_entity(await service.get_batch_progress(batch_id))


@router.post("/batches/{batch_id}/rollback", response_model=RollbackResponse)
async def rollback_batch(
    batch_id: str,
    request: RollbackRequest,
    service: EnforcementService = Depends(get_enforcement_service),
    access_token: str | None = Depends(get_provider_token),
) -> RollbackResponse:
    """Roll back the completed actions of a batch (or only the given ones)."""
    info = await service.rollback_batch(
        batch_id,
        action_ids=request.action_ids,
        reason=request.reason,
        access_token=access_token,
    )
    return RollbackResponse.from_entity(info)
