from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Header, Query

from ..core.security import extract_bearer_token
from ..models.schemas import ErrorResponse, GenerationItem, GenerationsResponse
from ..services.generation_service import TryOnGenerationService, get_generation_service

router = APIRouter(
    prefix="",
    tags=["Generation"],
    responses={401: {"model": ErrorResponse, "description": "Missing, invalid or expired session token"}},
)


@router.get("/generations", response_model=GenerationsResponse)
async def list_generations(
    limit: int = Query(50, ge=1, le=200),
    authorization: Optional[str] = Header(None),
    service: TryOnGenerationService = Depends(get_generation_service),
) -> GenerationsResponse:
    """Successful generations of the signed-in user, newest first."""
    user = await service.verifier.verify(extract_bearer_token(authorization))
    rows = await service.audit_log.history(user.email, limit=limit)
    return GenerationsResponse(generations=[GenerationItem(**row) for row in rows])
