from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header

from ..core.config import settings
from ..core.security import extract_bearer_token
from ..models.exceptions import LedgerUnavailableException
from ..models.schemas import CreditsResponse, ErrorResponse
from ..services.generation_service import TryOnGenerationService, get_generation_service

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="",
    tags=["Credits"],
    responses={
        401: {"model": ErrorResponse, "description": "Missing, invalid or expired session token"},
        503: {"model": ErrorResponse, "description": "Credit ledger unavailable"},
    }
)


@router.get("/credits", response_model=CreditsResponse, response_model_exclude_none=True)
async def get_credits(
    authorization: Optional[str] = Header(None),
    service: TryOnGenerationService = Depends(get_generation_service),
) -> CreditsResponse:
    """Current credit balance of the signed-in user."""
    user = await service.verifier.verify(extract_bearer_token(authorization))
    try:
        balance = await service.ledger.get_balance(user.user_id)
    except LedgerUnavailableException as e:
        if not settings.credits_fallback_zero:
            raise
        # Legacy clients expect a number even when the ledger is down
        logger.warning("Reporting zero credits after ledger read failure", extra={"error": e.message})
        return CreditsResponse(credits=0, error=e.message)
    return CreditsResponse(credits=balance)
