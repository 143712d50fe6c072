from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header

from ..models.schemas import ErrorResponse, GenerateRequest, GenerateResponse
from ..services.generation_service import TryOnGenerationService, get_generation_service

logger = logging.getLogger(__name__)


router = APIRouter(
    prefix="",
    tags=["Generation"],
    responses={
        400: {"model": ErrorResponse, "description": "Missing fields or malformed image data URL"},
        401: {"model": ErrorResponse, "description": "Missing, invalid or expired session token"},
        402: {"model": ErrorResponse, "description": "Insufficient credits"},
        500: {"model": ErrorResponse, "description": "Generation failed; the credit was refunded"},
    }
)


@router.post(
    "/generate",
    response_model=GenerateResponse,
    response_model_exclude_none=True,
    summary="Composite a garment onto the user's photo",
    description="""Consumes one credit, sends both photos to the image edit provider
    with a fixed try-on prompt and returns the result.

    The result is published to the public bucket; if publishing fails the image
    is returned inline as a data URL and `debug_upload_error` explains why.
    Any failure after the credit was taken refunds it before responding.
    """,
)
async def generate(
    payload: GenerateRequest,
    authorization: Optional[str] = Header(None),
    service: TryOnGenerationService = Depends(get_generation_service),
) -> GenerateResponse:
    outcome = await service.generate(authorization, payload)
    return GenerateResponse(
        success=True,
        image_url=outcome.image_url,
        remaining_credits=outcome.remaining_credits,
        debug_upload_error=outcome.publish_error,
    )
