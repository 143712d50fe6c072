"""Pydantic models for API request and response schemas.

Field names follow the mobile client's camelCase JSON through aliases.
Required fields are declared optional here so that their absence is
reported as a 400 ``missing_fields`` error by the endpoint rather than a
generic validation error.
"""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class GenerateRequest(BaseModel):
    """Try-on generation request."""

    model_config = ConfigDict(populate_by_name=True)

    user_email: Optional[str] = Field(
        None,
        alias="userEmail",
        description="Email the client believes is signed in; the verified identity wins",
        examples=["jane@example.com"],
    )
    base_image: Optional[str] = Field(
        None,
        alias="baseImage",
        description="Person photo as a base64 data URL",
        examples=["data:image/jpeg;base64,/9j/4AAQSkZJRg..."],
    )
    product_image: Optional[str] = Field(
        None,
        alias="productImage",
        description="Garment photo as a base64 data URL",
        examples=["data:image/png;base64,iVBORw0KGgo..."],
    )
    prompt_mode: Optional[str] = Field(
        None,
        alias="promptMode",
        description="Accepted for client compatibility; the prompt is fixed",
    )
    aspect_ratio: Optional[str] = Field(
        None,
        alias="aspectRatio",
        description="portrait (default), landscape or square; unknown values use the default",
        examples=["portrait"],
    )

    def missing_fields(self) -> List[str]:
        required = {"userEmail": self.user_email, "baseImage": self.base_image, "productImage": self.product_image}
        return [name for name, value in required.items() if not value]


class GenerateResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    image_url: str = Field(..., alias="imageUrl", description="Public URL, or inline data URL when publishing failed")
    remaining_credits: int = Field(..., alias="remainingCredits")
    debug_upload_error: Optional[str] = Field(None, description="Set when the image could not be published")


class CreditsResponse(BaseModel):
    credits: int = Field(..., ge=0)
    error: Optional[str] = None


class GenerationItem(BaseModel):
    id: int
    created_at: datetime
    image_url: Optional[str] = None
    model: Optional[str] = None
    status: str


class GenerationsResponse(BaseModel):
    generations: List[GenerationItem]


class ErrorResponse(BaseModel):
    error: str
    message: str
