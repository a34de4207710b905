"""
Pydantic schemas for FastAPI request and response models.

This module defines the request/response models of the HTTP API. Recipe and
profile payloads reuse the domain models from recipeshare.models directly
(RecipeCreate, RecipeUpdate, ProfileUpdate, AnnotatedRecipe, Profile); the
models here only wrap them for the API contract.

The schemas include:
- RecipeListResponse: Catalog and favorites listings
- RecipeDetailResponse: A single annotated recipe
- SignUpRequest / SignInRequest / SessionResponse: Account endpoints
- ImageUploadResponse: Public URL of an uploaded image
"""

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from recipeshare.models import AnnotatedRecipe, Profile


class RecipeListResponse(BaseModel):
    """
    Response model for recipe listings.

    Recipes are ordered newest first (favorites: most recently favorited first).
    """
    results: List[AnnotatedRecipe] = Field(..., description="Annotated recipes")
    count: int = Field(..., ge=0, description="Number of recipes returned")


class RecipeDetailResponse(BaseModel):
    """Response model for a single recipe."""
    recipe: AnnotatedRecipe = Field(..., description="Recipe with author, like count and viewer flags")
    is_owner: bool = Field(default=False, description="Whether the caller owns this recipe")


class SignUpRequest(BaseModel):
    """Request model for account registration."""
    email: str = Field(..., min_length=3, description="Account email")
    password: str = Field(..., min_length=1, description="Account password")
    full_name: str = Field("", max_length=200, description="Display name for the profile")

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "email": "ada@example.com",
                "password": "correct-horse",
                "full_name": "Ada Lovelace",
            }
        }
    )


class SignInRequest(BaseModel):
    """Request model for signing in."""
    email: str = Field(..., description="Account email")
    password: str = Field(..., description="Account password")


class SessionResponse(BaseModel):
    """
    Response model for sign-up/sign-in.

    ``access_token`` is None when the backend requires email confirmation
    before issuing a session.
    """
    user_id: Optional[str] = Field(None, description="Identity of the signed-in user")
    email: Optional[str] = Field(None, description="Account email")
    access_token: Optional[str] = Field(None, description="Bearer token for subsequent requests")
    token_type: str = Field(default="bearer")
    confirmation_required: bool = Field(default=False, description="True if sign-up awaits email confirmation")


class MeResponse(BaseModel):
    """Response model for the current session and its profile."""
    user_id: str
    email: Optional[str] = None
    profile: Optional[Profile] = None


class ImageUploadResponse(BaseModel):
    """Response model for image uploads."""
    url: str = Field(..., description="Public URL of the uploaded image")
