"""
Recipes router: catalog, detail, writes, like/favorite toggles and image upload.

Endpoints:
- GET /recipes - Catalog listing (category, search, author_id filters)
- POST /recipes - Create a recipe owned by the caller
- GET /recipes/{recipe_id} - Recipe detail with like count and viewer flags
- PATCH /recipes/{recipe_id} - Update an owned recipe
- DELETE /recipes/{recipe_id} - Delete an owned recipe
- POST /recipes/{recipe_id}/like - Toggle the caller's like
- POST /recipes/{recipe_id}/favorite - Toggle the caller's favorite
- GET /favorites - The caller's favorited recipes
- POST /images - Upload a recipe image

Errors from recipeshare components are mapped to HTTP status codes by the
exception handler registered in api.main.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, File, Query, Response, UploadFile, status
from pydantic import ValidationError

from api.config import AppConfig
from api.deps import get_backend, get_optional_session, get_session
from api.schemas import ImageUploadResponse, RecipeDetailResponse, RecipeListResponse
from recipeshare.backends.base import Backend, Session
from recipeshare.catalog import CatalogSynchronizer
from recipeshare.detail import DetailResolver, DetailState, DetailView
from recipeshare.errors import GatewayFailure, InvalidInput, NotFound
from recipeshare.images import upload_recipe_image
from recipeshare.models import Recipe, RecipeCreate, RecipeFilters, RecipeUpdate
from recipeshare.mutations import MutationCoordinator

logger = logging.getLogger(__name__)

router = APIRouter(tags=["recipes"])


def _detail_response(view: DetailView) -> RecipeDetailResponse:
    """Turn a loaded DetailView into a response, raising for non-found states."""
    if view.state == DetailState.NOT_FOUND:
        raise NotFound(f"Recipe {view.recipe_id} not found")
    if view.state == DetailState.ERRORED:
        raise GatewayFailure(view.error or "Failed to load recipe")
    return RecipeDetailResponse(recipe=view.recipe, is_owner=view.is_owner)


@router.get(
    "/recipes",
    response_model=RecipeListResponse,
    summary="List recipes",
    description="List recipes newest first, optionally filtered by category, search text and author. "
                "Signed-in callers get is_liked/is_favorited flags.",
)
async def list_recipes(
    category: Optional[str] = Query(None, description="Category, or 'all' for no filter"),
    search: Optional[str] = Query(None, description="Case-insensitive match on title or cooking steps"),
    author_id: Optional[str] = Query(None, description="Only recipes owned by this user"),
    backend: Backend = Depends(get_backend),
    session: Optional[Session] = Depends(get_optional_session),
) -> RecipeListResponse:
    try:
        filters = RecipeFilters(category=category, search=search, author_id=author_id)
    except ValidationError as e:
        raise InvalidInput(str(e)) from e

    recipes = await CatalogSynchronizer(backend.gateway, session).list(filters)
    return RecipeListResponse(results=recipes, count=len(recipes))


@router.post(
    "/recipes",
    response_model=Recipe,
    status_code=status.HTTP_201_CREATED,
    summary="Create a recipe",
)
async def create_recipe(
    payload: RecipeCreate,
    backend: Backend = Depends(get_backend),
    session: Session = Depends(get_session),
) -> Recipe:
    return await MutationCoordinator(backend.gateway, session).create(payload)


@router.get(
    "/recipes/{recipe_id}",
    response_model=RecipeDetailResponse,
    summary="Get a recipe",
    description="Recipe with full author profile, like count and the caller's like/favorite flags.",
)
async def get_recipe(
    recipe_id: str,
    backend: Backend = Depends(get_backend),
    session: Optional[Session] = Depends(get_optional_session),
) -> RecipeDetailResponse:
    view = await DetailResolver(backend.gateway, session).get(recipe_id)
    return _detail_response(view)


@router.patch(
    "/recipes/{recipe_id}",
    response_model=Recipe,
    summary="Update a recipe",
    description="Only the owner can update a recipe. Only fields present in the body are changed.",
)
async def update_recipe(
    recipe_id: str,
    payload: RecipeUpdate,
    backend: Backend = Depends(get_backend),
    session: Session = Depends(get_session),
) -> Recipe:
    return await MutationCoordinator(backend.gateway, session).update(recipe_id, payload)


@router.delete(
    "/recipes/{recipe_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete a recipe",
)
async def delete_recipe(
    recipe_id: str,
    backend: Backend = Depends(get_backend),
    session: Session = Depends(get_session),
) -> Response:
    await MutationCoordinator(backend.gateway, session).delete(recipe_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post(
    "/recipes/{recipe_id}/like",
    response_model=RecipeDetailResponse,
    summary="Toggle like",
)
async def toggle_like(
    recipe_id: str,
    backend: Backend = Depends(get_backend),
    session: Session = Depends(get_session),
) -> RecipeDetailResponse:
    view = await DetailResolver(backend.gateway, session).get(recipe_id)
    _detail_response(view)
    await view.toggle_like()
    return _detail_response(view)


@router.post(
    "/recipes/{recipe_id}/favorite",
    response_model=RecipeDetailResponse,
    summary="Toggle favorite",
)
async def toggle_favorite(
    recipe_id: str,
    backend: Backend = Depends(get_backend),
    session: Session = Depends(get_session),
) -> RecipeDetailResponse:
    view = await DetailResolver(backend.gateway, session).get(recipe_id)
    _detail_response(view)
    await view.toggle_favorite()
    return _detail_response(view)


@router.get(
    "/favorites",
    response_model=RecipeListResponse,
    summary="List favorites",
    description="The caller's favorited recipes, most recently favorited first.",
)
async def list_favorites(
    backend: Backend = Depends(get_backend),
    session: Session = Depends(get_session),
) -> RecipeListResponse:
    recipes = await CatalogSynchronizer(backend.gateway, session).list_favorites()
    return RecipeListResponse(results=recipes, count=len(recipes))


@router.post(
    "/images",
    response_model=ImageUploadResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Upload a recipe image",
)
async def upload_image(
    file: UploadFile = File(..., description="Image file (jpg, jpeg, png, gif, webp)"),
    backend: Backend = Depends(get_backend),
    session: Session = Depends(get_session),
) -> ImageUploadResponse:
    data = await file.read()
    url = await upload_recipe_image(
        backend.storage,
        session,
        file.filename or "",
        data,
        content_type=file.content_type,
        bucket=AppConfig.get_image_bucket(),
    )
    return ImageUploadResponse(url=url)
