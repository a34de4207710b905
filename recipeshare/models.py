"""
Recipe, profile and membership models for the recipe-sharing system.

This module defines the canonical schemas used throughout recipeshare.
Rows returned by a gateway are validated into these models at the component
boundary; nothing downstream handles raw gateway dictionaries.

# NOTE: AnnotatedRecipe carries per-viewer state (is_liked, is_favorited,
    likes_count). It only ever lives in memory and is rebuilt on every fetch.
    RecipeUpdate forbids those fields so they can never be written back.

Row shapes mirror the backing tables:
- profiles(id, full_name, avatar_url, bio, created_at, updated_at)
- recipes(id, title, description, ingredients[], cooking_steps, category, prep_time,
  cook_time, servings, difficulty, image_url, user_id, created_at, updated_at)
- recipe_likes / recipe_favorites(id, recipe_id, user_id, created_at)
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from recipeshare.errors import GatewayFailure


class Category(str, Enum):
    """Recipe categories accepted by the recipes table."""
    VEGETARIAN = "vegetarian"
    NON_VEGETARIAN = "non-vegetarian"
    DESSERT = "dessert"
    APPETIZER = "appetizer"
    MAIN_COURSE = "main-course"
    BEVERAGE = "beverage"


class Difficulty(str, Enum):
    EASY = "easy"
    MEDIUM = "medium"
    HARD = "hard"


def _clean_title(value: str) -> str:
    title = value.strip()
    if not title:
        raise ValueError("title must not be empty")
    return title


def _clean_ingredients(value: List[str]) -> List[str]:
    # Blank lines are dropped, order is kept
    ingredients = [line.strip() for line in value if line and line.strip()]
    if not ingredients:
        raise ValueError("at least one ingredient is required")
    return ingredients


def _clean_steps(value: str) -> str:
    if not value.strip():
        raise ValueError("cooking_steps must not be empty")
    return value


class ProfileSummary(BaseModel):
    """Author data embedded in list views (no bio)."""
    id: str = Field(..., description="Profile identifier (same as the user id)")
    full_name: Optional[str] = Field(None, description="Display name")
    avatar_url: Optional[str] = Field(None, description="URL to the avatar image")

    model_config = ConfigDict(extra="ignore")


class Profile(ProfileSummary):
    """Full profile row, as embedded in the detail view and returned by /profiles."""
    bio: Optional[str] = Field(None, description="Free-text biography")
    created_at: Optional[datetime] = Field(None, description="Creation timestamp (set by the store)")
    updated_at: Optional[datetime] = Field(None, description="Last update timestamp (set by the store)")


class ProfileUpdate(BaseModel):
    """Explicit optional-field update for the caller's own profile."""
    full_name: Optional[str] = Field(None, max_length=200)
    bio: Optional[str] = Field(None, max_length=2000)
    avatar_url: Optional[str] = None

    model_config = ConfigDict(extra="forbid")

    def changes(self) -> Dict[str, Any]:
        """Return only the fields the caller explicitly set."""
        return self.model_dump(exclude_unset=True)


class RecipeCreate(BaseModel):
    """
    Payload for creating a recipe.

    The owner, id and timestamps are never part of the payload: the owner is
    taken from the session and the rest is assigned by the store.
    """
    title: str = Field(..., description="Recipe title", json_schema_extra={"example": "Chocolate Mousse"})
    description: Optional[str] = Field(None, description="Short description")
    ingredients: List[str] = Field(
        ...,
        description="Ordered ingredient lines",
        json_schema_extra={"example": ["200g dark chocolate", "4 eggs", "50g sugar"]},
    )
    cooking_steps: str = Field(..., description="Free-text cooking instructions")
    category: Category = Field(..., description="Recipe category")
    prep_time: Optional[int] = Field(None, ge=0, description="Preparation time in minutes")
    cook_time: Optional[int] = Field(None, ge=0, description="Cooking time in minutes")
    servings: Optional[int] = Field(None, ge=1, description="Number of servings")
    difficulty: Optional[Difficulty] = Field(None, description="easy, medium or hard")
    image_url: Optional[str] = Field(None, description="Public URL of the recipe image")

    model_config = ConfigDict(extra="forbid")

    @field_validator("title")
    @classmethod
    def _title(cls, v: str) -> str:
        return _clean_title(v)

    @field_validator("ingredients")
    @classmethod
    def _ingredients(cls, v: List[str]) -> List[str]:
        return _clean_ingredients(v)

    @field_validator("cooking_steps")
    @classmethod
    def _steps(cls, v: str) -> str:
        return _clean_steps(v)

    def to_row(self, user_id: str) -> Dict[str, Any]:
        """Build the insert row for the recipes table."""
        row = self.model_dump(mode="json")
        row["user_id"] = user_id
        return row


class RecipeUpdate(BaseModel):
    """
    Explicit optional-field update for a recipe.

    Only fields that were explicitly set are sent to the gateway. Unknown keys,
    including the per-viewer flags and the owner reference, are rejected.
    """
    title: Optional[str] = None
    description: Optional[str] = None
    ingredients: Optional[List[str]] = None
    cooking_steps: Optional[str] = None
    category: Optional[Category] = None
    prep_time: Optional[int] = Field(None, ge=0)
    cook_time: Optional[int] = Field(None, ge=0)
    servings: Optional[int] = Field(None, ge=1)
    difficulty: Optional[Difficulty] = None
    image_url: Optional[str] = None

    model_config = ConfigDict(extra="forbid")

    @field_validator("title")
    @classmethod
    def _title(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            raise ValueError("title cannot be cleared")
        return _clean_title(v)

    @field_validator("ingredients")
    @classmethod
    def _ingredients(cls, v: Optional[List[str]]) -> Optional[List[str]]:
        if v is None:
            raise ValueError("ingredients cannot be cleared")
        return _clean_ingredients(v)

    @field_validator("cooking_steps")
    @classmethod
    def _steps(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            raise ValueError("cooking_steps cannot be cleared")
        return _clean_steps(v)

    @field_validator("category")
    @classmethod
    def _category(cls, v: Optional[Category]) -> Optional[Category]:
        if v is None:
            raise ValueError("category cannot be cleared")
        return v

    def changes(self) -> Dict[str, Any]:
        """Return the explicitly set fields, JSON-ready."""
        return self.model_dump(mode="json", exclude_unset=True)


class Recipe(BaseModel):
    """A persisted recipe row."""
    id: str = Field(..., description="Opaque unique identifier")
    title: str
    description: Optional[str] = None
    ingredients: List[str] = Field(default_factory=list)
    cooking_steps: str = ""
    category: Category
    prep_time: Optional[int] = None
    cook_time: Optional[int] = None
    servings: Optional[int] = None
    difficulty: Optional[Difficulty] = None
    image_url: Optional[str] = None
    user_id: str = Field(..., description="Owner identity, immutable after creation")
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(extra="ignore")


class AnnotatedRecipe(Recipe):
    """
    A recipe joined with its author and decorated with the viewer's flags.

    Built fresh on every list/detail fetch and never persisted.
    """
    profiles: Optional[Profile] = Field(None, description="Owner profile (embedded join)")
    likes_count: int = Field(default=0, ge=0, description="Number of like rows for this recipe")
    is_liked: bool = Field(default=False, description="Whether the current user liked this recipe")
    is_favorited: bool = Field(default=False, description="Whether the current user favorited this recipe")

    model_config = ConfigDict(
        extra="ignore",
        json_schema_extra={
            "example": {
                "id": "3f1c2a9e-1d0b-4a53-9d43-5b6f8e2c1a77",
                "title": "Chocolate Mousse",
                "ingredients": ["200g dark chocolate", "4 eggs"],
                "cooking_steps": "Melt the chocolate...",
                "category": "dessert",
                "user_id": "u1",
                "created_at": "2024-05-01T10:00:00Z",
                "updated_at": "2024-05-01T10:00:00Z",
                "profiles": {"id": "u1", "full_name": "Ada"},
                "likes_count": 3,
                "is_liked": False,
                "is_favorited": True,
            }
        },
    )

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "AnnotatedRecipe":
        """
        Validate a gateway row (with embeds) into an AnnotatedRecipe.

        The like aggregate arrives as ``recipe_likes: [{"count": n}]``; it is
        flattened into ``likes_count``. Flags are never read from the row.

        Raises:
            GatewayFailure: If the row does not have the shape of a recipe
        """
        data = dict(row)
        aggregate = data.pop("recipe_likes", None)
        if isinstance(aggregate, list) and aggregate:
            data["likes_count"] = int(aggregate[0].get("count") or 0)
        data.pop("is_liked", None)
        data.pop("is_favorited", None)
        try:
            return cls.model_validate(data)
        except ValidationError as e:
            raise GatewayFailure(f"Malformed recipe row {row.get('id')!r}: {e.error_count()} invalid field(s)") from e


class MembershipRow(BaseModel):
    """A like or favorite row linking a user to a recipe."""
    id: Optional[str] = None
    recipe_id: str
    user_id: str
    created_at: Optional[datetime] = None

    model_config = ConfigDict(extra="ignore")


class RecipeFilters(BaseModel):
    """
    Recognised catalog filters.

    Attributes:
        category: Exact category match; "all" or None disables the filter
        search: Case-insensitive substring matched against title OR cooking_steps
        author_id: Exact owner match
    """
    category: Optional[str] = None
    search: Optional[str] = None
    author_id: Optional[str] = None

    model_config = ConfigDict(extra="forbid")

    @field_validator("category")
    @classmethod
    def _category(cls, v: Optional[str]) -> Optional[str]:
        if v is None or v == "all":
            return v
        # Raises ValueError for unknown categories
        return Category(v).value

    @field_validator("search")
    @classmethod
    def _search(cls, v: Optional[str]) -> Optional[str]:
        # Matched as typed; only the empty string turns the filter off
        return v or None
