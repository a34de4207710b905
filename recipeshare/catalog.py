"""
Catalog synchronizer: filtered recipe listings annotated for the current user.

Listing flow:
    list(filters) -> gateway.select(recipes + author + like count)
                  -> (signed in) gather(likes lookup, favorites lookup)
                  -> AnnotatedRecipe[] with is_liked / is_favorited

Results are always newest first. Annotation is all-or-nothing: if either
membership lookup fails the whole listing fails with one error, so a caller
never sees a half-annotated collection.

The synchronizer also owns the in-memory collection that a listing view works
against. ``refresh`` is the view boundary: it records loading/error state
instead of raising and drops results that arrive for a superseded fetch or
after the view was closed. MutationCoordinator updates the same collection.
"""

import asyncio
import logging
from typing import List, Optional, Set

from recipeshare.backends.base import BaseGateway, Embed, Query, Session, eq, ilike, in_
from recipeshare.errors import NotAuthenticated, RecipeShareError
from recipeshare.models import AnnotatedRecipe, RecipeFilters

logger = logging.getLogger(__name__)

RECIPES_TABLE = "recipes"
LIKES_TABLE = "recipe_likes"
FAVORITES_TABLE = "recipe_favorites"

# Author data shown on recipe cards
AUTHOR_SUMMARY = Embed(
    alias="profiles",
    table="profiles",
    columns=("id", "full_name", "avatar_url"),
    local_key="user_id",
)

# Author data shown on the detail page (adds bio)
AUTHOR_FULL = Embed(
    alias="profiles",
    table="profiles",
    columns=("id", "full_name", "avatar_url", "bio"),
    local_key="user_id",
)

LIKES_COUNT = Embed(
    alias="recipe_likes",
    table="recipe_likes",
    foreign_key="recipe_id",
    many=True,
    count_only=True,
)


def build_catalog_query(filters: RecipeFilters) -> Query:
    """
    Build the listing query for the given filters.

    Examples:
        >>> q = build_catalog_query(RecipeFilters(category="dessert", search="choc"))
        >>> q.order_by, q.descending
        ('created_at', True)
    """
    query = Query(
        table=RECIPES_TABLE,
        embeds=(AUTHOR_SUMMARY, LIKES_COUNT),
    ).order("created_at", descending=True)

    if filters.category and filters.category != "all":
        query = query.where(eq("category", filters.category))

    if filters.search:
        pattern = f"%{filters.search}%"
        query = query.where_any(ilike("title", pattern), ilike("cooking_steps", pattern))

    if filters.author_id:
        query = query.where(eq("user_id", filters.author_id))

    return query


async def fetch_membership_ids(
    gateway: BaseGateway,
    table: str,
    recipe_ids: List[str],
    session: Session,
) -> Set[str]:
    """Return the subset of ``recipe_ids`` the session's user has a row for in ``table``."""
    rows = await gateway.select(
        Query(table=table, columns=("recipe_id",)).where(
            eq("user_id", session.user_id),
            in_("recipe_id", recipe_ids),
        ),
        session=session,
    )
    return {row["recipe_id"] for row in rows}


async def annotate(
    gateway: BaseGateway,
    recipes: List[AnnotatedRecipe],
    session: Optional[Session],
) -> List[AnnotatedRecipe]:
    """
    Set is_liked / is_favorited on ``recipes`` for the session's user.

    Both lookups are issued together and awaited jointly. Any failure
    propagates; nothing is annotated unless both lookups succeed.
    """
    if session is None or not recipes:
        return recipes

    recipe_ids = [r.id for r in recipes]
    liked_ids, favorited_ids = await asyncio.gather(
        fetch_membership_ids(gateway, LIKES_TABLE, recipe_ids, session),
        fetch_membership_ids(gateway, FAVORITES_TABLE, recipe_ids, session),
    )
    return [
        r.model_copy(update={"is_liked": r.id in liked_ids, "is_favorited": r.id in favorited_ids})
        for r in recipes
    ]


class CatalogSynchronizer:
    """
    Fetches and holds a recipe collection for one listing view.

    Attributes:
        recipes: Current collection (last successful fetch, then local updates)
        loading: True while a refresh is in flight
        error: Message of the last failed refresh, None after a success
        favorites_only: True when the collection is the user's favorites list
    """

    def __init__(self, gateway: BaseGateway, session: Optional[Session] = None):
        self.gateway = gateway
        self.session = session
        self.recipes: List[AnnotatedRecipe] = []
        self.loading = False
        self.error: Optional[str] = None
        self.favorites_only = False
        self._generation = 0
        self._closed = False

    async def list(self, filters: Optional[RecipeFilters] = None) -> List[AnnotatedRecipe]:
        """
        Fetch recipes matching ``filters``, newest first, annotated for the session.

        Raises:
            RecipeShareError: If any of the queries fail (no partial results)
        """
        filters = filters or RecipeFilters()
        logger.info(
            "Catalog list: category=%r search=%r author_id=%r signed_in=%s",
            filters.category, filters.search, filters.author_id, self.session is not None,
        )
        rows = await self.gateway.select(build_catalog_query(filters), session=self.session)
        recipes = [AnnotatedRecipe.from_row(row) for row in rows]
        recipes = await annotate(self.gateway, recipes, self.session)
        logger.info("Catalog list returned %d recipes", len(recipes))
        return recipes

    async def list_favorites(self) -> List[AnnotatedRecipe]:
        """
        Fetch the signed-in user's favorited recipes, most recently favorited first.

        Favorite rows whose recipe no longer exists are skipped.

        Raises:
            NotAuthenticated: If there is no session
            RecipeShareError: If any query fails
        """
        if self.session is None:
            raise NotAuthenticated("User must be logged in to view favorites")

        query = Query(
            table=FAVORITES_TABLE,
            columns=("recipe_id", "created_at"),
            embeds=(
                Embed(
                    alias="recipes",
                    table=RECIPES_TABLE,
                    local_key="recipe_id",
                    embeds=(AUTHOR_SUMMARY, LIKES_COUNT),
                ),
            ),
        ).where(eq("user_id", self.session.user_id)).order("created_at", descending=True)

        rows = await self.gateway.select(query, session=self.session)
        recipes = []
        orphaned = 0
        for row in rows:
            if row.get("recipes") is None:
                orphaned += 1
                continue
            recipes.append(AnnotatedRecipe.from_row(row["recipes"]))
        if orphaned:
            logger.debug("Skipped %d favorite rows pointing at deleted recipes", orphaned)

        if not recipes:
            return recipes
        liked_ids = await fetch_membership_ids(self.gateway, LIKES_TABLE, [r.id for r in recipes], self.session)
        return [r.model_copy(update={"is_liked": r.id in liked_ids, "is_favorited": True}) for r in recipes]

    async def refresh(self, filters: Optional[RecipeFilters] = None, favorites: bool = False) -> None:
        """
        Reload the collection, recording the outcome on this synchronizer.

        Never raises for fetch failures: the message lands in ``error`` and the
        previous collection is kept. A refresh superseded by a newer one, or
        finishing after ``close()``, leaves the state untouched.
        """
        self._generation += 1
        generation = self._generation
        self.loading = True
        try:
            if favorites:
                recipes = await self.list_favorites()
            else:
                recipes = await self.list(filters)
        except RecipeShareError as e:
            if self._is_current(generation):
                logger.warning("Catalog refresh failed: %s", e)
                self.error = str(e)
                self.loading = False
            return

        if not self._is_current(generation):
            logger.debug("Discarding stale catalog result (generation %d)", generation)
            return
        self.recipes = recipes
        self.favorites_only = favorites
        self.error = None
        self.loading = False

    def _is_current(self, generation: int) -> bool:
        return not self._closed and generation == self._generation

    def close(self) -> None:
        """Detach the view; in-flight refreshes will not touch the state."""
        self._closed = True

    def find(self, recipe_id: str) -> Optional[AnnotatedRecipe]:
        for recipe in self.recipes:
            if recipe.id == recipe_id:
                return recipe
        return None

    def replace(self, recipe_id: str, **changes) -> None:
        self.recipes = [r.model_copy(update=changes) if r.id == recipe_id else r for r in self.recipes]

    def remove(self, recipe_id: str) -> None:
        self.recipes = [r for r in self.recipes if r.id != recipe_id]
