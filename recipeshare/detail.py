"""
Detail resolver: one recipe with its author, like count and viewer flags.

Unlike catalog listings, the recipe itself is the subject here, so only the
primary fetch can fail the view. The like count and the two membership
lookups run concurrently with it and degrade on failure (count 0, flags
false) instead of aborting.

Each DetailView moves Loading -> Found | NotFound | Errored once per load().
Calling load() again starts over from Loading. A view closed while its load
is in flight ignores the result.
"""

import asyncio
import logging
from enum import Enum
from typing import Any, Optional

from recipeshare.backends.base import BaseGateway, Query, Session, eq
from recipeshare.catalog import AUTHOR_FULL, FAVORITES_TABLE, LIKES_TABLE, RECIPES_TABLE
from recipeshare.errors import GatewayFailure, NotAuthenticated, NotAuthorized, NotFound, RecipeShareError
from recipeshare.models import AnnotatedRecipe
from recipeshare.mutations import MutationCoordinator, write_membership

logger = logging.getLogger(__name__)


class DetailState(str, Enum):
    LOADING = "loading"
    FOUND = "found"
    NOT_FOUND = "not_found"
    ERRORED = "errored"


async def _has_membership(gateway: BaseGateway, table: str, recipe_id: str, session: Session) -> bool:
    # Zero rows means "not a member"; only an exception is a failure
    rows = await gateway.select(
        Query(table=table, columns=("id",))
        .where(eq("recipe_id", recipe_id), eq("user_id", session.user_id))
        .take(1),
        session=session,
    )
    return bool(rows)


async def _no_membership() -> bool:
    return False


def _degrade(result: Any, default: Any, what: str, recipe_id: str) -> Any:
    if isinstance(result, BaseException):
        logger.warning("%s lookup for recipe %s failed, using %r: %s", what, recipe_id, default, result)
        return default
    return result


class DetailView:
    """
    State for one recipe detail view.

    Attributes:
        recipe_id: Recipe being shown
        state: Current DetailState
        recipe: The recipe when state is FOUND
        error: Failure message when state is ERRORED
    """

    def __init__(self, resolver: "DetailResolver", recipe_id: str):
        self.resolver = resolver
        self.recipe_id = recipe_id
        self.state = DetailState.LOADING
        self.recipe: Optional[AnnotatedRecipe] = None
        self.error: Optional[str] = None
        self._mounted = True
        self._generation = 0

    @property
    def session(self) -> Optional[Session]:
        return self.resolver.session

    @property
    def likes_count(self) -> int:
        return self.recipe.likes_count if self.recipe else 0

    @property
    def is_liked(self) -> bool:
        return bool(self.recipe and self.recipe.is_liked)

    @property
    def is_favorited(self) -> bool:
        return bool(self.recipe and self.recipe.is_favorited)

    @property
    def is_owner(self) -> bool:
        return bool(self.recipe and self.session and self.recipe.user_id == self.session.user_id)

    async def load(self) -> "DetailView":
        """Fetch the recipe and its annotations; never raises for fetch failures."""
        self._generation += 1
        generation = self._generation
        self.state = DetailState.LOADING
        self.recipe = None
        self.error = None

        gateway = self.resolver.gateway
        session = self.session
        recipe_query = Query(table=RECIPES_TABLE, embeds=(AUTHOR_FULL,)).where(eq("id", self.recipe_id)).take(1)

        if session is not None:
            liked_lookup = _has_membership(gateway, LIKES_TABLE, self.recipe_id, session)
            favorited_lookup = _has_membership(gateway, FAVORITES_TABLE, self.recipe_id, session)
        else:
            liked_lookup = _no_membership()
            favorited_lookup = _no_membership()

        rows, count, liked, favorited = await asyncio.gather(
            gateway.select(recipe_query, session=session),
            gateway.count(LIKES_TABLE, [eq("recipe_id", self.recipe_id)], session=session),
            liked_lookup,
            favorited_lookup,
            return_exceptions=True,
        )

        if not self._mounted or generation != self._generation:
            logger.debug("Discarding detail result for %s: view no longer current", self.recipe_id)
            return self

        if isinstance(rows, BaseException):
            if not isinstance(rows, RecipeShareError):
                logger.error("Unexpected error loading recipe %s", self.recipe_id, exc_info=rows)
            self.state = DetailState.ERRORED
            self.error = str(rows) or rows.__class__.__name__
            return self
        if not rows:
            self.state = DetailState.NOT_FOUND
            return self

        try:
            recipe = AnnotatedRecipe.from_row(rows[0])
        except GatewayFailure as e:
            logger.warning("Recipe %s could not be read: %s", self.recipe_id, e)
            self.state = DetailState.ERRORED
            self.error = str(e)
            return self
        self.recipe = recipe.model_copy(update={
            "likes_count": _degrade(count, 0, "Like count", self.recipe_id),
            "is_liked": _degrade(liked, False, "Like membership", self.recipe_id),
            "is_favorited": _degrade(favorited, False, "Favorite membership", self.recipe_id),
        })
        self.state = DetailState.FOUND
        return self

    def close(self) -> None:
        """Detach the view; a load still in flight will not apply its result."""
        self._mounted = False

    def _require_found(self) -> AnnotatedRecipe:
        if self.recipe is None or self.state != DetailState.FOUND:
            raise NotFound(f"Recipe {self.recipe_id} is not loaded")
        return self.recipe

    def _require_session(self) -> Session:
        if self.session is None:
            raise NotAuthenticated()
        return self.session

    async def toggle_like(self) -> None:
        """Like/unlike the shown recipe, then adjust the flag and count."""
        session = self._require_session()
        recipe = self._require_found()
        await write_membership(self.resolver.gateway, LIKES_TABLE, recipe.id, session, member=not recipe.is_liked)
        if self.recipe is None or self.recipe.id != recipe.id:
            return
        delta = -1 if recipe.is_liked else 1
        self.recipe = self.recipe.model_copy(update={
            "is_liked": not recipe.is_liked,
            "likes_count": max(0, recipe.likes_count + delta),
        })

    async def toggle_favorite(self) -> None:
        """Favorite/unfavorite the shown recipe, then flip the flag."""
        session = self._require_session()
        recipe = self._require_found()
        await write_membership(
            self.resolver.gateway, FAVORITES_TABLE, recipe.id, session, member=not recipe.is_favorited
        )
        if self.recipe is None or self.recipe.id != recipe.id:
            return
        self.recipe = self.recipe.model_copy(update={"is_favorited": not recipe.is_favorited})

    async def delete(self) -> None:
        """
        Delete the shown recipe. Only the owner may; the check runs before any write.

        Raises:
            NotAuthenticated: If there is no session
            NotAuthorized: If the viewer does not own the recipe
        """
        self._require_session()
        recipe = self._require_found()
        if not self.is_owner:
            raise NotAuthorized("Only the owner can delete this recipe")
        await MutationCoordinator(self.resolver.gateway, self.session).delete(recipe.id)
        self.recipe = None
        self.state = DetailState.NOT_FOUND


class DetailResolver:
    """Creates and loads DetailViews for one session."""

    def __init__(self, gateway: BaseGateway, session: Optional[Session] = None):
        self.gateway = gateway
        self.session = session

    def view(self, recipe_id: str) -> DetailView:
        """Create a view in the Loading state without fetching."""
        return DetailView(self, recipe_id)

    async def get(self, recipe_id: str) -> DetailView:
        """Create a view for ``recipe_id`` and load it."""
        logger.info("Resolving recipe %s (signed_in=%s)", recipe_id, self.session is not None)
        return await self.view(recipe_id).load()
