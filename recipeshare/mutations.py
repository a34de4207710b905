"""
Mutation coordinator: recipe writes and like/favorite toggles.

Every write goes through the gateway first; the local collection held by the
CatalogSynchronizer is only touched after the gateway confirms. A failed write
raises to the caller and leaves local state exactly as it was.

Ownership is not checked here. The gateway's access policy decides; a write
that affects no row (policy hid it, or it does not exist) surfaces as
NotAuthorized.
"""

import logging
from typing import Any, Dict, Optional, Union

from pydantic import ValidationError

from recipeshare.backends.base import BaseGateway, Session, eq
from recipeshare.catalog import FAVORITES_TABLE, LIKES_TABLE, RECIPES_TABLE, CatalogSynchronizer
from recipeshare.errors import InvalidInput, NotAuthenticated, NotAuthorized
from recipeshare.models import Recipe, RecipeCreate, RecipeUpdate

logger = logging.getLogger(__name__)


def _validated(model: type, payload: Union[Dict[str, Any], Any]) -> Any:
    if isinstance(payload, model):
        return payload
    try:
        return model.model_validate(payload)
    except ValidationError as e:
        raise InvalidInput(str(e)) from e


async def write_membership(
    gateway: BaseGateway,
    table: str,
    recipe_id: str,
    session: Session,
    member: bool,
) -> None:
    """
    Insert (member=True) or delete (member=False) the session user's membership row.
    """
    if member:
        await gateway.insert(table, {"recipe_id": recipe_id, "user_id": session.user_id}, session=session)
    else:
        await gateway.delete(
            table,
            [eq("recipe_id", recipe_id), eq("user_id", session.user_id)],
            session=session,
        )


class MutationCoordinator:
    """
    Performs writes for a listing view and keeps its collection in step.

    Args:
        gateway: Remote data gateway
        session: Current session, or None when signed out
        catalog: Synchronizer whose collection should reflect confirmed writes
    """

    def __init__(
        self,
        gateway: BaseGateway,
        session: Optional[Session] = None,
        catalog: Optional[CatalogSynchronizer] = None,
    ):
        self.gateway = gateway
        self.session = session
        self.catalog = catalog

    def _require_session(self) -> Session:
        if self.session is None:
            raise NotAuthenticated()
        return self.session

    async def create(self, payload: Union[RecipeCreate, Dict[str, Any]]) -> Recipe:
        """
        Create a recipe owned by the current user.

        Raises:
            NotAuthenticated: If there is no session
            InvalidInput: If the payload fails validation
            GatewayFailure: If the insert fails
        """
        session = self._require_session()
        recipe_in = _validated(RecipeCreate, payload)
        row = await self.gateway.insert(RECIPES_TABLE, recipe_in.to_row(session.user_id), session=session)
        recipe = Recipe.model_validate(row)
        logger.info("Created recipe %s for user %s", recipe.id, session.user_id)
        return recipe

    async def update(self, recipe_id: str, payload: Union[RecipeUpdate, Dict[str, Any]]) -> Recipe:
        """
        Apply the explicitly set fields of ``payload`` to a recipe.

        Raises:
            NotAuthenticated: If there is no session
            InvalidInput: If the payload is invalid or sets no field
            NotAuthorized: If the gateway updated no row
        """
        session = self._require_session()
        changes = _validated(RecipeUpdate, payload).changes()
        if not changes:
            raise InvalidInput("Update must set at least one field")

        rows = await self.gateway.update(RECIPES_TABLE, [eq("id", recipe_id)], changes, session=session)
        if not rows:
            raise NotAuthorized("Recipe not found or not owned by the current user")
        recipe = Recipe.model_validate(rows[0])

        if self.catalog is not None and self.catalog.find(recipe_id) is not None:
            self.catalog.replace(recipe_id, **recipe.model_dump())
        logger.info("Updated recipe %s fields=%s", recipe_id, sorted(changes))
        return recipe

    async def delete(self, recipe_id: str) -> None:
        """
        Delete a recipe owned by the current user.

        Like/favorite rows pointing at it are left in place; listings skip them.

        Raises:
            NotAuthenticated: If there is no session
            NotAuthorized: If the gateway deleted no row
        """
        session = self._require_session()
        rows = await self.gateway.delete(RECIPES_TABLE, [eq("id", recipe_id)], session=session)
        if not rows:
            raise NotAuthorized("Recipe not found or not owned by the current user")
        if self.catalog is not None:
            self.catalog.remove(recipe_id)
        logger.info("Deleted recipe %s", recipe_id)

    async def toggle_like(self, recipe_id: str) -> None:
        """
        Like or unlike a recipe in the local collection.

        The current flag is read from the collection. Recipes that are not in
        the collection are ignored.
        """
        session = self._require_session()
        recipe = self.catalog.find(recipe_id) if self.catalog is not None else None
        if recipe is None:
            logger.debug("toggle_like ignored: recipe %s not in local collection", recipe_id)
            return

        await write_membership(self.gateway, LIKES_TABLE, recipe_id, session, member=not recipe.is_liked)
        delta = -1 if recipe.is_liked else 1
        self.catalog.replace(
            recipe_id,
            is_liked=not recipe.is_liked,
            likes_count=max(0, recipe.likes_count + delta),
        )

    async def toggle_favorite(self, recipe_id: str) -> None:
        """
        Favorite or unfavorite a recipe in the local collection.

        In a favorites listing, unfavoriting also drops the recipe from it.
        Recipes that are not in the collection are ignored.
        """
        session = self._require_session()
        recipe = self.catalog.find(recipe_id) if self.catalog is not None else None
        if recipe is None:
            logger.debug("toggle_favorite ignored: recipe %s not in local collection", recipe_id)
            return

        await write_membership(self.gateway, FAVORITES_TABLE, recipe_id, session, member=not recipe.is_favorited)
        if recipe.is_favorited and self.catalog.favorites_only:
            self.catalog.remove(recipe_id)
        else:
            self.catalog.replace(recipe_id, is_favorited=not recipe.is_favorited)
