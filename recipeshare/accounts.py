"""
Account and profile operations.

Sign-up registers the account with the session provider and creates the
matching profiles row right away, so every user has exactly one profile.
"""

import logging
from typing import Any, Dict, Optional, Union

from pydantic import ValidationError

from recipeshare.backends.base import BaseGateway, BaseSessionProvider, Query, Session, eq
from recipeshare.errors import InvalidInput, NotAuthenticated, NotAuthorized, NotFound
from recipeshare.models import Profile, ProfileUpdate

logger = logging.getLogger(__name__)

PROFILES_TABLE = "profiles"


class AccountService:
    """Sign-up/sign-in/sign-out plus profile reads and updates."""

    def __init__(self, gateway: BaseGateway, sessions: BaseSessionProvider):
        self.gateway = gateway
        self.sessions = sessions

    async def sign_up(self, email: str, password: str, full_name: str = "") -> Optional[Session]:
        """
        Register an account and create its profile.

        Returns:
            The new session, or None if the backend requires email confirmation
            first (the profile is then created on first sign-in).
        """
        session = await self.sessions.sign_up(email, password, full_name)
        if session is None:
            return None
        await self.ensure_profile(session, full_name=full_name or None)
        return session

    async def sign_in(self, email: str, password: str) -> Session:
        session = await self.sessions.sign_in(email, password)
        await self.ensure_profile(session)
        logger.info("User %s signed in", session.user_id)
        return session

    async def sign_out(self, session: Optional[Session] = None) -> None:
        await self.sessions.sign_out(session)

    async def ensure_profile(self, session: Session, full_name: Optional[str] = None) -> Profile:
        """Return the session user's profile, creating it if it does not exist yet."""
        rows = await self.gateway.select(
            Query(table=PROFILES_TABLE).where(eq("id", session.user_id)).take(1),
            session=session,
        )
        if rows:
            return Profile.model_validate(rows[0])
        row = await self.gateway.insert(
            PROFILES_TABLE,
            {"id": session.user_id, "full_name": full_name},
            session=session,
        )
        logger.info("Created profile for user %s", session.user_id)
        return Profile.model_validate(row)

    async def get_profile(self, user_id: str, session: Optional[Session] = None) -> Profile:
        """
        Raises:
            NotFound: If the user has no profile
        """
        rows = await self.gateway.select(
            Query(table=PROFILES_TABLE).where(eq("id", user_id)).take(1),
            session=session,
        )
        if not rows:
            raise NotFound(f"Profile {user_id} not found")
        return Profile.model_validate(rows[0])

    async def update_profile(
        self,
        session: Optional[Session],
        payload: Union[ProfileUpdate, Dict[str, Any]],
    ) -> Profile:
        """
        Update the caller's own profile with the explicitly set fields.

        Raises:
            NotAuthenticated: If there is no session
            InvalidInput: If the payload is invalid or empty
            NotAuthorized: If the gateway updated no row
        """
        if session is None:
            raise NotAuthenticated()
        if not isinstance(payload, ProfileUpdate):
            try:
                payload = ProfileUpdate.model_validate(payload)
            except ValidationError as e:
                raise InvalidInput(str(e)) from e
        changes = payload.changes()
        if not changes:
            raise InvalidInput("Update must set at least one field")

        rows = await self.gateway.update(PROFILES_TABLE, [eq("id", session.user_id)], changes, session=session)
        if not rows:
            raise NotAuthorized("Profile not found or not owned by the current user")
        return Profile.model_validate(rows[0])
