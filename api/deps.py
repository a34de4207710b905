"""
FastAPI dependencies: the shared backend and the caller's session.

Sessions are passed as ``Authorization: Bearer <token>`` and resolved through
the backend's session provider on every request. Components are built per
request with the resolved session injected, never from global user state.
"""

import logging
from typing import Optional

from fastapi import Depends, Header, HTTPException, status

from api.config import AppConfig, SupabaseConfig
from recipeshare.backends.base import Backend, Session
from recipeshare.backends.factory import create_backend

logger = logging.getLogger(__name__)

_BACKEND: Optional[Backend] = None


def get_backend() -> Backend:
    """Return the process-wide backend, creating it from configuration on first use."""
    global _BACKEND
    if _BACKEND is None:
        _BACKEND = create_backend(
            SupabaseConfig.get_url(),
            SupabaseConfig.get_anon_key(),
            timeout=AppConfig.get_gateway_timeout(),
        )
    return _BACKEND


def reset_backend(backend: Optional[Backend] = None) -> None:
    """Replace the backend (None rebuilds from configuration on next use). Used by tests."""
    global _BACKEND
    _BACKEND = backend


async def close_backend() -> None:
    """Close the process-wide backend's network clients; the next request rebuilds it."""
    global _BACKEND
    if _BACKEND is not None:
        backend, _BACKEND = _BACKEND, None
        await backend.aclose()
        logger.info("Closed %s backend", backend.mode)


def _bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


async def get_optional_session(
    authorization: Optional[str] = Header(None, description="Bearer access token"),
    backend: Backend = Depends(get_backend),
) -> Optional[Session]:
    """
    Resolve the caller's session, or None for anonymous requests.

    Raises:
        HTTPException 401: If a token is supplied but is not valid
    """
    token = _bearer_token(authorization)
    if token is None:
        if authorization:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Authorization header must be 'Bearer <token>'",
                headers={"WWW-Authenticate": "Bearer"},
            )
        return None
    session = await backend.sessions.resolve(token)
    if session is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired access token",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return session


async def get_session(session: Optional[Session] = Depends(get_optional_session)) -> Session:
    """
    Require a signed-in caller.

    Raises:
        HTTPException 401: If no session was supplied
    """
    if session is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User must be logged in",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return session
