"""
Accounts router: sign-up, sign-in, sign-out and profiles.

Endpoints:
- POST /auth/signup - Register an account (creates its profile)
- POST /auth/login - Sign in with email and password
- POST /auth/logout - Invalidate the caller's session
- GET /auth/me - The caller's identity and profile
- GET /profiles/{user_id} - A user's public profile
- PATCH /profile - Update the caller's own profile
"""

import logging

from fastapi import APIRouter, Depends, Response, status

from api.deps import get_backend, get_session
from api.schemas import MeResponse, SessionResponse, SignInRequest, SignUpRequest
from recipeshare.accounts import AccountService
from recipeshare.backends.base import Backend, Session
from recipeshare.errors import NotFound
from recipeshare.models import Profile, ProfileUpdate

logger = logging.getLogger(__name__)

router = APIRouter(tags=["accounts"])


def _accounts(backend: Backend) -> AccountService:
    return AccountService(backend.gateway, backend.sessions)


def _session_response(session: Session) -> SessionResponse:
    return SessionResponse(
        user_id=session.user_id,
        email=session.email,
        access_token=session.access_token,
    )


@router.post(
    "/auth/signup",
    response_model=SessionResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Register an account",
    description="Create an account and its profile. If the backend requires email confirmation, "
                "no access token is returned and confirmation_required is true.",
)
async def sign_up(payload: SignUpRequest, backend: Backend = Depends(get_backend)) -> SessionResponse:
    session = await _accounts(backend).sign_up(payload.email, payload.password, payload.full_name)
    if session is None:
        logger.info("Sign-up for %s awaits email confirmation", payload.email)
        return SessionResponse(email=payload.email, confirmation_required=True)
    return _session_response(session)


@router.post("/auth/login", response_model=SessionResponse, summary="Sign in")
async def sign_in(payload: SignInRequest, backend: Backend = Depends(get_backend)) -> SessionResponse:
    session = await _accounts(backend).sign_in(payload.email, payload.password)
    return _session_response(session)


@router.post("/auth/logout", status_code=status.HTTP_204_NO_CONTENT, summary="Sign out")
async def sign_out(
    backend: Backend = Depends(get_backend),
    session: Session = Depends(get_session),
) -> Response:
    await _accounts(backend).sign_out(session)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/auth/me", response_model=MeResponse, summary="Current user")
async def me(
    backend: Backend = Depends(get_backend),
    session: Session = Depends(get_session),
) -> MeResponse:
    try:
        profile = await _accounts(backend).get_profile(session.user_id, session=session)
    except NotFound:
        profile = None
    return MeResponse(user_id=session.user_id, email=session.email, profile=profile)


@router.get("/profiles/{user_id}", response_model=Profile, summary="Get a profile")
async def get_profile(user_id: str, backend: Backend = Depends(get_backend)) -> Profile:
    return await _accounts(backend).get_profile(user_id)


@router.patch("/profile", response_model=Profile, summary="Update own profile")
async def update_profile(
    payload: ProfileUpdate,
    backend: Backend = Depends(get_backend),
    session: Session = Depends(get_session),
) -> Profile:
    return await _accounts(backend).update_profile(session, payload)
