"""
FastAPI application for the Recipe Share API.

This module wires the REST API for the recipe-sharing backend:
- /recipes, /favorites, /images: Catalog, detail, writes and toggles (api/routers/recipes.py)
- /auth/*, /profiles, /profile: Accounts and profiles (api/routers/accounts.py)
- /health: Health check

Callers authenticate with an ``Authorization: Bearer <token>`` header obtained
from /auth/login or /auth/signup. Without Supabase credentials the API runs on
the in-memory backend (data resets on restart).

Run the API with:
    uvicorn api.main:app --reload

Access API documentation at:
    http://localhost:8000/docs (Swagger UI)
    http://localhost:8000/redoc (ReDoc)
"""

# Import config early to load .env file before any other code accesses environment variables
import api.config  # noqa: F401

import logging
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from api.config import configure_logging, get_backend_mode
from api.deps import close_backend
from api.routers import accounts, recipes
from recipeshare.errors import (
    GatewayFailure,
    InvalidInput,
    NotAuthenticated,
    NotAuthorized,
    NotFound,
    RecipeShareError,
)

configure_logging()
logger = logging.getLogger(__name__)

# Track app start time for uptime calculation
_APP_START_TIME = time.time()

API_NAME = "Recipe Share API"
API_VERSION = "1.0.0"
API_DESCRIPTION = "Backend API for sharing recipes: browse, search, like, favorite and manage your own recipes"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Close backend HTTP clients when the server shuts down."""
    yield
    await close_backend()


app = FastAPI(
    title=API_NAME,
    description=API_DESCRIPTION,
    version=API_VERSION,
    lifespan=lifespan,
    openapi_tags=[
        {
            "name": "recipes",
            "description": "Browse, create, update and delete recipes; toggle likes and favorites.",
        },
        {
            "name": "accounts",
            "description": "Sign up, sign in and manage profiles. Use the returned access token as a Bearer token.",
        },
        {
            "name": "health",
            "description": "Health check and monitoring endpoints.",
        },
    ],
)

# Most specific classes first; lookup walks this in order.
_ERROR_STATUS = (
    (NotAuthenticated, status.HTTP_401_UNAUTHORIZED),
    (NotAuthorized, status.HTTP_403_FORBIDDEN),
    (NotFound, status.HTTP_404_NOT_FOUND),
    (InvalidInput, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (GatewayFailure, status.HTTP_502_BAD_GATEWAY),
)


def status_for_error(exc: RecipeShareError) -> int:
    """Map a domain error to its HTTP status code (500 for unknown subclasses)."""
    for error_cls, code in _ERROR_STATUS:
        if isinstance(exc, error_cls):
            return code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


@app.exception_handler(RecipeShareError)
async def recipeshare_error_handler(request: Request, exc: RecipeShareError) -> JSONResponse:
    code = status_for_error(exc)
    if code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    else:
        logger.info("%s %s rejected (%d): %s", request.method, request.url.path, code, exc)
    headers = {"WWW-Authenticate": "Bearer"} if code == status.HTTP_401_UNAUTHORIZED else None
    return JSONResponse(status_code=code, content={"detail": exc.message}, headers=headers)


app.include_router(recipes.router)
app.include_router(accounts.router)


@app.get("/health", tags=["health"])
def health():
    """
    Health check endpoint for monitoring and status checks.

    Returns:
        Dictionary with status, API metadata, uptime information and backend mode.
        Always returns 200 OK if the endpoint is reachable.
    """
    uptime_seconds = int(time.time() - _APP_START_TIME)
    return {
        "status": "ok",
        "name": API_NAME,
        "version": API_VERSION,
        "description": API_DESCRIPTION,
        "uptime_seconds": uptime_seconds,
        "backend": get_backend_mode(),
    }


@app.get("/")
def root():
    """
    Root endpoint providing API information.

    Returns:
        Dictionary with API name and version
    """
    return {
        "name": API_NAME,
        "version": API_VERSION,
        "description": API_DESCRIPTION,
        "docs": "/docs",
    }
