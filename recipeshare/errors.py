"""
Error taxonomy for the recipe-sharing components.

Every failure a component surfaces to its caller is one of these classes, so the
HTTP layer (and any other caller) can map them without knowing which backend
produced them:

- NotAuthenticated: a mutation was attempted without a session
- NotAuthorized: the gateway's access policy rejected the write (non-owner)
- NotFound: a single-entity fetch returned no row
- InvalidInput: a payload failed validation before it was dispatched
- GatewayFailure: network/query error, message passed through verbatim
"""

from typing import Optional


class RecipeShareError(Exception):
    """Base class for all errors surfaced by recipeshare components."""

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        return self.message


class NotAuthenticated(RecipeShareError):
    """Raised when an operation needs a session and none is present."""

    def __init__(self, message: str = "User must be logged in"):
        super().__init__(message)


class NotAuthorized(RecipeShareError):
    """Raised when the gateway refuses a write for the current identity."""

    def __init__(self, message: str = "Not allowed to modify this resource"):
        super().__init__(message)


class NotFound(RecipeShareError):
    """Raised when a single-entity lookup matches no row."""


class InvalidInput(RecipeShareError):
    """Raised when a payload is rejected before reaching the gateway."""


class GatewayFailure(RecipeShareError):
    """
    Raised when a gateway call fails for any reason other than policy.

    Attributes:
        code: Backend-specific error code if one was reported (e.g. "23505")
    """

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.code = code
