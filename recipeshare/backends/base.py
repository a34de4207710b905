"""
Abstract contracts for the external collaborators.

Recipeshare never talks to a database, an auth server or a blob store directly.
It talks to three small contracts defined here, and every backend (Supabase,
in-memory) implements all three:

- BaseGateway: declarative filtered/joined selects plus row-level writes
- BaseSessionProvider: sign-up/sign-in/sign-out and token resolution
- BaseStorage: upload a file to a bucket and build its public URL

Every gateway call receives the caller's Session (or None for anonymous calls)
so the backend can apply its row-level access policy. Writes that the policy
hides affect zero rows; inserts that the policy rejects raise NotAuthorized.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, replace
from typing import Any, Dict, List, Optional, Sequence, Tuple

from pydantic import BaseModel, Field


class Session(BaseModel):
    """An authenticated identity handed to components explicitly."""
    user_id: str = Field(..., description="Identity of the signed-in user")
    email: Optional[str] = Field(None, description="Email the account was registered with")
    access_token: str = Field(..., description="Bearer token for the backend")


@dataclass(frozen=True)
class Filter:
    """A single column predicate: eq, ilike or in."""
    column: str
    op: str
    value: Any

    def __post_init__(self):
        if self.op not in ("eq", "ilike", "in"):
            raise ValueError(f"Unsupported filter operator: {self.op!r}")


def eq(column: str, value: Any) -> Filter:
    return Filter(column, "eq", value)


def ilike(column: str, pattern: str) -> Filter:
    return Filter(column, "ilike", pattern)


def in_(column: str, values: Sequence[Any]) -> Filter:
    return Filter(column, "in", tuple(values))


@dataclass(frozen=True)
class AnyOf:
    """A disjunction of filters (rendered as PostgREST ``or=(...)``)."""
    filters: Tuple[Filter, ...]


@dataclass(frozen=True)
class Embed:
    """
    A join embedded into each returned row under ``alias``.

    To-one embeds (many=False) follow ``local_key`` on the parent row to
    ``foreign_key`` on the embedded table and yield a dict or None. To-many
    embeds yield a list; with ``count_only`` they yield ``[{"count": n}]``.
    """
    alias: str
    table: str
    columns: Tuple[str, ...] = ("*",)
    local_key: str = "id"
    foreign_key: str = "id"
    many: bool = False
    count_only: bool = False
    embeds: Tuple["Embed", ...] = ()


@dataclass(frozen=True)
class Query:
    """A declarative select against one table."""
    table: str
    columns: Tuple[str, ...] = ("*",)
    embeds: Tuple[Embed, ...] = ()
    filters: Tuple[Filter, ...] = ()
    any_of: Tuple[AnyOf, ...] = ()
    order_by: Optional[str] = None
    descending: bool = False
    limit: Optional[int] = None

    def where(self, *filters: Filter) -> "Query":
        return replace(self, filters=self.filters + tuple(filters))

    def where_any(self, *filters: Filter) -> "Query":
        return replace(self, any_of=self.any_of + (AnyOf(tuple(filters)),))

    def order(self, column: str, descending: bool = False) -> "Query":
        return replace(self, order_by=column, descending=descending)

    def take(self, limit: int) -> "Query":
        return replace(self, limit=limit)


class BaseGateway(ABC):
    """
    Abstract remote data gateway.

    Implementations translate backend errors into recipeshare.errors:
    policy rejections become NotAuthorized, everything else GatewayFailure.
    """
    backend: str

    @abstractmethod
    async def select(self, query: Query, session: Optional[Session] = None) -> List[Dict[str, Any]]:
        """Run a select and return matching rows (with embeds applied)."""

    @abstractmethod
    async def count(
        self,
        table: str,
        filters: Sequence[Filter] = (),
        session: Optional[Session] = None,
    ) -> int:
        """Return the exact number of rows matching ``filters``."""

    @abstractmethod
    async def insert(self, table: str, row: Dict[str, Any], session: Optional[Session] = None) -> Dict[str, Any]:
        """Insert one row and return it as stored (id and timestamps filled in)."""

    @abstractmethod
    async def update(
        self,
        table: str,
        filters: Sequence[Filter],
        fields: Dict[str, Any],
        session: Optional[Session] = None,
    ) -> List[Dict[str, Any]]:
        """Update matching rows visible to ``session``; return the updated rows."""

    @abstractmethod
    async def delete(
        self,
        table: str,
        filters: Sequence[Filter],
        session: Optional[Session] = None,
    ) -> List[Dict[str, Any]]:
        """Delete matching rows visible to ``session``; return the deleted rows."""

    async def aclose(self) -> None:
        """Release network clients held by the gateway."""


class BaseSessionProvider(ABC):
    """
    Abstract authentication provider.

    ``current_session`` tracks the identity of an in-process client (the last
    successful sign-in). Server code resolves bearer tokens with ``resolve``
    instead and never relies on it.
    """

    def __init__(self):
        self.current_session: Optional[Session] = None

    def current_user(self) -> Optional[str]:
        """Identity of the in-process session, or None when signed out."""
        return self.current_session.user_id if self.current_session else None

    @abstractmethod
    async def sign_up(self, email: str, password: str, full_name: str = "") -> Optional[Session]:
        """Register an account; returns a session unless confirmation is pending."""

    @abstractmethod
    async def sign_in(self, email: str, password: str) -> Session:
        """Authenticate and return a session. Raises NotAuthenticated on bad credentials."""

    @abstractmethod
    async def sign_out(self, session: Optional[Session] = None) -> None:
        """Revoke ``session`` (defaults to the in-process session)."""

    @abstractmethod
    async def resolve(self, access_token: str) -> Optional[Session]:
        """Map a bearer token back to its session, or None if it is not valid."""

    async def aclose(self) -> None:
        pass


class BaseStorage(ABC):
    """Abstract object storage for uploaded images."""

    @abstractmethod
    async def upload(
        self,
        bucket: str,
        path: str,
        data: bytes,
        content_type: Optional[str] = None,
        session: Optional[Session] = None,
    ) -> None:
        """Store ``data`` at ``bucket/path``. Raises GatewayFailure on error."""

    @abstractmethod
    async def public_url(self, bucket: str, path: str) -> str:
        """Public URL for an object previously uploaded to ``bucket/path``."""

    async def aclose(self) -> None:
        pass


@dataclass
class Backend:
    """The three collaborators a running application is wired to."""
    gateway: BaseGateway
    sessions: BaseSessionProvider
    storage: BaseStorage
    mode: str = "memory"

    async def aclose(self) -> None:
        """Close every collaborator; called once on application shutdown."""
        await self.gateway.aclose()
        await self.storage.aclose()
        await self.sessions.aclose()
