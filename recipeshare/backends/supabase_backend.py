"""
Supabase backend for the gateway, session and storage contracts.

The gateway renders recipeshare Query objects into PostgREST requests through
postgrest-py, the storage adapter uploads through storage3, and the session
provider signs users in and out through the supabase auth client.

Each caller's access token is sent with its own requests, so the project's
row-level security policies decide what a user may read and write. A write the
policy hides comes back with zero rows; an insert the policy rejects comes back
as APIError 42501 and is raised as NotAuthorized.

Requires in .env (or the deployment environment):
- SUPABASE_URL: Project URL (e.g. https://xyzcompany.supabase.co)
- SUPABASE_ANON_KEY: Public anon key
"""

import logging
from collections import OrderedDict
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

import httpx
from postgrest import AsyncPostgrestClient
from postgrest.exceptions import APIError
from storage3 import AsyncStorageClient
from storage3.utils import StorageException
from supabase import AsyncClient, AuthError, acreate_client

from recipeshare.errors import GatewayFailure, InvalidInput, NotAuthenticated, NotAuthorized

from .base import (
    AnyOf,
    BaseGateway,
    BaseSessionProvider,
    BaseStorage,
    Embed,
    Filter,
    Query,
    Session,
)

logger = logging.getLogger(__name__)

# Postgres SQLSTATE for insufficient_privilege, returned on RLS violations
RLS_VIOLATION_CODE = "42501"

# Per-token clients kept before the least recently used one is closed
_MAX_CACHED_CLIENTS = 256


class _ClientCache:
    """
    HTTP clients keyed by access token, least recently used first.

    Every client owns an httpx connection pool, so a client that falls out of
    the cache is closed before it is dropped.
    """

    def __init__(self, factory: Callable[[str], Any], max_size: int = _MAX_CACHED_CLIENTS):
        self.factory = factory
        self.max_size = max_size
        self._clients: "OrderedDict[str, Any]" = OrderedDict()

    def __len__(self) -> int:
        return len(self._clients)

    async def get(self, token: str) -> Any:
        client = self._clients.get(token)
        if client is not None:
            self._clients.move_to_end(token)
            return client
        while len(self._clients) >= self.max_size:
            _, evicted = self._clients.popitem(last=False)
            await evicted.aclose()
        client = self.factory(token)
        self._clients[token] = client
        return client

    async def aclose(self) -> None:
        while self._clients:
            _, client = self._clients.popitem(last=False)
            await client.aclose()


def render_columns(columns: Tuple[str, ...], embeds: Tuple[Embed, ...] = ()) -> str:
    """
    Render a column list plus embeds as a PostgREST ``select`` string.

    Examples:
        >>> render_columns(("*",), (Embed("profiles", "profiles", ("id",), local_key="user_id"),))
        '*,profiles:user_id(id)'
    """
    parts = list(columns)
    for embed in embeds:
        parts.append(render_embed(embed))
    return ",".join(parts)


def render_embed(embed: Embed) -> str:
    inner = "count" if embed.count_only else render_columns(embed.columns, embed.embeds)
    if embed.many:
        if embed.alias == embed.table:
            return f"{embed.table}({inner})"
        return f"{embed.alias}:{embed.table}({inner})"
    # To-one joins are addressed through the local foreign-key column
    return f"{embed.alias}:{embed.local_key}({inner})"


def _quote(value: Any) -> str:
    text = str(value)
    if any(ch in text for ch in ',()"\\:'):
        escaped = text.replace("\\", "\\\\").replace('"', '\\"')
        return f'"{escaped}"'
    return text


def render_or(group: AnyOf) -> str:
    """Render an OR group, e.g. ``title.ilike.%choc%,cooking_steps.ilike.%choc%``."""
    parts = []
    for flt in group.filters:
        if flt.op == "in":
            parts.append(f"{flt.column}.in.({','.join(_quote(v) for v in flt.value)})")
        else:
            parts.append(f"{flt.column}.{flt.op}.{_quote(flt.value)}")
    return ",".join(parts)


def _apply_filters(builder: Any, filters: Sequence[Filter]) -> Any:
    for flt in filters:
        if flt.op == "eq":
            builder = builder.eq(flt.column, flt.value)
        elif flt.op == "ilike":
            builder = builder.ilike(flt.column, flt.value)
        else:
            builder = builder.in_(flt.column, list(flt.value))
    return builder


def translate_api_error(error: APIError) -> Exception:
    """Map a PostgREST APIError onto the recipeshare error taxonomy."""
    message = error.message or str(error)
    if error.code == RLS_VIOLATION_CODE:
        return NotAuthorized(message)
    return GatewayFailure(message, code=error.code)


class SupabaseGateway(BaseGateway):
    """Gateway backed by a Supabase project's PostgREST endpoint."""
    backend = "supabase"

    def __init__(self, url: str, anon_key: str, timeout: float = 15.0):
        self.rest_url = f"{url.rstrip('/')}/rest/v1"
        self.anon_key = anon_key
        self.timeout = timeout
        self._clients = _ClientCache(self._new_client)

    def _new_client(self, token: str) -> AsyncPostgrestClient:
        return AsyncPostgrestClient(
            self.rest_url,
            headers={"apikey": self.anon_key, "Authorization": f"Bearer {token}"},
            timeout=self.timeout,
        )

    async def _client(self, session: Optional[Session]) -> AsyncPostgrestClient:
        return await self._clients.get(session.access_token if session else self.anon_key)

    async def aclose(self) -> None:
        await self._clients.aclose()

    async def _execute(self, builder: Any, description: str) -> Any:
        try:
            return await builder.execute()
        except APIError as e:
            logger.warning("Supabase %s failed: %s (code=%s)", description, e.message, e.code)
            raise translate_api_error(e) from e
        except httpx.HTTPError as e:
            logger.error("Supabase %s transport error: %s", description, e, exc_info=True)
            raise GatewayFailure(str(e) or e.__class__.__name__) from e

    async def select(self, query: Query, session: Optional[Session] = None) -> List[Dict[str, Any]]:
        client = await self._client(session)
        builder = client.from_(query.table).select(render_columns(query.columns, query.embeds))
        builder = _apply_filters(builder, query.filters)
        for group in query.any_of:
            builder = builder.or_(render_or(group))
        if query.order_by:
            builder = builder.order(query.order_by, desc=query.descending)
        if query.limit is not None:
            builder = builder.limit(query.limit)
        response = await self._execute(builder, f"select on {query.table}")
        return list(response.data or [])

    async def count(
        self,
        table: str,
        filters: Sequence[Filter] = (),
        session: Optional[Session] = None,
    ) -> int:
        client = await self._client(session)
        builder = client.from_(table).select("id", count="exact", head=True)
        builder = _apply_filters(builder, filters)
        response = await self._execute(builder, f"count on {table}")
        return int(response.count or 0)

    async def insert(self, table: str, row: Dict[str, Any], session: Optional[Session] = None) -> Dict[str, Any]:
        client = await self._client(session)
        builder = client.from_(table).insert(row)
        response = await self._execute(builder, f"insert into {table}")
        if not response.data:
            raise GatewayFailure(f"Insert into {table} returned no row")
        return response.data[0]

    async def update(
        self,
        table: str,
        filters: Sequence[Filter],
        fields: Dict[str, Any],
        session: Optional[Session] = None,
    ) -> List[Dict[str, Any]]:
        client = await self._client(session)
        builder = _apply_filters(client.from_(table).update(fields), filters)
        response = await self._execute(builder, f"update on {table}")
        return list(response.data or [])

    async def delete(
        self,
        table: str,
        filters: Sequence[Filter],
        session: Optional[Session] = None,
    ) -> List[Dict[str, Any]]:
        client = await self._client(session)
        builder = _apply_filters(client.from_(table).delete(), filters)
        response = await self._execute(builder, f"delete on {table}")
        return list(response.data or [])


def _auth_error(error: AuthError) -> Exception:
    message = getattr(error, "message", None) or str(error)
    status = getattr(error, "status", None)
    if status in (400, 422) and "credentials" not in message.lower():
        return InvalidInput(message)
    if status in (400, 401, 403):
        return NotAuthenticated(message)
    return GatewayFailure(message)


class SupabaseSessionProvider(BaseSessionProvider):
    """Session provider backed by Supabase Auth (email + password)."""

    def __init__(self, url: str, anon_key: str):
        super().__init__()
        self.url = url
        self.anon_key = anon_key
        self._supabase: Optional[AsyncClient] = None

    async def _client(self) -> AsyncClient:
        if self._supabase is None:
            self._supabase = await acreate_client(self.url, self.anon_key)
        return self._supabase

    def _to_session(self, response: Any) -> Optional[Session]:
        if response.session is None or response.user is None:
            return None
        return Session(
            user_id=response.user.id,
            email=response.user.email,
            access_token=response.session.access_token,
        )

    async def sign_up(self, email: str, password: str, full_name: str = "") -> Optional[Session]:
        client = await self._client()
        try:
            response = await client.auth.sign_up(
                {"email": email, "password": password, "options": {"data": {"full_name": full_name}}}
            )
        except AuthError as e:
            raise _auth_error(e) from e
        session = self._to_session(response)
        if session is None:
            # Email confirmation is enabled on the project; no session until confirmed
            logger.info("Sign-up for %s is pending email confirmation", email)
            return None
        self.current_session = session
        return session

    async def sign_in(self, email: str, password: str) -> Session:
        client = await self._client()
        try:
            response = await client.auth.sign_in_with_password({"email": email, "password": password})
        except AuthError as e:
            raise _auth_error(e) from e
        session = self._to_session(response)
        if session is None:
            raise NotAuthenticated("Invalid login credentials")
        self.current_session = session
        return session

    async def sign_out(self, session: Optional[Session] = None) -> None:
        target = session or self.current_session
        if target is None:
            return
        client = await self._client()
        try:
            await client.auth.admin.sign_out(target.access_token)
        except AuthError as e:
            raise _auth_error(e) from e
        if self.current_session is not None and self.current_session.access_token == target.access_token:
            self.current_session = None

    async def resolve(self, access_token: str) -> Optional[Session]:
        client = await self._client()
        try:
            response = await client.auth.get_user(access_token)
        except AuthError as e:
            logger.debug("Token rejected by Supabase Auth: %s", e)
            return None
        if response is None or response.user is None:
            return None
        return Session(user_id=response.user.id, email=response.user.email, access_token=access_token)

    async def aclose(self) -> None:
        if self._supabase is not None:
            await self._supabase.auth.close()
            self._supabase = None


class SupabaseStorage(BaseStorage):
    """Object storage backed by Supabase Storage buckets."""

    def __init__(self, url: str, anon_key: str, timeout: float = 15.0):
        self.storage_url = f"{url.rstrip('/')}/storage/v1"
        self.anon_key = anon_key
        self.timeout = timeout
        self._clients = _ClientCache(self._new_client)

    def _new_client(self, token: str) -> AsyncStorageClient:
        return AsyncStorageClient(
            self.storage_url,
            {"apikey": self.anon_key, "Authorization": f"Bearer {token}"},
            timeout=int(self.timeout),
        )

    async def _client(self, session: Optional[Session]) -> AsyncStorageClient:
        return await self._clients.get(session.access_token if session else self.anon_key)

    async def aclose(self) -> None:
        await self._clients.aclose()

    async def upload(
        self,
        bucket: str,
        path: str,
        data: bytes,
        content_type: Optional[str] = None,
        session: Optional[Session] = None,
    ) -> None:
        options = {"content-type": content_type} if content_type else None
        try:
            client = await self._client(session)
            await client.from_(bucket).upload(path, data, options)
        except StorageException as e:
            logger.warning("Upload to %s/%s failed: %s", bucket, path, e)
            raise GatewayFailure(str(e)) from e
        except httpx.HTTPError as e:
            logger.error("Upload to %s/%s transport error: %s", bucket, path, e, exc_info=True)
            raise GatewayFailure(str(e) or e.__class__.__name__) from e

    async def public_url(self, bucket: str, path: str) -> str:
        # Same URL storage3 builds for public buckets; no request is made
        return f"{self.storage_url}/object/public/{bucket}/{path}"
