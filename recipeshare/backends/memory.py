"""
In-process backend implementing the gateway, session and storage contracts.

This backend is used when no Supabase project is configured (local development)
and by the test suite. It models the parts of the hosted backend that the
components rely on:

- uuid primary keys and store-assigned, strictly increasing timestamps
- unique (recipe_id, user_id) pairs on the membership tables
- row-level ownership policy: rows are publicly readable, but only the owner
  can insert/update/delete them. Updates and deletes silently skip rows the
  session does not own (zero rows affected); inserts for another user raise
  NotAuthorized, the same way Postgres row-level security behaves.
- eq / ilike / in filters, OR groups, ordering, to-one embeds and to-many
  count aggregates

Note: This is a process-local, non-persistent store. Data is lost on restart.
"""

import asyncio
import copy
import hashlib
import logging
import re
import secrets
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Sequence, Tuple

from recipeshare.errors import GatewayFailure, InvalidInput, NotAuthenticated, NotAuthorized

from .base import (
    BaseGateway,
    BaseSessionProvider,
    BaseStorage,
    Embed,
    Filter,
    Query,
    Session,
)

logger = logging.getLogger(__name__)

# table -> column that identifies the row owner for the write policy
OWNER_COLUMNS: Dict[str, str] = {
    "profiles": "id",
    "recipes": "user_id",
    "recipe_likes": "user_id",
    "recipe_favorites": "user_id",
}

# table -> column tuples that must be unique
UNIQUE_CONSTRAINTS: Dict[str, List[Tuple[str, ...]]] = {
    "profiles": [("id",)],
    "recipes": [("id",)],
    "recipe_likes": [("id",), ("recipe_id", "user_id")],
    "recipe_favorites": [("id",), ("recipe_id", "user_id")],
}

# Tables whose rows carry an updated_at column
_TIMESTAMPED_UPDATES = {"profiles", "recipes"}


def like_to_regex(pattern: str) -> "re.Pattern[str]":
    """
    Translate a SQL LIKE pattern into a case-insensitive regular expression.

    ``%`` matches any run of characters and ``_`` exactly one character.

    Examples:
        >>> bool(like_to_regex("%choc%").fullmatch("Dark Chocolate"))
        True
    """
    parts = []
    for ch in pattern:
        if ch == "%":
            parts.append(".*")
        elif ch == "_":
            parts.append(".")
        else:
            parts.append(re.escape(ch))
    return re.compile("".join(parts), re.IGNORECASE | re.DOTALL)


def _matches(row: Dict[str, Any], flt: Filter) -> bool:
    value = row.get(flt.column)
    if flt.op == "eq":
        return value == flt.value
    if flt.op == "in":
        return value in flt.value
    if value is None:
        return False
    return bool(like_to_regex(str(flt.value)).fullmatch(str(value)))


def _project(row: Dict[str, Any], columns: Tuple[str, ...]) -> Dict[str, Any]:
    if "*" in columns:
        return dict(row)
    return {c: row.get(c) for c in columns}


class InMemoryGateway(BaseGateway):
    """
    Dictionary-backed gateway.

    Failures can be injected per table with ``inject_failure`` to exercise
    error paths; injected failures raise GatewayFailure with the given message.
    """
    backend = "memory"

    def __init__(self):
        self.tables: Dict[str, Dict[str, Dict[str, Any]]] = {t: {} for t in OWNER_COLUMNS}
        self._failures: Dict[Tuple[str, str], str] = {}
        self._last_ts: Optional[datetime] = None

    # ------------------------------------------------------------------
    # Test helpers
    # ------------------------------------------------------------------

    def inject_failure(self, table: str, message: str, operations: Sequence[str] = ("select", "count")) -> None:
        """Make the given operations on ``table`` fail with ``message``."""
        for op in operations:
            self._failures[(table, op)] = message

    def clear_failures(self) -> None:
        self._failures.clear()

    def seed(self, table: str, row: Dict[str, Any]) -> Dict[str, Any]:
        """Insert a row bypassing the write policy (fixtures, migrations)."""
        stored = self._prepare_insert(table, row)
        return copy.deepcopy(stored)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _now(self) -> datetime:
        now = datetime.now(timezone.utc)
        if self._last_ts is not None and now <= self._last_ts:
            now = self._last_ts + timedelta(microseconds=1)
        self._last_ts = now
        return now

    def _table(self, table: str) -> Dict[str, Dict[str, Any]]:
        if table not in self.tables:
            raise GatewayFailure(f'relation "public.{table}" does not exist', code="42P01")
        return self.tables[table]

    async def _enter(self, table: str, operation: str) -> None:
        # Yield to the event loop so concurrent calls interleave like network I/O
        await asyncio.sleep(0)
        message = self._failures.get((table, operation))
        if message is not None:
            logger.debug("Injected %s failure on %s: %s", operation, table, message)
            raise GatewayFailure(message)

    def _check_unique(self, table: str, row: Dict[str, Any], ignore_id: Optional[str] = None) -> None:
        for columns in UNIQUE_CONSTRAINTS.get(table, []):
            key = tuple(row.get(c) for c in columns)
            for existing in self.tables[table].values():
                if ignore_id is not None and existing["id"] == ignore_id:
                    continue
                if tuple(existing.get(c) for c in columns) == key:
                    raise GatewayFailure(
                        f'duplicate key value violates unique constraint "{table}_{"_".join(columns)}_key"',
                        code="23505",
                    )

    def _prepare_insert(self, table: str, row: Dict[str, Any]) -> Dict[str, Any]:
        rows = self._table(table)
        stored = copy.deepcopy(row)
        stored.setdefault("id", str(uuid.uuid4()))
        now = self._now()
        stored.setdefault("created_at", now)
        if table in _TIMESTAMPED_UPDATES:
            stored.setdefault("updated_at", stored["created_at"])
        self._check_unique(table, stored)
        rows[stored["id"]] = stored
        return stored

    def _filtered(self, table: str, filters: Sequence[Filter]) -> List[Dict[str, Any]]:
        return [r for r in self._table(table).values() if all(_matches(r, f) for f in filters)]

    def _owned(self, table: str, rows: List[Dict[str, Any]], session: Optional[Session]) -> List[Dict[str, Any]]:
        if session is None:
            return []
        owner_column = OWNER_COLUMNS[table]
        return [r for r in rows if r.get(owner_column) == session.user_id]

    def _apply_embed(self, row: Dict[str, Any], embed: Embed) -> Any:
        target = self._table(embed.table)
        if embed.many:
            related = [r for r in target.values() if r.get(embed.foreign_key) == row.get(embed.local_key)]
            if embed.count_only:
                return [{"count": len(related)}]
            return [self._shape(r, embed.columns, embed.embeds) for r in related]
        local_value = row.get(embed.local_key)
        for r in target.values():
            if r.get(embed.foreign_key) == local_value:
                return self._shape(r, embed.columns, embed.embeds)
        return None

    def _shape(self, row: Dict[str, Any], columns: Tuple[str, ...], embeds: Tuple[Embed, ...]) -> Dict[str, Any]:
        shaped = _project(row, columns)
        for embed in embeds:
            shaped[embed.alias] = self._apply_embed(row, embed)
        return copy.deepcopy(shaped)

    # ------------------------------------------------------------------
    # Gateway contract
    # ------------------------------------------------------------------

    async def select(self, query: Query, session: Optional[Session] = None) -> List[Dict[str, Any]]:
        await self._enter(query.table, "select")
        rows = self._filtered(query.table, query.filters)
        for group in query.any_of:
            rows = [r for r in rows if any(_matches(r, f) for f in group.filters)]
        if query.order_by:
            column = query.order_by
            present = [r for r in rows if r.get(column) is not None]
            missing = [r for r in rows if r.get(column) is None]
            present.sort(key=lambda r: r[column], reverse=query.descending)
            rows = present + missing
        if query.limit is not None:
            rows = rows[: query.limit]
        logger.debug("select %s filters=%r -> %d rows", query.table, query.filters, len(rows))
        return [self._shape(r, query.columns, query.embeds) for r in rows]

    async def count(
        self,
        table: str,
        filters: Sequence[Filter] = (),
        session: Optional[Session] = None,
    ) -> int:
        await self._enter(table, "count")
        return len(self._filtered(table, filters))

    async def insert(self, table: str, row: Dict[str, Any], session: Optional[Session] = None) -> Dict[str, Any]:
        await self._enter(table, "insert")
        owner_column = OWNER_COLUMNS.get(table)
        if session is None or (owner_column and row.get(owner_column) != session.user_id):
            raise NotAuthorized(f'new row violates row-level security policy for table "{table}"')
        stored = self._prepare_insert(table, row)
        logger.debug("insert %s id=%s", table, stored["id"])
        return copy.deepcopy(stored)

    async def update(
        self,
        table: str,
        filters: Sequence[Filter],
        fields: Dict[str, Any],
        session: Optional[Session] = None,
    ) -> List[Dict[str, Any]]:
        await self._enter(table, "update")
        owner_column = OWNER_COLUMNS[table]
        if owner_column in fields or "id" in fields:
            raise NotAuthorized(f'column "{owner_column}" of table "{table}" cannot be changed')
        targets = self._owned(table, self._filtered(table, filters), session)
        updated = []
        for row in targets:
            row.update(copy.deepcopy(fields))
            if table in _TIMESTAMPED_UPDATES:
                row["updated_at"] = self._now()
            updated.append(copy.deepcopy(row))
        logger.debug("update %s filters=%r -> %d rows", table, filters, len(updated))
        return updated

    async def delete(
        self,
        table: str,
        filters: Sequence[Filter],
        session: Optional[Session] = None,
    ) -> List[Dict[str, Any]]:
        await self._enter(table, "delete")
        targets = self._owned(table, self._filtered(table, filters), session)
        rows = self._table(table)
        for row in targets:
            del rows[row["id"]]
        logger.debug("delete %s filters=%r -> %d rows", table, filters, len(targets))
        return copy.deepcopy(targets)


def _hash_password(password: str, salt: bytes) -> bytes:
    return hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt, 100_000)


class InMemorySessionProvider(BaseSessionProvider):
    """
    Email/password accounts kept in memory.

    Mirrors the hosted auth rules that callers can observe: duplicate emails and
    passwords shorter than six characters are rejected at sign-up, and bad
    credentials fail sign-in with "Invalid login credentials".
    """
    MIN_PASSWORD_LENGTH = 6

    def __init__(self):
        super().__init__()
        self._accounts: Dict[str, Dict[str, Any]] = {}
        self._tokens: Dict[str, Session] = {}

    def _issue(self, account: Dict[str, Any]) -> Session:
        session = Session(
            user_id=account["user_id"],
            email=account["email"],
            access_token=secrets.token_urlsafe(32),
        )
        self._tokens[session.access_token] = session
        self.current_session = session
        return session

    def user_metadata(self, user_id: str) -> Dict[str, Any]:
        for account in self._accounts.values():
            if account["user_id"] == user_id:
                return {"full_name": account.get("full_name", "")}
        return {}

    async def sign_up(self, email: str, password: str, full_name: str = "") -> Optional[Session]:
        email_key = email.strip().lower()
        if not email_key or "@" not in email_key:
            raise InvalidInput("Unable to validate email address: invalid format")
        if len(password) < self.MIN_PASSWORD_LENGTH:
            raise InvalidInput(f"Password should be at least {self.MIN_PASSWORD_LENGTH} characters.")
        if email_key in self._accounts:
            raise InvalidInput("User already registered")
        salt = secrets.token_bytes(16)
        account = {
            "user_id": str(uuid.uuid4()),
            "email": email_key,
            "salt": salt,
            "password_hash": _hash_password(password, salt),
            "full_name": full_name,
        }
        self._accounts[email_key] = account
        logger.info("Registered account %s", account["user_id"])
        return self._issue(account)

    async def sign_in(self, email: str, password: str) -> Session:
        account = self._accounts.get(email.strip().lower())
        if account is None or not secrets.compare_digest(
            account["password_hash"], _hash_password(password, account["salt"])
        ):
            raise NotAuthenticated("Invalid login credentials")
        return self._issue(account)

    async def sign_out(self, session: Optional[Session] = None) -> None:
        target = session or self.current_session
        if target is not None:
            self._tokens.pop(target.access_token, None)
        if self.current_session is not None and (
            target is None or self.current_session.access_token == target.access_token
        ):
            self.current_session = None

    async def resolve(self, access_token: str) -> Optional[Session]:
        return self._tokens.get(access_token)


class InMemoryStorage(BaseStorage):
    """Bucket/path -> bytes map with Supabase-style public URLs."""

    def __init__(self, base_url: str = "http://localhost:54321"):
        self.base_url = base_url.rstrip("/")
        self.objects: Dict[Tuple[str, str], Tuple[bytes, Optional[str]]] = {}

    async def upload(
        self,
        bucket: str,
        path: str,
        data: bytes,
        content_type: Optional[str] = None,
        session: Optional[Session] = None,
    ) -> None:
        await asyncio.sleep(0)
        if session is None:
            raise NotAuthorized("new row violates row-level security policy")
        if (bucket, path) in self.objects:
            raise GatewayFailure("The resource already exists", code="409")
        self.objects[(bucket, path)] = (bytes(data), content_type)

    async def public_url(self, bucket: str, path: str) -> str:
        return f"{self.base_url}/storage/v1/object/public/{bucket}/{path}"
