"""
Tests for the in-memory backend.

These tests verify that:
- The ownership policy hides other users' rows from updates and deletes
- Inserts for another identity are rejected
- Membership pairs are unique
- Filters, OR groups, ordering and embeds behave like the hosted backend
"""

from unittest.mock import AsyncMock, Mock

import pytest

from recipeshare.backends.base import Backend, Embed, Query, eq, ilike, in_
from recipeshare.backends.memory import InMemorySessionProvider, InMemoryStorage, like_to_regex
from recipeshare.errors import GatewayFailure, InvalidInput, NotAuthenticated, NotAuthorized


class TestLikePatterns:

    def test_percent_matches_any_run(self):
        assert like_to_regex("%choc%").fullmatch("Dark CHOCOLATE cake")
        assert not like_to_regex("choc%").fullmatch("Dark chocolate")

    def test_underscore_matches_one_character(self):
        assert like_to_regex("c_t").fullmatch("cat")
        assert not like_to_regex("c_t").fullmatch("cart")

    def test_regex_characters_are_literal(self):
        assert like_to_regex("%(v2)%").fullmatch("cake (v2)")
        assert not like_to_regex("a.c").fullmatch("abc")


class TestWritePolicy:
    """Test cases for row ownership enforcement."""

    @pytest.mark.asyncio
    async def test_insert_for_another_user_rejected(self, gateway, alice):
        with pytest.raises(NotAuthorized):
            await gateway.insert("recipe_likes", {"recipe_id": "r1", "user_id": "bob"}, session=alice)

    @pytest.mark.asyncio
    async def test_insert_without_session_rejected(self, gateway):
        with pytest.raises(NotAuthorized):
            await gateway.insert("recipe_likes", {"recipe_id": "r1", "user_id": "alice"})

    @pytest.mark.asyncio
    async def test_update_by_non_owner_affects_nothing(self, gateway, alice, bob, seed_recipe):
        row = seed_recipe("alice", "Cake")
        updated = await gateway.update("recipes", [eq("id", row["id"])], {"title": "Hacked"}, session=bob)
        assert updated == []
        assert gateway.tables["recipes"][row["id"]]["title"] == "Cake"

    @pytest.mark.asyncio
    async def test_update_by_owner_bumps_updated_at(self, gateway, alice, seed_recipe):
        row = seed_recipe("alice", "Cake")
        updated = await gateway.update("recipes", [eq("id", row["id"])], {"title": "Better cake"}, session=alice)
        assert len(updated) == 1
        assert updated[0]["title"] == "Better cake"
        assert updated[0]["updated_at"] > row["created_at"]
        assert updated[0]["created_at"] == row["created_at"]

    @pytest.mark.asyncio
    async def test_update_cannot_change_owner(self, gateway, alice, seed_recipe):
        row = seed_recipe("alice", "Cake")
        with pytest.raises(NotAuthorized):
            await gateway.update("recipes", [eq("id", row["id"])], {"user_id": "bob"}, session=alice)

    @pytest.mark.asyncio
    async def test_delete_by_non_owner_affects_nothing(self, gateway, alice, bob, seed_recipe):
        row = seed_recipe("alice", "Cake")
        deleted = await gateway.delete("recipes", [eq("id", row["id"])], session=bob)
        assert deleted == []
        assert row["id"] in gateway.tables["recipes"]

    @pytest.mark.asyncio
    async def test_delete_anonymous_affects_nothing(self, gateway, seed_recipe):
        row = seed_recipe("alice", "Cake")
        assert await gateway.delete("recipes", [eq("id", row["id"])]) == []


class TestUniqueMemberships:

    @pytest.mark.asyncio
    async def test_duplicate_like_rejected(self, gateway, alice, seed_recipe):
        recipe = seed_recipe("bob", "Pie")
        await gateway.insert("recipe_likes", {"recipe_id": recipe["id"], "user_id": "alice"}, session=alice)
        with pytest.raises(GatewayFailure) as exc_info:
            await gateway.insert("recipe_likes", {"recipe_id": recipe["id"], "user_id": "alice"}, session=alice)
        assert exc_info.value.code == "23505"
        assert len(gateway.tables["recipe_likes"]) == 1

    @pytest.mark.asyncio
    async def test_same_recipe_different_users_allowed(self, gateway, alice, bob, seed_recipe):
        recipe = seed_recipe("bob", "Pie")
        await gateway.insert("recipe_favorites", {"recipe_id": recipe["id"], "user_id": "alice"}, session=alice)
        await gateway.insert("recipe_favorites", {"recipe_id": recipe["id"], "user_id": "bob"}, session=bob)
        assert len(gateway.tables["recipe_favorites"]) == 2


class TestSelect:
    """Test cases for filtered, ordered and embedded selects."""

    @pytest.mark.asyncio
    async def test_order_descending_and_limit(self, gateway, seed_recipe):
        seed_recipe("alice", "First")
        seed_recipe("alice", "Second")
        seed_recipe("alice", "Third")
        rows = await gateway.select(Query(table="recipes").order("created_at", descending=True).take(2))
        assert [r["title"] for r in rows] == ["Third", "Second"]

    @pytest.mark.asyncio
    async def test_or_group_matches_either_column(self, gateway, seed_recipe):
        seed_recipe("alice", "Chocolate cake")
        seed_recipe("alice", "Brownies", cooking_steps="Melt the CHOCOLATE.")
        seed_recipe("alice", "Lemon tart")
        query = Query(table="recipes").where_any(ilike("title", "%choc%"), ilike("cooking_steps", "%choc%"))
        titles = {r["title"] for r in await gateway.select(query)}
        assert titles == {"Chocolate cake", "Brownies"}

    @pytest.mark.asyncio
    async def test_in_filter_and_projection(self, gateway, seed_recipe):
        a = seed_recipe("alice", "A")
        seed_recipe("alice", "B")
        query = Query(table="recipes", columns=("id",)).where(in_("id", [a["id"], "missing"]))
        assert await gateway.select(query) == [{"id": a["id"]}]

    @pytest.mark.asyncio
    async def test_embeds_author_and_like_count(self, gateway, alice, seed_recipe, seed_like):
        recipe = seed_recipe("alice", "Cake")
        seed_like(recipe["id"], "alice")
        seed_like(recipe["id"], "bob")
        query = Query(
            table="recipes",
            embeds=(
                Embed("profiles", "profiles", ("id", "full_name"), local_key="user_id"),
                Embed("recipe_likes", "recipe_likes", foreign_key="recipe_id", many=True, count_only=True),
            ),
        )
        [row] = await gateway.select(query)
        assert row["profiles"] == {"id": "alice", "full_name": "Alice Baker"}
        assert row["recipe_likes"] == [{"count": 2}]

    @pytest.mark.asyncio
    async def test_missing_to_one_embed_is_none(self, gateway, seed_favorite):
        seed_favorite("gone", "alice")
        query = Query(table="recipe_favorites", embeds=(Embed("recipes", "recipes", local_key="recipe_id"),))
        [row] = await gateway.select(query)
        assert row["recipes"] is None

    @pytest.mark.asyncio
    async def test_returned_rows_are_copies(self, gateway, seed_recipe):
        row = seed_recipe("alice", "Cake")
        [selected] = await gateway.select(Query(table="recipes"))
        selected["title"] = "Changed"
        assert gateway.tables["recipes"][row["id"]]["title"] == "Cake"

    @pytest.mark.asyncio
    async def test_count(self, gateway, seed_recipe, seed_like):
        recipe = seed_recipe("alice", "Cake")
        seed_like(recipe["id"], "alice")
        assert await gateway.count("recipe_likes", [eq("recipe_id", recipe["id"])]) == 1
        assert await gateway.count("recipe_likes", [eq("recipe_id", "other")]) == 0

    @pytest.mark.asyncio
    async def test_injected_failure(self, gateway):
        gateway.inject_failure("recipes", "connection reset")
        with pytest.raises(GatewayFailure, match="connection reset"):
            await gateway.select(Query(table="recipes"))
        gateway.clear_failures()
        assert await gateway.select(Query(table="recipes")) == []

    @pytest.mark.asyncio
    async def test_unknown_table(self, gateway):
        with pytest.raises(GatewayFailure) as exc_info:
            await gateway.select(Query(table="comments"))
        assert exc_info.value.code == "42P01"


class TestInMemorySessionProvider:
    """Test cases for email/password accounts."""

    @pytest.mark.asyncio
    async def test_sign_up_then_sign_in(self):
        provider = InMemorySessionProvider()
        created = await provider.sign_up("Ada@Example.com", "secret-pw", "Ada")
        session = await provider.sign_in("ada@example.com", "secret-pw")
        assert session.user_id == created.user_id
        assert session.access_token != created.access_token
        assert provider.current_user() == created.user_id
        assert provider.user_metadata(created.user_id) == {"full_name": "Ada"}

    @pytest.mark.asyncio
    async def test_sign_up_rules(self):
        provider = InMemorySessionProvider()
        with pytest.raises(InvalidInput):
            await provider.sign_up("not-an-email", "secret-pw")
        with pytest.raises(InvalidInput):
            await provider.sign_up("ada@example.com", "short")
        await provider.sign_up("ada@example.com", "secret-pw")
        with pytest.raises(InvalidInput, match="already registered"):
            await provider.sign_up("ADA@example.com", "secret-pw")

    @pytest.mark.asyncio
    async def test_bad_credentials(self):
        provider = InMemorySessionProvider()
        await provider.sign_up("ada@example.com", "secret-pw")
        with pytest.raises(NotAuthenticated, match="Invalid login credentials"):
            await provider.sign_in("ada@example.com", "wrong-pw")
        with pytest.raises(NotAuthenticated):
            await provider.sign_in("nobody@example.com", "secret-pw")

    @pytest.mark.asyncio
    async def test_sign_out_revokes_token(self):
        provider = InMemorySessionProvider()
        session = await provider.sign_up("ada@example.com", "secret-pw")
        assert await provider.resolve(session.access_token) == session
        await provider.sign_out(session)
        assert await provider.resolve(session.access_token) is None
        assert provider.current_user() is None


class TestInMemoryStorage:

    @pytest.mark.asyncio
    async def test_upload_and_public_url(self, alice):
        storage = InMemoryStorage(base_url="http://localhost:54321/")
        await storage.upload("recipe-images", "a.png", b"\x89PNG", "image/png", session=alice)
        assert storage.objects[("recipe-images", "a.png")] == (b"\x89PNG", "image/png")
        url = await storage.public_url("recipe-images", "a.png")
        assert url == "http://localhost:54321/storage/v1/object/public/recipe-images/a.png"

    @pytest.mark.asyncio
    async def test_upload_requires_session(self):
        with pytest.raises(NotAuthorized):
            await InMemoryStorage().upload("recipe-images", "a.png", b"x")

    @pytest.mark.asyncio
    async def test_duplicate_path_rejected(self, alice):
        storage = InMemoryStorage()
        await storage.upload("recipe-images", "a.png", b"x", session=alice)
        with pytest.raises(GatewayFailure):
            await storage.upload("recipe-images", "a.png", b"y", session=alice)


class TestBackendClose:

    @pytest.mark.asyncio
    async def test_aclose_closes_every_collaborator(self):
        """Backend.aclose closes gateway, storage and session provider."""
        parts = {name: Mock(aclose=AsyncMock()) for name in ("gateway", "sessions", "storage")}
        await Backend(**parts).aclose()
        for part in parts.values():
            part.aclose.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_in_memory_backend_closes_cleanly(self, backend):
        await backend.aclose()
