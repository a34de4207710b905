"""
End-to-end tests for the HTTP API on the in-memory backend.

This test module verifies that:
1. Accounts endpoints issue bearer tokens that the other endpoints accept
2. Recipe endpoints return the annotated JSON shape with per-user flags
3. Domain errors map onto 401/403/404/422 responses
"""

from unittest.mock import AsyncMock, patch

import pytest
from fastapi.testclient import TestClient

from api.main import app, status_for_error
from recipeshare.errors import GatewayFailure, NotAuthorized, RecipeShareError


@pytest.fixture
def client(api_backend):
    """Create a test client for the FastAPI app backed by a fresh in-memory store."""
    return TestClient(app)


def _sign_up(client, email, full_name=""):
    response = client.post("/auth/signup", json={"email": email, "password": "secret-pw", "full_name": full_name})
    assert response.status_code == 201
    data = response.json()
    return {"Authorization": f"Bearer {data['access_token']}"}, data["user_id"]


def _recipe_payload(**overrides):
    payload = {
        "title": "Chocolate Cake",
        "ingredients": ["200g flour", "100g cocoa"],
        "cooking_steps": "Mix everything and bake for 40 minutes.",
        "category": "dessert",
        "prep_time": 15,
        "cook_time": 40,
        "servings": 8,
        "difficulty": "medium",
    }
    payload.update(overrides)
    return payload


class TestHealthEndpoint:

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "ok"
        assert data["name"] == "Recipe Share API"
        assert data["backend"] in ("memory", "supabase")
        assert data["uptime_seconds"] >= 0

    def test_shutdown_closes_backend(self, api_backend):
        """Leaving the app lifespan closes the shared backend's clients."""
        with patch.object(api_backend, "aclose", new=AsyncMock()) as aclose:
            with TestClient(app) as client:
                assert client.get("/health").status_code == 200
                aclose.assert_not_awaited()
            aclose.assert_awaited_once()


class TestAccountEndpoints:
    """End-to-end tests for /auth and profile endpoints."""

    def test_signup_and_me(self, client):
        headers, user_id = _sign_up(client, "ada@example.com", "Ada Lovelace")
        response = client.get("/auth/me", headers=headers)
        assert response.status_code == 200
        data = response.json()
        assert data["user_id"] == user_id
        assert data["profile"]["full_name"] == "Ada Lovelace"

    def test_login(self, client):
        _sign_up(client, "ada@example.com")
        response = client.post("/auth/login", json={"email": "ada@example.com", "password": "secret-pw"})
        assert response.status_code == 200
        assert response.json()["token_type"] == "bearer"

        response = client.post("/auth/login", json={"email": "ada@example.com", "password": "wrong-pw"})
        assert response.status_code == 401
        assert response.json()["detail"] == "Invalid login credentials"

    def test_duplicate_signup(self, client):
        _sign_up(client, "ada@example.com")
        response = client.post("/auth/signup", json={"email": "ada@example.com", "password": "secret-pw"})
        assert response.status_code == 422

    def test_logout_revokes_token(self, client):
        headers, _ = _sign_up(client, "ada@example.com")
        assert client.post("/auth/logout", headers=headers).status_code == 204
        assert client.get("/auth/me", headers=headers).status_code == 401

    def test_bad_tokens(self, client):
        assert client.get("/auth/me").status_code == 401
        assert client.get("/auth/me", headers={"Authorization": "Bearer nope"}).status_code == 401
        assert client.get("/recipes", headers={"Authorization": "Token abc"}).status_code == 401

    def test_profiles(self, client):
        headers, user_id = _sign_up(client, "ada@example.com", "Ada")
        response = client.patch("/profile", json={"bio": "Loves baking"}, headers=headers)
        assert response.status_code == 200
        assert response.json()["bio"] == "Loves baking"

        response = client.get(f"/profiles/{user_id}")
        assert response.status_code == 200
        assert response.json()["full_name"] == "Ada"
        assert client.get("/profiles/nobody").status_code == 404
        assert client.patch("/profile", json={}, headers=headers).status_code == 422


class TestRecipeEndpoints:
    """End-to-end tests for recipe endpoints."""

    def test_create_requires_auth(self, client):
        assert client.post("/recipes", json=_recipe_payload()).status_code == 401

    def test_create_and_list(self, client):
        headers, user_id = _sign_up(client, "ada@example.com", "Ada")
        response = client.post("/recipes", json=_recipe_payload(), headers=headers)
        assert response.status_code == 201
        created = response.json()
        assert created["user_id"] == user_id
        assert created["category"] == "dessert"

        response = client.get("/recipes")
        assert response.status_code == 200
        data = response.json()
        assert data["count"] == 1
        recipe = data["results"][0]
        assert recipe["id"] == created["id"]
        assert recipe["profiles"]["full_name"] == "Ada"
        assert recipe["likes_count"] == 0
        assert recipe["is_liked"] is False
        assert recipe["is_favorited"] is False

    def test_create_rejects_invalid_payload(self, client):
        headers, _ = _sign_up(client, "ada@example.com")
        response = client.post("/recipes", json=_recipe_payload(ingredients=["  "]), headers=headers)
        assert response.status_code == 422
        response = client.post("/recipes", json=_recipe_payload(user_id="someone"), headers=headers)
        assert response.status_code == 422

    def test_filters(self, client):
        headers, _ = _sign_up(client, "ada@example.com")
        client.post("/recipes", json=_recipe_payload(title="Chocolate Cake"), headers=headers)
        client.post("/recipes", json=_recipe_payload(title="Choc Shake", category="beverage"), headers=headers)
        client.post("/recipes", json=_recipe_payload(title="Fruit Salad", cooking_steps="Chop."), headers=headers)

        response = client.get("/recipes", params={"category": "dessert", "search": "choc"})
        assert [r["title"] for r in response.json()["results"]] == ["Chocolate Cake"]

        response = client.get("/recipes", params={"category": "all"})
        assert [r["title"] for r in response.json()["results"]] == ["Fruit Salad", "Choc Shake", "Chocolate Cake"]

        assert client.get("/recipes", params={"category": "snack"}).status_code == 422

    def test_detail(self, client):
        headers, _ = _sign_up(client, "ada@example.com")
        recipe_id = client.post("/recipes", json=_recipe_payload(), headers=headers).json()["id"]

        response = client.get(f"/recipes/{recipe_id}", headers=headers)
        assert response.status_code == 200
        data = response.json()
        assert data["is_owner"] is True
        assert data["recipe"]["title"] == "Chocolate Cake"

        anonymous = client.get(f"/recipes/{recipe_id}").json()
        assert anonymous["is_owner"] is False
        assert client.get("/recipes/missing").status_code == 404

    def test_update_and_delete_ownership(self, client):
        owner, _ = _sign_up(client, "ada@example.com")
        other, _ = _sign_up(client, "bob@example.com")
        recipe_id = client.post("/recipes", json=_recipe_payload(), headers=owner).json()["id"]

        assert client.patch(f"/recipes/{recipe_id}", json={"title": "Mine"}, headers=other).status_code == 403
        assert client.delete(f"/recipes/{recipe_id}", headers=other).status_code == 403

        response = client.patch(f"/recipes/{recipe_id}", json={"title": "Better Cake"}, headers=owner)
        assert response.status_code == 200
        assert response.json()["title"] == "Better Cake"
        assert client.patch(f"/recipes/{recipe_id}", json={}, headers=owner).status_code == 422

        assert client.delete(f"/recipes/{recipe_id}", headers=owner).status_code == 204
        assert client.get(f"/recipes/{recipe_id}").status_code == 404

    def test_like_and_favorite_toggles(self, client):
        owner, _ = _sign_up(client, "ada@example.com")
        fan, _ = _sign_up(client, "bob@example.com")
        recipe_id = client.post("/recipes", json=_recipe_payload(), headers=owner).json()["id"]

        liked = client.post(f"/recipes/{recipe_id}/like", headers=fan).json()["recipe"]
        assert (liked["is_liked"], liked["likes_count"]) == (True, 1)

        listing = client.get("/recipes", headers=fan).json()["results"][0]
        assert listing["is_liked"] is True
        assert client.get("/recipes", headers=owner).json()["results"][0]["is_liked"] is False

        unliked = client.post(f"/recipes/{recipe_id}/like", headers=fan).json()["recipe"]
        assert (unliked["is_liked"], unliked["likes_count"]) == (False, 0)

        favorited = client.post(f"/recipes/{recipe_id}/favorite", headers=fan).json()["recipe"]
        assert favorited["is_favorited"] is True
        favorites = client.get("/favorites", headers=fan).json()
        assert [r["id"] for r in favorites["results"]] == [recipe_id]

        assert client.post(f"/recipes/{recipe_id}/like").status_code == 401
        assert client.post("/recipes/missing/like", headers=fan).status_code == 404
        assert client.get("/favorites").status_code == 401


class TestImageEndpoint:

    def test_upload(self, client, api_backend):
        headers, _ = _sign_up(client, "ada@example.com")
        response = client.post(
            "/images",
            files={"file": ("cake.png", b"\x89PNG\r\n", "image/png")},
            headers=headers,
        )
        assert response.status_code == 201
        assert response.json()["url"].endswith(".png")
        assert len(api_backend.storage.objects) == 1

    def test_upload_rejects_other_types(self, client):
        headers, _ = _sign_up(client, "ada@example.com")
        response = client.post("/images", files={"file": ("notes.txt", b"hello", "text/plain")}, headers=headers)
        assert response.status_code == 422

    def test_upload_requires_auth(self, client):
        response = client.post("/images", files={"file": ("cake.png", b"\x89PNG", "image/png")})
        assert response.status_code == 401


class TestErrorMapping:

    def test_status_for_error(self):
        assert status_for_error(NotAuthorized()) == 403
        assert status_for_error(GatewayFailure("boom")) == 502
        assert status_for_error(RecipeShareError("unknown")) == 500
