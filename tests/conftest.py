"""
Shared fixtures: an in-memory backend, two signed-in users and row seeders.

Seeded rows bypass the write policy and get strictly increasing created_at
values, so the order of seeding is the order of creation.
"""

import pytest

from api.deps import reset_backend
from recipeshare.backends.base import Session
from recipeshare.backends.factory import create_memory_backend


@pytest.fixture
def backend():
    return create_memory_backend()


@pytest.fixture
def gateway(backend):
    return backend.gateway


def _user(gateway, user_id, full_name):
    gateway.seed("profiles", {"id": user_id, "full_name": full_name, "bio": f"{full_name} cooks."})
    return Session(user_id=user_id, email=f"{user_id}@example.com", access_token=f"token-{user_id}")


@pytest.fixture
def alice(gateway):
    return _user(gateway, "alice", "Alice Baker")


@pytest.fixture
def bob(gateway):
    return _user(gateway, "bob", "Bob Cook")


@pytest.fixture
def seed_recipe(gateway):
    """Factory: seed_recipe(owner_id, title, category="dessert", **fields) -> stored row."""
    def _seed(owner_id, title, category="dessert", cooking_steps="Mix and serve.", **fields):
        row = {
            "title": title,
            "description": None,
            "ingredients": ["1 cup flour"],
            "cooking_steps": cooking_steps,
            "category": category,
            "user_id": owner_id,
        }
        row.update(fields)
        return gateway.seed("recipes", row)
    return _seed


@pytest.fixture
def seed_like(gateway):
    def _seed(recipe_id, user_id):
        return gateway.seed("recipe_likes", {"recipe_id": recipe_id, "user_id": user_id})
    return _seed


@pytest.fixture
def seed_favorite(gateway):
    def _seed(recipe_id, user_id):
        return gateway.seed("recipe_favorites", {"recipe_id": recipe_id, "user_id": user_id})
    return _seed


@pytest.fixture
def api_backend():
    """Fresh in-memory backend installed as the API's backend for one test."""
    backend = create_memory_backend()
    reset_backend(backend)
    yield backend
    reset_backend(None)
