"""Pytest configuration and fixtures."""

import pytest

from relmap import Database
from tests.utils import SQLITE_DDL, make_registry


@pytest.fixture
def registry():
    """Fresh, unfrozen registry for each test."""
    return make_registry()


@pytest.fixture
def db(registry):
    """In-memory SQLite database with the blog tables created."""
    database = Database(registry)
    database.adapter.raw_connection.executescript(SQLITE_DDL)
    yield database
    database.close()


@pytest.fixture
def seeded(db):
    """Database with three users, five posts, authorships and comments.

    Ada wrote posts 1-3, Grace wrote posts 2 and 4, Linus wrote nothing and
    post 5 has no author.
    """
    db.execute(
        db.insert("users").values(
            [
                {"name": "Ada", "email": "ada@example.com", "age": 36, "id_verified": True},
                {"name": "Grace", "email": "grace@example.com", "age": 45},
                {"name": "Linus", "email": "linus@example.com"},
            ]
        )
    )
    db.execute(
        db.insert("posts").values([{"title": f"Post {i}", "content": f"Body {i}"} for i in range(1, 6)])
    )
    db.execute(
        db.insert("user_posts").values(
            [
                {"user_id": 1, "post_id": 1},
                {"user_id": 1, "post_id": 2},
                {"user_id": 1, "post_id": 3},
                {"user_id": 2, "post_id": 2},
                {"user_id": 2, "post_id": 4},
            ]
        )
    )
    db.execute(
        db.insert("comments").values(
            [
                {"post_id": 1, "author_id": 2, "content": "Nice"},
                {"post_id": 1, "author_id": 3, "content": "Agreed"},
                {"post_id": 2, "author_id": 1, "content": "Thanks"},
            ]
        )
    )
    return db
