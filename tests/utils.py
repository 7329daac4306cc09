"""Shared schema definitions for tests."""

from relmap import Column, Entity, Index, Registry

NOW = "CAST(strftime('%s', 'now') AS INTEGER)"

SQLITE_DDL = f"""
CREATE TABLE users_table (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL,
    id_verified INTEGER NOT NULL DEFAULT 0,
    age INTEGER,
    email TEXT NOT NULL UNIQUE
);
CREATE UNIQUE INDEX users_email_idx ON users_table (email);

CREATE TABLE posts_table (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    title TEXT NOT NULL,
    content TEXT NOT NULL,
    created_at INTEGER NOT NULL DEFAULT ({NOW}),
    updated_at INTEGER
);

CREATE TABLE user_posts_table (
    user_id INTEGER NOT NULL REFERENCES users_table (id),
    post_id INTEGER NOT NULL REFERENCES posts_table (id),
    PRIMARY KEY (user_id, post_id)
);

CREATE TABLE comments_table (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    post_id INTEGER NOT NULL REFERENCES posts_table (id),
    author_id INTEGER NOT NULL REFERENCES users_table (id),
    content TEXT NOT NULL
);
"""

USERS = Entity(
    name="users",
    table="users_table",
    columns=[
        Column(name="id", type="integer", primary_key=True, autoincrement=True),
        Column(name="name", type="text", nullable=False),
        Column(name="id_verified", type="boolean", nullable=False, default=False),
        Column(name="age", type="integer"),
        Column(name="email", type="text", nullable=False, unique=True),
    ],
    indexes=[Index(name="users_email_idx", columns=["email"], unique=True)],
)

POSTS = Entity(
    name="posts",
    table="posts_table",
    columns=[
        Column(name="id", type="integer", primary_key=True, autoincrement=True),
        Column(name="title", type="text", nullable=False),
        Column(name="content", type="text", nullable=False),
        Column(name="created_at", type="integer", nullable=False, server_default=NOW),
        Column(name="updated_at", type="integer", server_onupdate=NOW),
    ],
)

USER_POSTS = Entity(
    name="user_posts",
    table="user_posts_table",
    columns=[
        Column(name="user_id", type="integer", nullable=False, references="users.id"),
        Column(name="post_id", type="integer", nullable=False, references="posts.id"),
    ],
    primary_key=["user_id", "post_id"],
)

COMMENTS = Entity(
    name="comments",
    table="comments_table",
    columns=[
        Column(name="id", type="integer", primary_key=True, autoincrement=True),
        Column(name="post_id", type="integer", nullable=False, references="posts.id"),
        Column(name="author_id", type="integer", nullable=False, references="users.id"),
        Column(name="content", type="text", nullable=False),
    ],
)



def make_registry() -> Registry:
    """Registry with the blog schema and its relations."""
    registry = Registry()
    registry.register(USERS, POSTS, USER_POSTS, COMMENTS)

    registry.declare_relation("users", "posts", "posts", "many_to_many", through="user_posts")
    registry.declare_relation("posts", "authors", "users", "many_to_many", through="user_posts")
    registry.declare_relation("users", "comments", "comments", "one_to_many")
    registry.declare_relation("posts", "comments", "comments", "one_to_many")
    registry.declare_relation("comments", "author", "users", "many_to_one")
    registry.declare_relation("comments", "post", "posts", "many_to_one")
    return registry
