"""Test eager nested fetches of related records."""

import logging

from relmap import Fetch, eq
from relmap.core.predicate import col


def test_many_to_many_fetch(seeded):
    users = seeded.all(seeded.select("users").order_by("id").fetch("posts"))

    assert [[p.id for p in u.posts] for u in users] == [[1, 2, 3], [2, 4], []]


def test_many_to_many_join_matches_fetch(seeded):
    """Explicit joins through the join entity and nested fetch agree."""
    joined = _explicit_join(seeded)

    fetched = seeded.all(seeded.select("users").order_by("id").fetch("posts"))
    from_fetch = {(u.id, p.title) for u in fetched for p in u.posts}

    assert joined == from_fetch


def _explicit_join(db):
    query = (
        db.select("users")
        .join("user_posts", on=eq("user_posts.user_id", col("users.id")))
        .join("posts", on=eq("posts.id", col("user_posts.post_id")))
        .columns("users.id", "posts.title")
    )
    return {(row["users"].id, row["posts"].title) for row in db.all(query)}


def test_reverse_many_to_many(seeded):
    post = seeded.first(seeded.select("posts").where(eq("id", 2)).fetch("authors", order_by=["name"]))
    assert [a.name for a in post.authors] == ["Ada", "Grace"]


def test_nested_fetch_depth_two(seeded):
    query = seeded.select("posts").order_by("id").fetch(
        "comments", order_by=["id"], fetch=[Fetch("author", columns=["name"])]
    )
    posts = seeded.all(query)

    assert [[c.author.name for c in p.comments] for p in posts] == [["Grace", "Linus"], ["Ada"], [], [], []]
    assert posts[0].comments[0].author.model_dump() == {"name": "Grace"}


def test_to_one_fetch(seeded):
    comment = seeded.first(seeded.select("comments").fetch("post", columns=["title"]))
    assert comment.post.title == "Post 1"


def test_fetch_limit_applies_per_parent(seeded):
    users = seeded.all(seeded.select("users").order_by("id").fetch("posts", order_by=["-id"], limit=1))
    assert [[p.id for p in u.posts] for u in users] == [[3], [4], []]


def test_fetch_where(seeded):
    post = seeded.first(seeded.select("posts").fetch("comments", where=eq("author_id", 3)))
    assert [c.content for c in post.comments] == ["Agreed"]


def test_fetch_without_projected_link_key(seeded):
    user = seeded.first(seeded.select("users").columns("name").fetch("comments", exclude=["post_id"]))

    assert not hasattr(user, "id")
    assert user.name == "Ada"
    assert [c.content for c in user.comments] == ["Thanks"]
    assert not hasattr(user.comments[0], "post_id")


def test_fetch_binds_parent_keys_in_batches(seeded, monkeypatch, caplog):
    query = seeded.select("users").order_by("id").fetch("posts", order_by=["id"])

    monkeypatch.setattr("relmap.core.database.FETCH_BATCH_SIZE", 2)
    with caplog.at_level(logging.DEBUG, logger="relmap.core.database"):
        users = seeded.all(query)

    assert [[p.id for p in u.posts] for u in users] == [[1, 2, 3], [2, 4], []]
    statements = [r.getMessage() for r in caplog.records if r.name == "relmap.core.database"]
    # Root query, then two batches for parent keys [1, 2] and [3]
    assert len(statements) == 3
    assert statements[1].endswith("params: [1, 2]")
    assert statements[2].endswith("params: [3]")
