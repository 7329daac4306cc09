"""Test offset and keyset pagination."""

import pytest

from relmap import CompilationError, desc, gt


@pytest.fixture
def many_posts(seeded):
    seeded.execute(seeded.insert("posts").values([{"title": f"Extra {i}", "content": "..."} for i in range(20)]))
    return seeded


def test_keyset_pages_equal_unbounded_result(many_posts):
    db = many_posts
    query = db.select("posts").order_by("-id")
    unbounded = [p.id for p in db.all(query)]

    pages = list(db.paginate(query, 7))

    assert [len(page) for page in pages] == [7, 7, 7, 4]
    assert [p.id for page in pages for p in page] == unbounded


def test_keyset_pages_ascending_exact_multiple(many_posts):
    db = many_posts
    pages = list(db.paginate(db.select("posts").order_by("id"), 5))

    assert len(pages) == 5
    assert [p.id for page in pages for p in page] == list(range(1, 26))


def test_manual_keyset_cursor(many_posts):
    db = many_posts
    query = db.select("posts").order_by(desc("id"))

    first = db.all(query.after(None).limit(10))
    second = db.all(query.after(first[-1].id).limit(10))

    assert [p.id for p in first] == list(range(25, 15, -1))
    assert [p.id for p in second] == list(range(15, 5, -1))


def test_keyset_on_filtered_query(many_posts):
    db = many_posts
    pages = list(db.paginate(db.select("posts").where(gt("id", 20)).order_by("id"), 2))
    assert [[p.id for p in page] for page in pages] == [[21, 22], [23, 24], [25]]


def test_keyset_on_unique_text_column(seeded):
    pages = list(seeded.paginate(seeded.select("users").order_by("email"), 2))
    assert [[u.name for u in page] for page in pages] == [["Ada", "Grace"], ["Linus"]]


def test_offset_pages_with_tie_break_are_stable(many_posts):
    """The id tie-break keeps offset pages stable when created_at values collide."""
    db = many_posts
    query = db.select("posts").order_by("created_at", "id")
    unbounded = [p.id for p in db.all(query)]

    paged = []
    for offset in range(0, 25, 10):
        paged.extend(p.id for p in db.all(query.limit(10).offset(offset)))

    assert paged == unbounded
    assert db.all(query.limit(10).offset(10)) == db.all(query.limit(10).offset(10))


def test_limit_zero_returns_nothing(seeded):
    assert seeded.all(seeded.select("posts").limit(0)) == []


def test_offset_past_end(seeded):
    assert seeded.all(seeded.select("posts").order_by("id").limit(10).offset(100)) == []


def test_paginate_validation(seeded):
    with pytest.raises(CompilationError, match="positive integer"):
        seeded.paginate(seeded.select("posts").order_by("id"), 0)
    with pytest.raises(CompilationError, match="exactly one unique column"):
        seeded.paginate(seeded.select("posts"), 5)
    with pytest.raises(CompilationError, match="projected"):
        seeded.paginate(seeded.select("posts").columns("title").order_by("id"), 5)


def test_paginate_non_unique_column_fails_before_execution(seeded):
    with pytest.raises(CompilationError, match="must be unique"):
        seeded.paginate(seeded.select("posts").order_by("created_at"), 2)


def _users_with_posts(db):
    return db.select("users").join_related("posts").columns("users.id", "posts.id")


def test_keyset_rejects_cursor_repeated_by_to_many_join(seeded):
    query = _users_with_posts(seeded).order_by("users.id")

    with pytest.raises(CompilationError, match="repeats across rows joined from user_posts, posts"):
        seeded.paginate(query, 1)
    with pytest.raises(CompilationError, match="repeats across rows"):
        query.after(None).limit(2).build()


def test_offset_pages_over_to_many_join_equal_unbounded_result(seeded):
    query = _users_with_posts(seeded).order_by("users.id", "posts.id")
    unbounded = [(r["users"].id, r["posts"].id) for r in seeded.all(query)]

    paged = []
    for offset in range(0, 6, 2):
        paged.extend((r["users"].id, r["posts"].id) for r in seeded.all(query.limit(2).offset(offset)))

    assert len(unbounded) == 5
    assert paged == unbounded


def test_keyset_over_many_to_one_join(seeded):
    query = seeded.select("comments").join_related("author").order_by("comments.id")

    pages = list(seeded.paginate(query, 2))

    assert [[r["comments"].id for r in page] for page in pages] == [[1, 2], [3]]
    assert [r["users"].name for page in pages for r in page] == ["Grace", "Linus", "Ada"]
