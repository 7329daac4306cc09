"""Test query builders: immutability and build-time validation."""

import pytest

from relmap import CompilationError, Fetch, agg_ref, and_, count, desc, eq, gt, or_, sum_
from relmap.core.predicate import ColumnRef, Comparison, NullCheck, col
from relmap.core.query import Query


def test_builders_are_immutable(db):
    base = db.select("users")
    filtered = base.where(eq("name", "Ada"))

    assert base.descriptor.where is None
    assert filtered.descriptor.where == Comparison(ColumnRef("users", "name"), "=", "Ada")
    assert filtered is not base


def test_bare_columns_bind_to_root(db):
    query = db.select("posts").columns("id", "title")
    assert query.descriptor.columns == (ColumnRef("posts", "id"), ColumnRef("posts", "title"))


def test_bare_alias_projects_all_its_columns(db):
    query = db.select("users").join_related("comments").columns("users.name", "comments")
    labels = [o.label for o in query.output_columns()]
    assert labels == ["users__name", "comments__id", "comments__post_id", "comments__author_id", "comments__content"]


def test_exclude(db):
    labels = [o.label for o in db.select("users").exclude("email", "age").output_columns()]
    assert labels == ["id", "name", "id_verified"]

    with pytest.raises(CompilationError, match="unknown columns"):
        db.select("users").exclude("password")


def test_unknown_column_in_where(db):
    with pytest.raises(CompilationError, match="Unknown column 'nickname'"):
        db.select("users").where(eq("nickname", "x"))


def test_unknown_alias(db):
    with pytest.raises(CompilationError, match="Unknown alias 'posts'"):
        db.select("users").where(eq("posts.title", "x"))


def test_none_predicates_compose_away(db):
    min_age = None
    query = db.select("users").where(and_(eq("name", "Ada"), gt("age", min_age) if min_age is not None else None))
    assert query.descriptor.where == Comparison(ColumnRef("users", "name"), "=", "Ada")
    assert db.select("users").where(None).descriptor.where is None
    assert and_(None, None) is None
    assert or_() is None


def test_eq_none_means_is_null():
    assert eq("users.age", None) == NullCheck(col("users.age"))


def test_ordering_comparison_with_none_fails():
    with pytest.raises(CompilationError, match="use is_null"):
        gt("users.age", None)


def test_limit_requires_deterministic_order(db):
    with pytest.raises(CompilationError, match="order_by"):
        db.select("users").limit(10).build()
    with pytest.raises(CompilationError, match="unique tie-break"):
        db.select("users").order_by("-age").limit(10).build()

    db.select("users").order_by("-age", "id").limit(10).build()
    db.select("users").order_by("email").offset(5).build()


def test_limit_after_to_many_join_requires_joined_key(db):
    query = db.select("users").join_related("posts").columns("users.id", "posts.id")

    with pytest.raises(CompilationError, match="rows of user_posts, posts are not identified"):
        query.order_by("users.id").limit(2).build()

    query.order_by("users.id", "posts.id").limit(2).build()


def test_limit_after_to_one_join_needs_only_root_key(db):
    db.select("comments").join_related("author").order_by("-comments.id").limit(2).build()


def test_explicit_join_equalities_identify_rows(db):
    query = (
        db.select("users")
        .join("user_posts", on=eq("user_posts.user_id", col("users.id")))
        .join("posts", on=eq("posts.id", col("user_posts.post_id")))
    )

    with pytest.raises(CompilationError, match="unique tie-break"):
        query.order_by("users.id").offset(1).build()
    query.order_by("users.id", "posts.id").offset(1).build()


def test_with_tie_break_adds_keys_of_unidentified_aliases(db):
    query = db.select("users").join_related("posts").order_by("users.id").with_tie_break()

    assert [o.target for o in query.descriptor.order_by] == [
        ColumnRef("users", "id"),
        ColumnRef("user_posts", "user_id"),
        ColumnRef("user_posts", "post_id"),
    ]
    assert db.select("users").order_by("email").with_tie_break().descriptor.order_by == (
        db.select("users").order_by("email").descriptor.order_by
    )


def test_limit_zero_needs_no_order(db):
    assert db.select("users").limit(0).build().limit == 0


def test_negative_limit_fails(db):
    with pytest.raises(CompilationError, match="non-negative"):
        db.select("users").limit(-1)


def test_keyset_and_offset_are_exclusive(db):
    with pytest.raises(CompilationError, match="Cannot combine"):
        db.select("users").order_by("id").offset(10).after(3)
    with pytest.raises(CompilationError, match="Cannot combine"):
        db.select("users").order_by("id").after(3).offset(10)


def test_keyset_requires_single_unique_order_column(db):
    with pytest.raises(CompilationError, match="must be unique"):
        db.select("users").order_by("age").after(30).build()
    with pytest.raises(CompilationError, match="exactly one cursor column"):
        db.select("users").order_by("name", "id").after(None).build()

    built = db.select("users").order_by(desc("email")).after("m").limit(5).build()
    assert built.keyset and built.cursor == "m"


def test_keyset_cursor_type_checked(db):
    with pytest.raises(CompilationError, match="not comparable"):
        db.select("users").order_by("id").after("abc").build()


def test_having_requires_aggregation(db):
    with pytest.raises(CompilationError, match="having"):
        db.select("users").having(gt("age", 3)).build()


def test_having_unknown_aggregate(db):
    query = db.select("users").group_by("name").aggregate(n=count())
    with pytest.raises(CompilationError, match="Unknown aggregate 'total'"):
        query.having(gt(agg_ref("total"), 1))


def test_aggregates_cannot_be_filtered_in_where(db):
    query = db.select("users").aggregate(n=count())
    with pytest.raises(CompilationError, match="having"):
        query.where(gt(agg_ref("n"), 1))


def test_projected_columns_must_be_grouped(db):
    query = db.select("users").columns("name", "age").group_by("name").aggregate(n=count())
    with pytest.raises(CompilationError, match="must appear in group_by"):
        query.build()


def test_sum_of_text_fails(db):
    with pytest.raises(CompilationError, match="Cannot sum text"):
        db.select("users").aggregate(total=sum_("name")).build()


def test_paginated_groups_must_order_by_group_columns(db):
    query = db.select("users").group_by("name").aggregate(n=count()).order_by("-n").limit(2)
    with pytest.raises(CompilationError, match="every group_by column"):
        query.build()
    query.order_by("name").build()


def test_union_type_mismatch_fails_at_build(db):
    names = db.select("users").columns("name")
    ids = db.select("posts").columns("id")
    with pytest.raises(CompilationError, match="incompatible types"):
        names.union(ids)


def test_union_arity_mismatch(db):
    with pytest.raises(CompilationError, match="must match"):
        db.select("users").columns("name").union(db.select("posts").columns("title", "content"))


def test_union_numeric_family_is_compatible(db):
    union = db.select("users").columns("age").union(db.select("users").columns("id_verified"), all=True)
    assert [o.type for o in union.output_columns()] == ["integer"]


def test_union_branches_cannot_paginate(db):
    ordered = db.select("users").columns("name").order_by("name")
    with pytest.raises(CompilationError, match="Union branches"):
        ordered.union(db.select("posts").columns("title"))


def test_union_order_by_output_names(db):
    union = db.select("users").columns("name").union(db.select("posts").columns("title"))
    with pytest.raises(CompilationError, match="Unknown union output column"):
        union.order_by("title")
    with pytest.raises(CompilationError, match="every output column"):
        union.limit(3).build()
    union.order_by("-name").limit(3).build()


def test_fetch_validation(db):
    with pytest.raises(CompilationError, match="to-one and cannot be limited"):
        db.select("comments").fetch("author", limit=1)
    with pytest.raises(CompilationError, match="Unknown column 'secret'"):
        db.select("posts").fetch("comments", columns=["secret"])
    with pytest.raises(CompilationError, match="cannot set both"):
        db.select("posts").fetch("comments", columns=["content"], exclude=["id"])


def test_fetch_binds_nested_filters(db):
    query = db.select("posts").fetch(
        "comments", where=eq("author_id", 1), order_by=["-id"], fetch=[Fetch("author", columns=["name"])]
    )
    spec = query.descriptor.fetches[0]
    assert spec.where == Comparison(ColumnRef("comments", "author_id"), "=", 1)
    assert spec.order_by[0].desc
    assert spec.fetch[0].relation == "author"


def test_fetch_cannot_combine_with_aggregation(db):
    with pytest.raises(CompilationError, match="Nested fetches"):
        db.select("posts").fetch("comments").aggregate(n=count()).build()


def test_explicit_join_alias_collision(db):
    with pytest.raises(CompilationError, match="already in use"):
        db.select("users").join("users", on=eq("users.id", col("users.id")))

    query = db.select("users").join("users", on=eq("users.id", col("friend.id")), alias="friend")
    assert query.descriptor.joins[0].alias == "friend"


def test_query_from_entity_validates_alias(registry):
    with pytest.raises(CompilationError, match="Invalid alias"):
        Query.from_entity(registry, "users", alias="u-1")
