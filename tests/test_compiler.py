"""Test SQL generation: quoting, positional parameters and statement shapes."""

import pytest

from relmap import (
    CompilationError,
    agg_ref,
    and_,
    avg,
    count,
    eq,
    excluded,
    gt,
    gte,
    in_,
    is_not_null,
    like,
    not_,
    not_in,
    or_,
)
from relmap.core.predicate import col
from relmap.core.query import Query
from relmap.sql.compiler import Binder, SQLCompiler


def test_select_is_qualified_and_parameterized(db):
    statement = db.compile(db.select("users").where(eq("users.id", 1)))

    assert statement.sql.startswith('SELECT "users"."id" AS "id", "users"."name" AS "name"')
    assert 'FROM "users_table" AS "users"' in statement.sql
    assert 'WHERE "users"."id" = ?' in statement.sql
    assert statement.params == (1,)
    assert statement.shape.mode == "records"
    assert statement.shape.entity == "users"


def test_values_are_never_inlined(db):
    hostile = "x'; DROP TABLE users_table; --"
    statement = db.compile(db.select("users").where(eq("name", hostile)))
    assert hostile not in statement.sql
    assert statement.params == (hostile,)


def test_params_follow_sql_order(db):
    predicate = and_(or_(eq("name", "Ada"), like("email", "%@example.com")), gte("age", 18), in_("id", [1, 2, 3]))
    statement = db.compile(db.select("users").where(predicate))

    assert statement.sql.count("?") == 6
    assert statement.params == ("Ada", "%@example.com", 18, 1, 2, 3)


def test_booleans_are_bound_as_integers(db):
    statement = db.compile(db.select("users").where(eq("id_verified", True)))
    assert statement.params == (1,)


def test_null_checks(db):
    statement = db.compile(db.select("users").where(and_(eq("age", None), is_not_null("email"))))
    assert '"users"."age" IS NULL' in statement.sql
    assert 'NOT "users"."email" IS NULL' in statement.sql
    assert statement.params == ()


def test_empty_in_list_matches_nothing(db):
    assert "1 = 0" in db.compile(db.select("users").where(in_("id", []))).sql
    assert "1 = 1" in db.compile(db.select("users").where(not_in("id", []))).sql


def test_not_wraps_operand(db):
    sql = db.compile(db.select("users").where(not_(or_(eq("id", 1), eq("id", 2))))).sql
    assert 'NOT ("users"."id" = ? OR "users"."id" = ?)' in sql


def test_join_related_many_to_many(db):
    statement = db.compile(db.select("users").join_related("posts").columns("users.name", "posts.title"))

    assert 'JOIN "user_posts_table" AS "user_posts" ON "users"."id" = "user_posts"."user_id"' in statement.sql
    assert 'JOIN "posts_table" AS "posts" ON "user_posts"."post_id" = "posts"."id"' in statement.sql
    assert '"users"."name" AS "users__name"' in statement.sql
    assert statement.shape.mode == "joined"


def test_left_join(db):
    query = db.select("users").left_join("comments", on=eq("comments.author_id", col("users.id")))
    assert 'LEFT JOIN "comments_table" AS "comments"' in db.compile(query).sql


def test_aggregate_group_having(db):
    query = (
        db.select("users")
        .join_related("posts")
        .group_by("users.name")
        .aggregate(n=count(), mean_age=avg("users.age"))
        .having(gt(agg_ref("n"), 1))
    )
    statement = db.compile(query)

    assert 'COUNT(*) AS "n"' in statement.sql
    assert 'AVG("users"."age") AS "mean_age"' in statement.sql
    assert 'GROUP BY "users"."name"' in statement.sql
    assert "HAVING COUNT(*) > ?" in statement.sql
    assert statement.params == (1,)
    assert statement.shape.mode == "rows"


def test_keyset_cursor_predicate(db):
    statement = db.compile(db.select("posts").order_by("-id").after(10).limit(5))
    assert 'WHERE "posts"."id" < ?' in statement.sql
    assert "LIMIT 5" in statement.sql
    assert statement.params == (10,)

    first_page = db.compile(db.select("posts").order_by("id").after(None).limit(5))
    assert "WHERE" not in first_page.sql
    assert db.compile(db.select("posts").order_by("id").after(10)).sql.count(">") == 1


def test_union_wrapped_when_ordered(db):
    union = db.select("users").columns("name").union(db.select("posts").columns("title"), all=True)
    plain = db.compile(union)
    assert "UNION ALL" in plain.sql
    assert plain.shape.mode == "rows"

    ordered = db.compile(union.order_by("name").limit(2))
    assert ordered.sql.startswith("SELECT * FROM (")
    assert "LIMIT 2" in ordered.sql


def test_count_statement(db):
    statement = db.compiler.compile_count(db.select("users").where(gt("age", 30)))
    assert statement.sql.startswith('SELECT COUNT(*) AS "count" FROM "users_table" AS "users"')
    assert statement.params == (30,)

    paged = db.compiler.compile_count(db.select("users").order_by("id").limit(2))
    assert "AS counted" in paged.sql or 'AS "counted"' in paged.sql


def test_insert_statement(db):
    statement = db.compile(db.insert("users").values({"name": "Ada", "email": "ada@example.com"}).returning("id"))

    assert statement.sql == (
        'INSERT INTO "users_table" ("name", "id_verified", "email") VALUES (?, ?, ?) RETURNING "id"'
    )
    assert statement.params == ("Ada", 0, "ada@example.com")
    assert statement.shape.mode == "records"


def test_insert_without_returning_has_no_rows(db):
    statement = db.compile(db.insert("posts").values({"title": "t", "content": "c"}))
    assert statement.shape.mode == "none"
    assert not statement.returns_rows


def test_upsert_statement(db):
    query = (
        db.insert("users")
        .values({"name": "Ada", "email": "ada@example.com"})
        .on_conflict_do_update("email")
        .returning()
    )
    sql = db.compile(query).sql
    assert 'ON CONFLICT ("email") DO UPDATE SET "name" = excluded."name", "id_verified" = excluded."id_verified"' in sql
    assert sql.endswith('RETURNING "id", "name", "id_verified", "age", "email"')


def test_upsert_explicit_assignments(db):
    query = (
        db.insert("users")
        .values({"name": "Ada", "email": "ada@example.com", "age": 30})
        .on_conflict_do_update("email", {"age": 31, "name": excluded("name")})
    )
    statement = db.compile(query)
    assert 'DO UPDATE SET "age" = ?, "name" = excluded."name"' in statement.sql
    assert statement.params == ("Ada", 0, 30, "ada@example.com", 31)


def test_do_nothing_without_target(db):
    sql = db.compile(db.insert("users").values({"name": "A", "email": "a@x"}).on_conflict_do_nothing()).sql
    assert sql.endswith("ON CONFLICT DO NOTHING")


def test_update_applies_server_onupdate(db):
    statement = db.compile(db.update("posts").set(title="New").where(eq("id", 1)))
    assert statement.sql == (
        'UPDATE "posts_table" SET "title" = ?, "updated_at" = (CAST(strftime(\'%s\', \'now\') AS INTEGER)) '
        'WHERE "id" = ?'
    )
    assert statement.params == ("New", 1)


def test_delete_statement(db):
    statement = db.compile(db.delete("comments").where(eq("post_id", 2)).returning("id"))
    assert statement.sql == 'DELETE FROM "comments_table" WHERE "post_id" = ? RETURNING "id"'
    assert statement.params == (2,)


def test_duckdb_dialect_placeholders(registry):
    compiler = SQLCompiler(registry, dialect="duckdb")
    statement = compiler.compile(Query.from_entity(registry, "users").where(and_(eq("name", "a"), eq("id", 2))))
    assert "$" not in statement.sql
    assert statement.params == ("a", 2)


def test_binder_orders_by_position():
    binder = Binder()
    first = binder.bind("a")
    second = binder.bind("b")
    sql = f"x = {second.sql()} AND y = {first.sql()}"
    assert binder.finalize(sql) == ("x = ? AND y = ?", ("b", "a"))


def test_compile_rejects_unknown_objects(db):
    with pytest.raises(CompilationError):
        db.compile(object())
