"""
Tests for InMemoryBackend and the query builder it executes.
"""

import pytest

from activeorm.backends import InMemoryBackend
from activeorm.backends.base import (
    BackendError,
    DuplicateKeyError,
    ReturningNotSupportedError,
)

pytestmark = pytest.mark.anyio


@pytest.fixture
async def people():
    backend = InMemoryBackend()
    await backend.query("users").insert([
        {"name": "Alice", "age": 31, "city": "Oslo"},
        {"name": "bob", "age": 25, "city": None},
        {"name": "Carol", "age": 40, "city": "Rome"},
    ])
    return backend


class TestInsert:
    """Test inserts and primary key generation."""

    async def test_insert_returns_generated_ids(self):
        backend = InMemoryBackend()
        assert await backend.query("users").insert({"name": "a"}) == [1]
        assert await backend.query("users").insert([{"name": "b"}, {"name": "c"}]) == [2, 3]

    async def test_explicit_id_bumps_sequence(self):
        backend = InMemoryBackend()
        await backend.query("users").insert({"id": 10, "name": "a"})
        assert await backend.query("users").insert({"name": "b"}) == [11]

    async def test_duplicate_key(self):
        backend = InMemoryBackend()
        await backend.query("users").insert({"id": 1})
        with pytest.raises(DuplicateKeyError):
            await backend.query("users").insert({"id": 1})

    async def test_returning(self):
        backend = InMemoryBackend()
        rows = await backend.query("users").insert({"name": "a"}).returning("id", "name")
        assert rows == [{"id": 1, "name": "a"}]

    async def test_returning_not_supported(self):
        backend = InMemoryBackend(supports_returning=False)
        with pytest.raises(ReturningNotSupportedError):
            await backend.query("users").insert({"name": "a"}).returning("id")
        assert backend.rows("users") == []

    async def test_custom_primary_key(self):
        backend = InMemoryBackend(primary_keys={"codes": "code"})
        assert await backend.query("codes").insert({"label": "x"}) == [1]
        assert backend.rows("codes") == [{"label": "x", "code": 1}]

    async def test_rows_are_copies(self):
        backend = InMemoryBackend()
        await backend.query("users").insert({"tags": ["a"]})
        backend.rows("users")[0]["tags"].append("b")
        assert backend.rows("users")[0]["tags"] == ["a"]


class TestSelect:
    """Test filtering, ordering, projection and pagination."""

    async def test_equality(self, people):
        rows = await people.query("users").where({"name": "Alice"})
        assert [r["age"] for r in rows] == [31]

    async def test_keyword_conditions(self, people):
        rows = await people.query("users").where(age__gte=30)
        assert [r["name"] for r in rows] == ["Alice", "Carol"]

    @pytest.mark.parametrize("criteria,expected", [
        ({"age": {"gt": 30}}, ["Alice", "Carol"]),
        ({"age": {"lte": 25}}, ["bob"]),
        ({"age": [25, 40]}, ["bob", "Carol"]),
        ({"age__nin": [25, 40]}, ["Alice"]),
        ({"age__between": [30, 35]}, ["Alice"]),
        ({"name__like": "C%"}, ["Carol"]),
        ({"name__ilike": "B%"}, ["bob"]),
        ({"city": None}, ["bob"]),
        ({"city__ne": "Oslo"}, ["Carol"]),
        ({"city": {"null": False}}, ["Alice", "Carol"]),
        ({"or": [{"name": "Alice"}, {"age": 40}]}, ["Alice", "Carol"]),
        ({"not": {"name": "Alice"}}, ["bob", "Carol"]),
    ])
    async def test_operators(self, people, criteria, expected):
        rows = await people.query("users").where(criteria)
        assert [r["name"] for r in rows] == expected

    async def test_or_where_and_where_not(self, people):
        rows = await people.query("users").where({"name": "Alice"}).or_where({"name": "bob"})
        assert [r["name"] for r in rows] == ["Alice", "bob"]

        rows = await people.query("users").where_not({"name": "Alice"})
        assert [r["name"] for r in rows] == ["bob", "Carol"]

    async def test_qualified_columns(self, people):
        rows = await people.query("users").where({"users.age": 25}).select("users.name")
        assert rows == [{"name": "bob"}]

    async def test_order_limit_offset(self, people):
        rows = await people.query("users").order_by("age", "desc").limit(2)
        assert [r["name"] for r in rows] == ["Carol", "Alice"]

        rows = await people.query("users").order_by("age").offset(1).limit(1)
        assert [r["name"] for r in rows] == ["Alice"]

    async def test_nulls_sort_last_ascending(self, people):
        rows = await people.query("users").order_by("city")
        assert [r["city"] for r in rows] == ["Oslo", "Rome", None]

    async def test_first_and_count(self, people):
        assert (await people.query("users").where({"age": 40}).first())["name"] == "Carol"
        assert await people.query("users").where({"age": 99}).first() is None
        assert await people.query("users").where({"age__gt": 20}).count() == 3

    async def test_select_alias(self, people):
        rows = await people.query("users").where({"age": 31}).select("name as username")
        assert rows == [{"username": "Alice"}]

    async def test_distinct(self, people):
        await people.query("users").insert({"name": "Dan", "age": 31, "city": "Oslo"})
        rows = await people.query("users").distinct("city").where({"city__notnull": True})
        assert rows == [{"city": "Oslo"}, {"city": "Rome"}]

    async def test_join(self, people):
        await people.query("profiles").insert([
            {"user_id": 1, "bio": "hi"},
            {"user_id": 3, "bio": "yo"},
        ])
        rows = await (
            people.query("users")
            .join("profiles", "profiles.user_id", "users.id")
            .select("users.name", "profiles.bio")
        )
        assert rows == [{"name": "Alice", "bio": "hi"}, {"name": "Carol", "bio": "yo"}]

    async def test_left_join(self, people):
        await people.query("profiles").insert({"user_id": 1, "bio": "hi"})
        rows = await (
            people.query("users")
            .left_join("profiles", "profiles.user_id", "users.id")
            .select("users.name", "profiles.bio")
            .order_by("users.id")
        )
        assert rows == [
            {"name": "Alice", "bio": "hi"},
            {"name": "bob", "bio": None},
            {"name": "Carol", "bio": None},
        ]


class TestWrites:
    """Test update and delete."""

    async def test_update(self, people):
        changed = await people.query("users").where({"age__lt": 35}).update({"city": "Paris"})
        assert changed == 2
        assert [r["city"] for r in people.rows("users")] == ["Paris", "Paris", "Rome"]

    async def test_delete(self, people):
        deleted = await people.query("users").where({"name": "bob"}).delete()
        assert deleted == 1
        assert [r["name"] for r in people.rows("users")] == ["Alice", "Carol"]

    async def test_clear(self, people):
        people.clear("users")
        assert people.rows("users") == []
        assert await people.query("users").insert({"name": "z"}) == [1]


class TestTransactions:
    """Test snapshot transactions."""

    async def test_commit(self, people):
        tx = people.transaction()
        await tx.query("users").insert({"name": "Dan"})
        assert len(people.rows("users")) == 3

        await tx.commit()

        assert len(people.rows("users")) == 4

    async def test_rollback(self, people):
        tx = people.transaction("repeatable read")
        assert tx.isolation_level == "repeatable read"
        await tx.query("users").where({"name": "Alice"}).delete()

        await tx.rollback()

        assert len(people.rows("users")) == 3

    async def test_finished_handle_rejects_queries(self, people):
        tx = people.transaction()
        await tx.commit()
        with pytest.raises(BackendError):
            tx.query("users")
        with pytest.raises(BackendError):
            await tx.commit()

    async def test_commit_outside_transaction(self, people):
        with pytest.raises(BackendError):
            await people.commit()

    async def test_queries_count_on_parent(self, people):
        people.reset_query_count()
        tx = people.transaction()
        await tx.query("users")
        assert tx.query_count == 1
        assert people.query_count == 1


class TestToSql:
    """Test SQL compilation."""

    def test_select(self):
        qb = InMemoryBackend().query("users").where({"age__gte": 18}).order_by("name").limit(10)
        assert qb.to_sql() == {
            "method": "select",
            "sql": 'select * from "users" where "age" >= ? order by "name" asc limit ?',
            "bindings": [18, 10],
        }

    def test_projection_join_and_distinct(self):
        qb = (
            InMemoryBackend().query("users")
            .join("profiles", "profiles.user_id", "users.id")
            .distinct("users.id")
        )
        assert qb.to_sql()["sql"] == (
            'select distinct "users"."id" from "users" '
            'inner join "profiles" on "profiles"."user_id" = "users"."id"'
        )

    def test_insert(self):
        qb = InMemoryBackend().query("users").insert({"name": "a", "age": 3}).returning("id")
        assert qb.to_sql() == {
            "method": "insert",
            "sql": 'insert into "users" ("name", "age") values (?, ?) returning "id"',
            "bindings": ["a", 3],
        }

    def test_update(self):
        qb = InMemoryBackend().query("users").where({"id": 1}).update({"name": "b"})
        assert qb.to_sql()["sql"] == 'update "users" set "name" = ? where "id" = ?'
        assert qb.to_sql()["bindings"] == ["b", 1]

    def test_delete_and_count(self):
        backend = InMemoryBackend()
        assert backend.query("users").where({"id": 1}).delete().to_sql()["sql"] == (
            'delete from "users" where "id" = ?'
        )
        assert backend.query("users").count().to_sql()["sql"] == 'select count(*) from "users"'

    def test_str_inlines_bindings(self):
        qb = InMemoryBackend().query("users").where({"name": "bob"})
        assert str(qb) == "select * from \"users\" where \"name\" = 'bob'"
