"""
Tests for model-level behavior: tables, indexes, events, requests and the
insert fallback for backends without RETURNING.
"""

import pytest

from activeorm import (
    Connection,
    InMemoryBackend,
    Repository,
    SchemaError,
    Settings,
)
from activeorm.models import infer_table

pytestmark = pytest.mark.anyio


class Tasks:
    fields = {"title": "string", "priority": "integer"}


@pytest.fixture
def tasks(repo):
    repo.register(Tasks)
    return repo.Tasks


async def seed(tasks):
    for title, priority in (("a", 2), ("b", 3), ("c", 1)):
        await tasks.create({"title": title, "priority": priority})


class TestTables:
    """Test table name inference."""

    @pytest.mark.parametrize("name,table", [
        ("Users", "users"),
        ("BlogPost", "blog_post"),
        ("HTTPRequestLog", "httprequest_log"),
    ])
    def test_infer_table(self, name, table):
        assert infer_table(name) == table


class TestIndexes:
    """Test index declarations."""

    def test_declared_and_implied(self, repo):
        repo.register({
            "name": "People",
            "fields": {
                "email": {"type": "string", "unique": True},
                "last": "string",
                "first": "string",
                "city": {"type": "string", "index": True},
            },
            "indexes": [{"fields": ["last", "first"]}],
        })

        indexes = {index.name: index for index in repo.People.indexes}

        assert set(indexes) == {
            "people_last_first_idx",
            "people_email_unique",
            "people_city_idx",
        }
        assert indexes["people_email_unique"].unique
        assert indexes["people_last_first_idx"].fields == ["last", "first"]

    def test_named_indexes_from_mapping(self, repo):
        repo.register({
            "name": "People",
            "fields": {"last": "string"},
            "indexes": {"by_last": {"fields": "last"}},
        })
        [index] = repo.People.indexes
        assert index.name == "by_last"
        assert index.fields == ["last"]

    def test_unknown_field(self, repo):
        repo.register({
            "name": "People",
            "fields": {"last": "string"},
            "indexes": [{"fields": ["missing"]}],
        })
        with pytest.raises(SchemaError, match="unknown field missing"):
            repo.People.query()

    def test_empty_index_rejected(self, repo):
        with pytest.raises(ValueError):
            repo.register({"name": "People", "indexes": [{"fields": []}]})


class TestEvents:
    """Test model event listeners."""

    async def test_init_event(self, repo):
        seen = []
        model = repo.register(Tasks)
        model.on("init", lambda m: seen.append(m.name))

        model.query()

        assert seen == ["Tasks"]


class TestRequests:
    """Test request execution through a model."""

    async def test_where_and_first(self, tasks):
        await seed(tasks)

        task = await tasks.where({"title": "b"}).first()
        assert task.priority == 3
        assert await tasks.where({"title": "zzz"}).first() is None
        assert (await tasks.first_where({"priority": 1})).title == "c"
        assert (await tasks.find_one({"priority": 2})).title == "a"

    async def test_keyword_conditions_and_ordering(self, tasks):
        await seed(tasks)

        rows = await tasks.where(priority__gte=2).order_by("priority", "desc")

        assert [t.title for t in rows] == ["b", "a"]

    async def test_or_where_and_where_not(self, tasks):
        await seed(tasks)

        rows = await tasks.where({"title": "a"}).or_where({"title": "c"})
        assert sorted(t.title for t in rows) == ["a", "c"]

        rows = await tasks.query().where_not({"title": "a"})
        assert sorted(t.title for t in rows) == ["b", "c"]

    async def test_count_is_not_wrapped(self, tasks):
        await seed(tasks)
        assert await tasks.query().count() == 3

    async def test_explicit_projection_is_kept(self, tasks):
        await seed(tasks)
        rows = await tasks.query().select("tasks.title as label")
        assert rows == [{"label": "a"}, {"label": "b"}, {"label": "c"}]

    async def test_request_executes_once(self, repo, tasks):
        await seed(tasks)
        request = tasks.query()
        assert request.state == "unexecuted"
        repo.reset_query_count()

        first = await request
        second = await request

        assert request.state == "resolved"
        assert first is second
        assert repo.query_count == 1
        assert repr(request) == "<Request Tasks resolved>"

    async def test_str_and_to_sql(self, tasks):
        request = tasks.where({"title": "a"})
        assert str(request) == "select * from \"tasks\" where \"tasks\".\"title\" = 'a'"
        assert request.to_sql()["bindings"] == ["a"]

    async def test_include_marks_relations(self, tasks):
        request = tasks.query().include("owner").include(["tags"])
        assert request.query_builder._include_relations == {"owner", "tags"}

    async def test_write_methods_return_raw_results(self, tasks):
        await seed(tasks)
        assert await tasks.unscoped().where({"title": "a"}).update({"priority": 9}) == 1
        assert await tasks.unscoped().where({"title": "a"}).delete() == 1


class TestReturningFallback:
    """Test create() against a backend without RETURNING support."""

    async def test_ids_read_back(self):
        backend = InMemoryBackend(supports_returning=False)
        repo = Repository(Connection(backend, settings=Settings(cache_enabled=False)))
        repo.register(Tasks)

        first = await repo.Tasks.create({"title": "a"})
        second = await repo.Tasks.create({"title": "b"})

        assert first.id == 1
        assert second.id == 2
        assert [row["title"] for row in backend.rows("tasks")] == ["a", "b"]
