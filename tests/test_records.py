"""
Tests for record identity, dirty tracking, persistence and lifecycle hooks.
"""

import asyncio
import logging

import pytest

from activeorm import SchemaError, UnknownFieldError, ValidationError
from activeorm.backends import BackendError, InMemoryQueryBuilder

pytestmark = pytest.mark.anyio


class Users:
    fields = {
        "email": {"type": "string", "required": True},
        "name": "string",
        "age": {"type": "integer", "default": 0},
        "profile": "json",
    }


class Audited:
    """Records every hook it sees into the repository context."""

    fields = {"name": "string"}

    def _log(self, event):
        self.get_context("events").append(event)

    async def pre_create(self):
        self._log("pre_create")
        return await super().pre_create()

    async def post_create(self):
        self._log("post_create")
        return await super().post_create()

    async def pre_update(self):
        self._log("pre_update")
        return await super().pre_update()

    async def post_update(self):
        self._log("post_update")
        return await super().post_update()

    async def pre_validate(self):
        self._log("pre_validate")
        return await super().pre_validate()

    async def pre_unlink(self):
        self._log(f"pre_unlink detached={self._model is None}")
        return await super().pre_unlink()

    async def post_unlink(self):
        self._log("post_unlink")
        return await super().post_unlink()


@pytest.fixture
def users(repo):
    repo.register(Users)
    return repo.Users


class TestIdentityMap:
    """Test that one primary key maps to one live record."""

    async def test_allocate_returns_resident_record(self, users):
        user = await users.create({"email": "a@example.com"})

        again = users.allocate({"id": user.id, "name": "Ann"})

        assert again is user
        assert user.name == "Ann"

    async def test_allocations_before_persistence_share_identity(self, users):
        first = users.allocate({"id": 99, "email": "x@example.com"})
        second = users.allocate({"id": 99})

        assert first is second
        assert second.email == "x@example.com"

    async def test_sync_overrides_pending_change(self, users):
        user = await users.create({"email": "a@example.com", "name": "old"})
        user.name = "local"

        users.allocate({"id": user.id, "name": "remote"})

        assert user.name == "remote"
        assert not user._is_dirty

    async def test_sync_never_replaces_primary_key(self, users):
        user = await users.create({"email": "a@example.com"})
        user.sync({"id": 1234, "name": "x"})
        assert user.id == 1

    async def test_query_results_are_resident_records(self, repo, users):
        user = await users.create({"email": "a@example.com"})
        rows = await users.where({"email": "a@example.com"})
        assert rows == [user]

    async def test_repr(self, users):
        user = await users.create({"email": "a@example.com"})
        assert repr(user) == "<Users 1>"


class TestDirtyTracking:
    """Test change tracking and flush idempotence."""

    async def test_clean_flush_is_free(self, repo, users):
        user = await users.create({"email": "a@example.com"})
        repo.reset_query_count()

        await user.flush()

        assert repo.query_count == 0

    async def test_repeated_flush_writes_once(self, repo, users):
        user = await users.create({"email": "a@example.com"})
        repo.reset_query_count()

        user.name = "B"
        await user.flush()
        await user.flush()

        assert repo.query_count == 1
        assert repo.backend.rows("users")[0]["name"] == "B"

    async def test_assigning_committed_value_is_not_a_change(self, users):
        user = await users.create({"email": "a@example.com", "name": "A"})
        user.name = "B"
        user.name = "A"
        assert not user._is_dirty
        assert not user.is_changed("name")

    async def test_is_changed(self, users):
        fresh = users.allocate({"email": "new@example.com"})
        assert fresh.is_changed("name")

        user = await users.create({"email": "a@example.com"})
        assert not user.is_changed("name")
        user.name = "changed"
        assert user.is_changed("name")

    async def test_model_flush_writes_every_dirty_record(self, repo, users):
        one = await users.create({"email": "1@example.com"})
        two = await users.create({"email": "2@example.com"})
        one.name = "one"
        two.name = "two"

        await repo.flush()

        assert [row["name"] for row in repo.backend.rows("users")] == ["one", "two"]

    async def test_failed_validation_keeps_changes(self, repo, users):
        user = await users.create({"email": "a@example.com"})
        user.email = None

        with pytest.raises(ValidationError, match="email"):
            await user.flush()
        assert user._is_dirty
        assert user.is_changed("email")

        user.email = "b@example.com"
        await user.flush()
        assert repo.backend.rows("users")[0]["email"] == "b@example.com"

    async def test_failed_write_keeps_changes(self, repo, users, monkeypatch):
        user = await users.create({"email": "a@example.com"})
        execute = InMemoryQueryBuilder.execute
        failures = [BackendError("connection lost")]

        async def flaky_execute(query):
            if query._method == "update" and failures:
                raise failures.pop()
            return await execute(query)

        monkeypatch.setattr(InMemoryQueryBuilder, "execute", flaky_execute)
        user.name = "changed"

        with pytest.raises(BackendError, match="connection lost"):
            await user.flush()
        assert user._is_dirty
        assert user.is_changed("name")
        assert repo.backend.rows("users")[0].get("name") is None

        await user.flush()
        assert not user._is_dirty
        assert repo.backend.rows("users")[0]["name"] == "changed"

    async def test_invalid_type_rejected_on_flush(self, users):
        user = await users.create({"email": "a@example.com"})
        user.age = "not a number"

        with pytest.raises(ValidationError, match="age"):
            await user.flush()


class TestCreate:
    """Test record creation."""

    async def test_defaults_applied(self, users):
        user = await users.create({"email": "a@example.com"})
        assert user.age == 0
        assert user.id == 1

    async def test_required_field_missing(self, repo, users):
        with pytest.raises(ValidationError, match="Field email is required on model Users"):
            await users.create({"name": "nobody"})
        assert repo.backend.rows("users") == []

    async def test_values_are_coerced(self, users):
        user = await users.create({"email": "a@example.com", "age": "42"})
        assert user.age == 42


class TestWrite:
    """Test write() with known and unknown keys."""

    async def test_write_assigns_and_flushes(self, repo, users):
        user = await users.create({"email": "a@example.com"})

        await user.write({"name": "C", "age": 3})

        row = repo.backend.rows("users")[0]
        assert row["name"] == "C"
        assert row["age"] == 3
        assert not user._is_dirty

    async def test_unknown_key_raises_before_any_change(self, users):
        user = await users.create({"email": "a@example.com"})

        with pytest.raises(UnknownFieldError, match="nope") as exc_info:
            await user.write({"name": "C", "nope": 1})

        assert exc_info.value.fields == ["nope"]
        assert user.name is None
        assert not user._is_dirty

    async def test_write_without_data_flushes(self, repo, users):
        user = await users.create({"email": "a@example.com"})
        user.name = "pending"

        await user.write()

        assert repo.backend.rows("users")[0]["name"] == "pending"


class TestSerialization:
    """Test to_json / to_raw_json snapshots."""

    async def test_raw_json_round_trip(self, users, make_repo):
        user = await users.create({
            "email": "a@example.com",
            "name": "Ann",
            "profile": {"theme": "dark", "tags": [1, 2]},
        })
        raw = user.to_raw_json()
        assert raw == {
            "id": 1,
            "email": "a@example.com",
            "name": "Ann",
            "age": 0,
            "profile": {"theme": "dark", "tags": [1, 2]},
        }

        other = make_repo(Users)
        copy = other.Users.allocate(raw)
        assert copy is not user
        assert copy.to_raw_json() == raw

    async def test_json_field_stored_as_text(self, repo, users):
        await users.create({"email": "a@example.com", "profile": {"a": 1}})
        assert repo.backend.rows("users")[0]["profile"] == '{"a": 1}'


class TestHelpers:
    """Test field and context helpers on records."""

    async def test_get_field(self, users):
        user = await users.create({"email": "a@example.com"})
        assert user.get_field("email").name == "email"
        with pytest.raises(SchemaError):
            user.get_field("missing")

    async def test_context_is_repository_wide(self, repo, users):
        user = await users.create({"email": "a@example.com"})
        user.set_context("tenant", 3)
        assert repo.get_context("tenant") == 3
        assert users.get_context("tenant") == 3

    async def test_get_model(self, repo, users):
        user = await users.create({"email": "a@example.com"})
        assert user.get_model("Users") is users


class TestHydration:
    """Test deferred hydration of records allocated from bare keys."""

    async def test_bare_key_record_hydrates_on_ready(self, users, make_repo):
        await users.create({"email": "a@example.com", "name": "Ann"})
        other = make_repo(Users)

        user = other.Users.allocate({"id": 1})
        assert not user._is_ready

        await user.ready()
        assert user.name == "Ann"

    async def test_concurrent_hydration_is_batched(self, users, make_repo):
        for n in range(3):
            await users.create({"email": f"{n}@example.com"})
        other = make_repo(Users)
        records = [other.Users.allocate({"id": pk}) for pk in (1, 2, 3)]
        other.reset_query_count()

        await asyncio.gather(*(record.ready() for record in records))

        assert other.query_count == 1
        assert [r.email for r in records] == ["0@example.com", "1@example.com", "2@example.com"]

    async def test_missing_row_clears_key(self, users, caplog):
        user = users.allocate({"id": 42})

        with caplog.at_level(logging.WARNING, logger="activeorm"):
            await user.ready()

        assert user._pk is None
        assert 42 not in users.entities
        assert "Users:42 not found" in caplog.text

    async def test_lookup_skips_unknown_ids(self, users, make_repo):
        await users.create({"email": "a@example.com"})
        other = make_repo(Users)

        records = await other.Users.lookup([1, 99])

        assert [r.id for r in records] == [1]

    async def test_find_by_id(self, users, make_repo):
        await users.create({"email": "a@example.com"})
        other = make_repo(Users)

        user = await other.Users.find_by_id(1)
        assert user.email == "a@example.com"
        assert await other.Users.find_by_pk(1) is user
        assert await other.Users.find_by_id(2) is None


class TestLifecycle:
    """Test hook order and model events."""

    @pytest.fixture
    def audited(self, repo):
        events = []
        repo.set_context("events", events)
        repo.register(Audited)
        for event in ("create", "update", "unlink"):
            repo.Audited.on(event, lambda record, event=event: events.append(f"event:{event}"))
        return repo.Audited, events

    async def test_create_hooks(self, audited):
        model, events = audited
        await model.create({"name": "x"})
        assert events == ["pre_create", "pre_validate", "post_create", "event:create"]

    async def test_update_hooks(self, audited):
        model, events = audited
        record = await model.create({"name": "x"})
        events.clear()

        record.name = "y"
        await record.flush()

        assert events == ["pre_update", "pre_validate", "post_update", "event:update"]

    async def test_clean_flush_runs_no_hooks(self, audited):
        model, events = audited
        record = await model.create({"name": "x"})
        events.clear()

        await record.flush()

        assert events == []

    async def test_unlink_detaches_before_hooks(self, repo, audited):
        model, events = audited
        record = await model.create({"name": "x"})
        events.clear()

        await record.unlink()

        assert events == [
            "pre_unlink detached=True",
            "pre_validate",
            "post_unlink",
            "event:unlink",
        ]
        assert record._model is None
        assert 1 not in model.entities
        assert repo.backend.rows("audited") == []

    async def test_second_unlink_is_noop(self, repo, audited):
        model, events = audited
        record = await model.create({"name": "x"})
        await record.unlink()
        events.clear()
        repo.reset_query_count()

        await record.unlink()

        assert events == []
        assert repo.query_count == 0
