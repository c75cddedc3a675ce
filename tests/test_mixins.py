"""
Tests for the built-in Timestampable and SoftDeletable mixins.
"""

from datetime import datetime

import pytest

from activeorm import AbstractModelError, OrmError, SoftDeletable, Timestampable
from activeorm.mixins import timestamp

pytestmark = pytest.mark.anyio


class Documents:
    mixins = ["Timestampable", "SoftDeletable"]
    fields = {"title": "string"}

    async def pre_create(self):
        self.title = (self.title or "untitled").strip()
        return await super().pre_create()


@pytest.fixture
def documents(repo):
    repo.register(Timestampable)
    repo.register(SoftDeletable)
    repo.register(Documents)
    return repo.Documents


@pytest.fixture
def frozen_now(monkeypatch):
    """Pin datetime.now() seen by the Timestampable mixin."""
    moments = [datetime(2024, 1, 1, 12, 0, 0)]

    class FrozenDatetime(datetime):
        @classmethod
        def now(cls, tz=None):
            return moments[-1]

    monkeypatch.setattr(timestamp, "datetime", FrozenDatetime)
    return moments


class TestTimestampable:
    """Test created_at / updated_at tracking."""

    async def test_create_sets_both(self, documents, frozen_now):
        doc = await documents.create({"title": "a"})
        assert doc.created_at == datetime(2024, 1, 1, 12, 0, 0)
        assert doc.updated_at == doc.created_at

    async def test_update_moves_updated_at_only(self, repo, documents, frozen_now):
        doc = await documents.create({"title": "a"})
        frozen_now.append(datetime(2024, 1, 2, 8, 30, 0))

        doc.title = "b"
        await doc.flush()

        row = repo.backend.rows("documents")[0]
        assert row["created_at"] == datetime(2024, 1, 1, 12, 0, 0)
        assert row["updated_at"] == datetime(2024, 1, 2, 8, 30, 0)

    async def test_explicit_created_at_kept(self, documents, frozen_now):
        doc = await documents.create({"title": "a", "created_at": datetime(2020, 5, 5)})
        assert doc.created_at == datetime(2020, 5, 5)
        assert doc.updated_at == datetime(2024, 1, 1, 12, 0, 0)

    async def test_own_hook_runs_before_mixin(self, documents):
        doc = await documents.create({"title": "  spaced  "})
        assert doc.title == "spaced"
        assert doc.created_at is not None

    async def test_mixin_fields_come_after_own_fields(self, documents):
        documents.query()
        assert list(documents.fields) == ["id", "title", "created_at", "updated_at", "deleted_at"]

    async def test_mixin_cannot_be_instantiated(self, repo, documents):
        with pytest.raises(AbstractModelError):
            repo.Timestampable.query()


class TestSoftDeletable:
    """Test soft deletes and the hiding default scope."""

    async def test_unlink_marks_row(self, repo, documents):
        doc = await documents.create({"title": "a"})

        await doc.unlink()

        row = repo.backend.rows("documents")[0]
        assert row["deleted_at"] is not None
        assert doc.is_deleted
        assert documents.entities[doc.id] is doc

    async def test_deleted_rows_hidden_by_default(self, documents):
        kept = await documents.create({"title": "kept"})
        gone = await documents.create({"title": "gone"})
        await gone.unlink()

        assert await documents.query() == [kept]
        assert await documents.where({"title": "gone"}) == []
        assert len(await documents.unscoped()) == 2
        assert await documents.unscoped().where({"title": "gone"}) == [gone]

    async def test_restore(self, documents):
        doc = await documents.create({"title": "a"})
        await doc.unlink()

        await doc.restore()

        assert not doc.is_deleted
        assert await documents.query() == [doc]

    async def test_restore_requires_deleted(self, documents):
        doc = await documents.create({"title": "a"})
        with pytest.raises(OrmError, match="Documents:1 is not deleted"):
            await doc.restore()

    async def test_force_unlink(self, repo, documents):
        doc = await documents.create({"title": "a"})

        await doc.force_unlink()

        assert repo.backend.rows("documents") == []
        assert doc.id not in documents.entities

    async def test_deleted_at_defaults_to_none(self, documents):
        doc = await documents.create({"title": "a"})
        assert doc.deleted_at is None
        assert not doc.is_deleted
