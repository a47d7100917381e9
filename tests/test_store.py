"""Tests for the SQLite repository store."""

import pytest

from repoindex.errors import RepositoryNotFoundError
from repoindex.models import Repository
from repoindex.store import SQLiteRepositoryStore

from conftest import REPO


class TestRepositoryStore:
    def test_get(self, store):
        repo = store.get(REPO.id)
        assert repo.full_name == "octo/demo"
        assert repo.last_synced_at is None
        assert repo.languages == {}

    def test_missing(self, store):
        with pytest.raises(RepositoryNotFoundError):
            store.get(404)

    def test_upsert_updates_identity(self, store):
        store.upsert(Repository(id=REPO.id, full_name="octo/renamed", owner_login="octo", name="renamed"))
        assert store.get(REPO.id).name == "renamed"
        assert len(store.list()) == 1

    def test_mark_synced_with_languages(self, store):
        store.mark_synced(REPO.id, "2026-01-01T00:00:00+00:00", {"Go": 10})
        repo = store.get(REPO.id)
        assert repo.last_synced_at == "2026-01-01T00:00:00+00:00"
        assert repo.languages == {"Go": 10}

    def test_mark_synced_keeps_languages_when_unknown(self, store):
        store.mark_synced(REPO.id, "t1", {"Go": 10})
        store.mark_synced(REPO.id, "t2", None)
        repo = store.get(REPO.id)
        assert repo.last_synced_at == "t2"
        assert repo.languages == {"Go": 10}

    def test_mark_synced_missing_repository(self, store):
        with pytest.raises(RepositoryNotFoundError):
            store.mark_synced(404, "t", None)

    def test_persists_across_instances(self, tmp_path):
        path = str(tmp_path / "repos.sqlite")
        first = SQLiteRepositoryStore(path)
        first.upsert(REPO)
        first.close()
        second = SQLiteRepositoryStore(path)
        assert second.get(REPO.id).owner_login == "octo"
        second.close()
