"""Tests for per-project vector indices and the index manager."""

from __future__ import annotations

import logging

import pytest

from noterag.db.vector_index import ProjectIndex, VectorIndexManager, index_file_name
from noterag.errors import EmbeddingDimensionMismatch

_MODEL = "openai/text-embedding-3-small"
_DIMS = 4


def _unit(i: int) -> list[float]:
    v = [0.0] * _DIMS
    v[i % _DIMS] = 1.0
    return v


@pytest.fixture
def index(tmp_path):
    idx = ProjectIndex(1, tmp_path / index_file_name(1), _MODEL, _DIMS, persist_debounce_seconds=0)
    idx.load()
    yield idx
    idx.discard()


@pytest.fixture
def manager(tmp_path):
    mgr = VectorIndexManager(tmp_path / "vectors", _MODEL, _DIMS, persist_debounce_seconds=0)
    yield mgr
    mgr.close()


# --- ProjectIndex: mutations and search ---

def test_new_index_is_empty(index):
    assert index.count() == 0
    assert index.search(_unit(0), 5) == []


def test_upsert_and_search_best_first(index):
    index.upsert(10, [1.0, 0.0, 0.0, 0.0])
    index.upsert(11, [0.7, 0.7, 0.0, 0.0])
    index.upsert(12, [0.0, 0.0, 1.0, 0.0])

    hits = index.search([1.0, 0.0, 0.0, 0.0], 3)

    assert [cid for cid, _ in hits] == [10, 11, 12]
    assert hits[0][1] == pytest.approx(1.0, abs=1e-5)
    assert hits[0][1] > hits[1][1] > hits[2][1]


def test_search_never_returns_more_than_k(index):
    index.upsert_many((i, _unit(i)) for i in range(1, 9))
    assert len(index.search(_unit(0), 3)) == 3
    assert len(index.search(_unit(0), 50)) == 8


def test_search_k_below_one_returns_empty(index):
    index.upsert(1, _unit(0))
    assert index.search(_unit(0), 0) == []


def test_upsert_replaces_existing_vector(index):
    index.upsert(5, _unit(0))
    index.upsert(5, _unit(1))
    assert index.count() == 1
    [(cid, score)] = index.search(_unit(1), 1)
    assert cid == 5
    assert score == pytest.approx(1.0, abs=1e-5)


def test_removed_entries_are_never_returned(index):
    index.upsert_many([(1, _unit(0)), (2, _unit(0)), (3, _unit(1))])
    index.remove(1)
    index.remove_many([3, 999])
    assert [cid for cid, _ in index.search(_unit(0), 10)] == [2]
    assert index.contains(2) and not index.contains(1)


def test_remove_absent_is_noop(index):
    index.remove(12345)
    assert index.count() == 0


def test_clear(index):
    index.upsert_many([(1, _unit(0)), (2, _unit(1))])
    index.clear()
    assert index.chunk_ids() == set()


def test_dimension_mismatch_writes_nothing(index):
    with pytest.raises(EmbeddingDimensionMismatch) as exc_info:
        index.upsert_many([(1, _unit(0)), (2, [1.0, 2.0])])
    assert exc_info.value.expected == _DIMS
    assert exc_info.value.actual == 2
    assert index.count() == 0


def test_query_dimension_mismatch_raises(index):
    index.upsert(1, _unit(0))
    with pytest.raises(EmbeddingDimensionMismatch):
        index.search([1.0], 1)


# --- ProjectIndex: persistence ---

def test_persist_and_reload(tmp_path):
    path = tmp_path / "p.vec.db"
    idx = ProjectIndex(3, path, _MODEL, _DIMS, persist_debounce_seconds=0)
    idx.upsert_many([(1, _unit(0)), (2, _unit(1))])
    idx.close()
    assert path.exists()

    reloaded = ProjectIndex(3, path, _MODEL, _DIMS)
    reloaded.load()
    assert reloaded.chunk_ids() == {1, 2}
    assert reloaded.needs_rebuild is False
    assert reloaded.search(_unit(1), 1)[0][0] == 2
    reloaded.discard()


def test_schedule_persist_is_debounced_and_flushed_on_close(tmp_path):
    path = tmp_path / "p.vec.db"
    idx = ProjectIndex(3, path, _MODEL, _DIMS, persist_debounce_seconds=60)
    idx.upsert(1, _unit(0))
    idx.schedule_persist()
    idx.schedule_persist()
    assert not path.exists()

    idx.close()
    assert path.exists()


def test_schedule_persist_immediate_without_debounce(tmp_path):
    path = tmp_path / "p.vec.db"
    idx = ProjectIndex(3, path, _MODEL, _DIMS, persist_debounce_seconds=0)
    idx.upsert(1, _unit(0))
    idx.schedule_persist()
    assert path.exists()
    idx.discard()


def test_discard_does_not_write(tmp_path):
    path = tmp_path / "p.vec.db"
    idx = ProjectIndex(3, path, _MODEL, _DIMS, persist_debounce_seconds=60)
    idx.upsert(1, _unit(0))
    idx.discard()
    assert not path.exists()


def test_corrupt_file_loads_empty_and_flags_rebuild(tmp_path):
    path = tmp_path / "p.vec.db"
    path.write_bytes(b"this is not an sqlite database" * 100)

    idx = ProjectIndex(3, path, _MODEL, _DIMS)
    idx.load()

    assert idx.needs_rebuild is True
    assert idx.count() == 0
    idx.discard()


def test_unopenable_file_loads_empty_and_flags_rebuild(tmp_path):
    path = tmp_path / "p.vec.db"
    path.mkdir()

    idx = ProjectIndex(3, path, _MODEL, _DIMS)
    idx.load()

    assert idx.needs_rebuild is True
    assert idx.count() == 0
    idx.discard()


@pytest.mark.parametrize("model,dims", [
    ("openai/text-embedding-3-large", _DIMS),
    (_MODEL, _DIMS * 2),
])
def test_model_or_dimension_change_flags_rebuild(tmp_path, model, dims):
    path = tmp_path / "p.vec.db"
    original = ProjectIndex(3, path, _MODEL, _DIMS, persist_debounce_seconds=0)
    original.upsert(1, _unit(0))
    original.close()

    changed = ProjectIndex(3, path, model, dims)
    changed.load()
    assert changed.needs_rebuild is True
    assert changed.count() == 0
    changed.discard()


# --- VectorIndexManager ---

def test_manager_rejects_bad_dimensions(tmp_path):
    with pytest.raises(ValueError, match="dimensions"):
        VectorIndexManager(tmp_path, _MODEL, 0)


def test_manager_lazily_creates_index(manager):
    assert manager.has_index(1) is False
    index = manager.get(1)
    assert manager.has_index(1) is True
    assert manager.get(1) is index
    assert manager.open_projects() == [1]


def test_manager_indices_are_isolated_per_project(manager):
    manager.get(1).upsert(100, _unit(0))
    manager.get(2).upsert(200, _unit(0))
    assert [cid for cid, _ in manager.get(1).search(_unit(0), 10)] == [100]
    assert [cid for cid, _ in manager.get(2).search(_unit(0), 10)] == [200]


def test_manager_file_naming(manager):
    assert manager.path_for(7).name == "project_7.vec.db"


def test_manager_drop_flushes_and_reopens(manager):
    manager.get(1).upsert(100, _unit(0))
    manager.drop(1)
    assert manager.open_projects() == []
    assert manager.path_for(1).exists()
    assert manager.get(1).chunk_ids() == {100}


def test_manager_delete_removes_file(manager):
    index = manager.get(1)
    index.upsert(100, _unit(0))
    index.persist()
    manager.delete(1)
    assert not manager.path_for(1).exists()
    assert manager.has_index(1) is False


def test_manager_calls_rebuild_callback_once(tmp_path):
    index_dir = tmp_path / "vectors"
    index_dir.mkdir()
    (index_dir / index_file_name(5)).write_bytes(b"garbage" * 200)
    calls = []
    mgr = VectorIndexManager(index_dir, _MODEL, _DIMS, on_rebuild_needed=calls.append)

    mgr.get(5)
    mgr.get(5)

    assert calls == [5]
    mgr.close()


def test_manager_close_persists_everything(tmp_path):
    mgr = VectorIndexManager(tmp_path / "vectors", _MODEL, _DIMS, persist_debounce_seconds=60)
    mgr.get(1).upsert(1, _unit(0))
    mgr.get(2).upsert(2, _unit(1))
    mgr.close()
    assert mgr.path_for(1).exists() and mgr.path_for(2).exists()


def test_manager_survives_failing_rebuild_callback(tmp_path, caplog):
    index_dir = tmp_path / "vectors"
    index_dir.mkdir()
    (index_dir / index_file_name(5)).write_bytes(b"garbage" * 200)

    def refuse(_project_id):
        raise RuntimeError("cannot schedule new futures after shutdown")

    mgr = VectorIndexManager(index_dir, _MODEL, _DIMS, on_rebuild_needed=refuse)
    with caplog.at_level(logging.ERROR, logger="noterag.db.vector_index"):
        index = mgr.get(5)

    assert index.count() == 0
    assert "Rebuild request for project 5 failed" in caplog.text
    mgr.close()
