"""
Tests for dataloader.store — the immutable FileStore.
"""

import pytest

from conftest import make_record
from dataloader.store import FileStore


@pytest.fixture
def store():
    return FileStore([
        make_record("a.csv", processed=True, ingestion_status="success"),
        make_record("b.csv", selected=False, processed=True, ingestion_status="failed"),
        make_record("c.pdf", ingestion_status="failed"),
    ])


def test_insertion_order_preserved(store):
    assert [r.name for r in store] == ["a.csv", "b.csv", "c.pdf"]
    assert store.ids == ["id-a.csv", "id-b.csv", "id-c.pdf"]


def test_duplicate_ids_rejected():
    with pytest.raises(ValueError):
        FileStore([make_record("a.csv", id="same"), make_record("b.csv", id="same")])


def test_replace_returns_new_store(store):
    new = store.replace([make_record("z.txt")])
    assert len(new) == 1
    assert len(store) == 3


def test_update_all(store):
    new = store.update(lambda r: r.model_copy(update={"selected": False}))
    assert not any(r.selected for r in new)
    assert store.get("id-a.csv").selected is True


def test_update_subset_keeps_other_objects(store):
    new = store.update(lambda r: r.model_copy(update={"selected": False}), ids=["id-a.csv"])
    assert new.get("id-a.csv").selected is False
    assert new.get("id-c.pdf") is store.get("id-c.pdf")


def test_views_are_computed_on_demand(store):
    assert [r.name for r in store.selected()] == ["a.csv", "c.pdf"]
    assert [r.name for r in store.ready_for_ingest()] == ["a.csv"]
    assert [r.name for r in store.with_status("failed")] == ["b.csv", "c.pdf"]
    assert [r.name for r in store.with_status("failed", selected_only=True)] == ["c.pdf"]

    new = store.update(lambda r: r.model_copy(update={"selected": True}))
    assert len(new.selected()) == 3
    assert len(store.selected()) == 2


def test_lookup(store):
    assert store.get("id-b.csv").name == "b.csv"
    assert store.get("missing") is None
    assert "id-a.csv" in store
    assert [r.id for r in store.by_name("c.pdf")] == ["id-c.pdf"]


def test_equality(store):
    assert store == FileStore(list(store))
    assert store != store.replace([])
