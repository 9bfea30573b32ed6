"""
Tests for the move journal.
"""

import sqlite3

import pytest

from restow.journal import MoveJournal
from restow.model import AssetPathKind, connect_db


@pytest.fixture
def journal():
    conn = connect_db(":memory:")
    yield MoveJournal(conn)
    conn.close()


def test_get_by_entity_missing(journal):
    """Test lookup with no entry."""
    assert journal.get_by_entity("a1", AssetPathKind.ORIGINAL) is None


def test_create_and_fetch(journal):
    record = journal.create("a1", AssetPathKind.ORIGINAL, "in/a.jpg", "upload/library/u1/a.jpg")

    assert record.id is not None
    assert record.entity_id == "a1"
    assert record.path_kind == AssetPathKind.ORIGINAL
    assert record.old_path == "in/a.jpg"
    assert record.new_path == "upload/library/u1/a.jpg"
    assert journal.get_by_entity("a1", "original") == record
    assert journal.get_by_id(record.id) == record


def test_one_entry_per_entity_and_kind(journal):
    """Test the (entity, kind) uniqueness constraint."""
    journal.create("a1", AssetPathKind.ORIGINAL, "x", "y")
    with pytest.raises(sqlite3.IntegrityError):
        journal.create("a1", AssetPathKind.ORIGINAL, "x", "z")
    # Other kinds of the same asset are separate entries
    journal.create("a1", AssetPathKind.THUMBNAIL, "t", "u")


def test_update_overwrites_paths(journal):
    record = journal.create("a1", AssetPathKind.ORIGINAL, "x", "y")
    updated = journal.update(record.id, "y", "z")
    assert updated.id == record.id
    assert (updated.old_path, updated.new_path) == ("y", "z")


def test_update_missing_row(journal):
    with pytest.raises(LookupError):
        journal.update(999, "a", "b")


def test_record_intent_creates_then_updates(journal):
    first = journal.record_intent("a1", AssetPathKind.ORIGINAL, "x", "y")
    second = journal.record_intent("a1", AssetPathKind.ORIGINAL, "y", "z")

    assert second.id == first.id
    assert journal.get_by_entity("a1", AssetPathKind.ORIGINAL).new_path == "z"


def test_list_for_entity(journal):
    journal.create("a1", AssetPathKind.THUMBNAIL, "t1", "t2")
    journal.create("a1", AssetPathKind.ORIGINAL, "o1", "o2")
    journal.create("a2", AssetPathKind.ORIGINAL, "p1", "p2")

    kinds = [r.path_kind for r in journal.list_for_entity("a1")]
    assert kinds == [AssetPathKind.ORIGINAL, AssetPathKind.THUMBNAIL]
    assert journal.list_for_entity("nobody") == []
