"""Tests for target path disambiguation."""

import pytest

from restow.conflicts import ConflictResolver
from restow.errors import DisambiguationExhaustedError
from restow.fs_utils import LocalStorage


def touch(path):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(b"occupied")
    return path


def test_free_candidate_is_returned(tmp_path):
    candidate = str(tmp_path / "IMG.jpg")
    assert ConflictResolver(LocalStorage()).resolve(candidate) == candidate


def test_first_free_suffix(tmp_path):
    touch(tmp_path / "IMG.jpg")
    touch(tmp_path / "IMG+1.jpg")
    resolved = ConflictResolver(LocalStorage()).resolve(str(tmp_path / "IMG.jpg"))
    assert resolved == str(tmp_path / "IMG+2.jpg")


def test_source_counts_as_free(tmp_path):
    """The file being moved does not conflict with itself."""
    touch(tmp_path / "IMG.jpg")
    source = str(touch(tmp_path / "IMG+1.jpg"))
    resolved = ConflictResolver(LocalStorage()).resolve(str(tmp_path / "IMG.jpg"), source=source)
    assert resolved == source


def test_suffix_without_extension(tmp_path):
    touch(tmp_path / "README")
    assert ConflictResolver(LocalStorage()).resolve(str(tmp_path / "README")) == str(tmp_path / "README+1")


def test_exhausted(tmp_path):
    touch(tmp_path / "IMG.jpg")
    touch(tmp_path / "IMG+1.jpg")
    touch(tmp_path / "IMG+2.jpg")
    resolver = ConflictResolver(LocalStorage(), max_attempts=2)

    with pytest.raises(DisambiguationExhaustedError) as excinfo:
        resolver.resolve(str(tmp_path / "IMG.jpg"))
    assert excinfo.value.attempts == 2


def test_unnormalized_source_counts_as_free(tmp_path):
    candidate = str(touch(tmp_path / "IMG.jpg"))
    source = str(tmp_path) + "/./IMG.jpg"
    assert ConflictResolver(LocalStorage()).resolve(candidate, source=source) == candidate
