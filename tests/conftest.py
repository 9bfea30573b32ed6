"""Shared fixtures for relocation tests: a catalog in tmp_path and storage fakes."""

import errno
import hashlib
from datetime import datetime
from pathlib import Path

import pytest

from restow.catalog import Catalog
from restow.fs_utils import LocalStorage
from restow.model import Asset, AssetType, connect_db

CAPTURED = datetime(2023, 2, 23, 13, 45, 12)


class CountingStorage(LocalStorage):
    """LocalStorage that records every call as (name, *args)."""

    def __init__(self):
        self.calls = []

    @property
    def names(self):
        return [c[0] for c in self.calls]

    def exists(self, path):
        self.calls.append(("exists", path))
        return super().exists(path)

    def stat(self, path):
        self.calls.append(("stat", path))
        return super().stat(path)

    def rename(self, source, target):
        self.calls.append(("rename", source, target))
        super().rename(source, target)

    def copy(self, source, target):
        self.calls.append(("copy", source, target))
        super().copy(source, target)

    def unlink(self, path):
        self.calls.append(("unlink", path))
        super().unlink(path)

    def set_times(self, path, atime_ns, mtime_ns):
        self.calls.append(("set_times", path))
        super().set_times(path, atime_ns, mtime_ns)

    def hash_file(self, path, algorithm="sha1"):
        self.calls.append(("hash_file", path))
        return super().hash_file(path, algorithm)

    def ensure_parent(self, path):
        self.calls.append(("ensure_parent", path))
        super().ensure_parent(path)


class CrossDeviceStorage(CountingStorage):
    """Every rename fails as if source and target were on different filesystems."""

    def rename(self, source, target):
        self.calls.append(("rename", source, target))
        raise OSError(errno.EXDEV, "Invalid cross-device link", source)


@pytest.fixture
def catalog(tmp_path, monkeypatch):
    """File-backed catalog; the working directory is tmp_path so relative media paths land there."""
    monkeypatch.chdir(tmp_path)
    conn = connect_db(tmp_path / "catalog.db")
    yield Catalog(conn)
    conn.close()


@pytest.fixture
def storage():
    return CountingStorage()


@pytest.fixture
def add_asset(catalog):
    """Create a file under in/<asset_id>/ and register it as an asset."""

    def _add(asset_id, content=b"hello", name="IMG_0001.jpg", write=True, **overrides):
        path = Path("in") / asset_id / name
        if write:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(content)
        values = dict(
            id=asset_id,
            owner_id="u1",
            path=str(path),
            checksum=hashlib.sha1(content).hexdigest(),
            size=len(content),
            asset_type=AssetType.IMAGE,
            original_file_name=name,
            is_read_only=False,
            captured_at=CAPTURED,
            file_modified_at=CAPTURED,
        )
        values.update(overrides)
        asset = Asset(**values)
        catalog.upsert_asset(asset)
        return asset

    return _add
