"""
Tests for bulk relocation (relocate_all).
"""

from pathlib import Path

from conftest import CountingStorage
from restow.catalog import Catalog
from restow.config import RelocationConfig
from restow.engine import RelocationEngine, RelocationStatus

DAY_DIR = "upload/library/u1/2023/2023-02-23"


class CountingCatalog(Catalog):
    def __init__(self, catalog):
        super().__init__(catalog.conn, catalog.lock)
        self.label_queries = 0

    def get_storage_labels(self, owner_ids):
        self.label_queries += 1
        return super().get_storage_labels(owner_ids)

    def get_storage_label(self, owner_id):
        self.label_queries += 1
        return super().get_storage_label(owner_id)


class ExplodingStorage(CountingStorage):
    """Raises an unexpected error when renaming one particular source."""

    def __init__(self, poisoned):
        super().__init__()
        self.poisoned = poisoned

    def rename(self, source, target):
        if source == self.poisoned:
            raise RuntimeError("disk on fire")
        super().rename(source, target)


def test_same_name_disambiguated_in_id_order(catalog, storage, add_asset):
    """Test +1, +2 suffixes follow ascending asset id."""
    for asset_id in ["a3", "a1", "a2"]:
        add_asset(asset_id, content=asset_id.encode())
    engine = RelocationEngine(catalog, storage=storage)

    report = engine.relocate_all()

    assert report.succeeded == 3
    assert report.failed == 0
    assert catalog.get_asset("a1").path == f"{DAY_DIR}/IMG_0001.jpg"
    assert catalog.get_asset("a2").path == f"{DAY_DIR}/IMG_0001+1.jpg"
    assert catalog.get_asset("a3").path == f"{DAY_DIR}/IMG_0001+2.jpg"
    assert Path(f"{DAY_DIR}/IMG_0001+2.jpg").read_bytes() == b"a3"


def test_second_pass_skips_everything(catalog, storage, add_asset):
    for asset_id in ["a1", "a2", "a3"]:
        add_asset(asset_id, content=asset_id.encode())
    engine = RelocationEngine(catalog, storage=storage)
    engine.relocate_all()
    storage.calls.clear()

    report = engine.relocate_all()

    assert report.skipped == 3
    assert report.succeeded == 0
    assert storage.calls == []
    assert catalog.get_asset("a3").path == f"{DAY_DIR}/IMG_0001+2.jpg"


def test_read_only_and_disabled(catalog, storage, add_asset):
    add_asset("a1", is_read_only=True)
    engine = RelocationEngine(catalog, storage=storage)

    report = engine.relocate_all()
    assert report.skipped == 1
    assert report.results[0].reason == "read-only"

    assert engine.relocate_all(RelocationConfig(enabled=False)).total == 0
    assert storage.calls == []


def test_labels_fetched_once_per_page(catalog, storage, add_asset):
    catalog.upsert_user("u1", storage_label="alice")
    for i in range(5):
        add_asset(f"a{i}", name=f"IMG_{i}.jpg")
    counting = CountingCatalog(catalog)
    engine = RelocationEngine(counting, storage=storage)

    report = engine.relocate_all(page_size=2)

    assert report.succeeded == 5
    assert counting.label_queries == 3
    assert catalog.get_asset("a4").path == "upload/library/alice/2023/2023-02-23/IMG_4.jpg"


def test_failure_does_not_halt(catalog, storage, add_asset):
    add_asset("a1")
    add_asset("a2", name="IMG_0002.jpg", write=False)
    add_asset("a3", name="IMG_0003.jpg")
    engine = RelocationEngine(catalog, storage=storage)

    report = engine.relocate_all()

    assert report.succeeded == 2
    assert report.failed == 1
    assert len(report.errors) == 1
    assert report.errors[0].startswith("Asset a2:")
    assert catalog.get_asset("a3").path == f"{DAY_DIR}/IMG_0003.jpg"


def test_unexpected_error_fails_item_only(catalog, add_asset):
    poisoned = add_asset("a1")
    add_asset("a2", name="IMG_0002.jpg")
    engine = RelocationEngine(catalog, storage=ExplodingStorage(poisoned.path))

    report = engine.relocate_all()

    assert report.failed == 1
    assert report.succeeded == 1
    failed = [r for r in report.results if r.status == RelocationStatus.FAILED][0]
    assert failed.asset_id == "a1"
    assert "unexpected error" in failed.reason


def test_progress_callback(catalog, storage, add_asset):
    add_asset("a1")
    add_asset("a2", is_read_only=True)
    seen = []
    engine = RelocationEngine(catalog, storage=storage)

    engine.relocate_all(progress_callback=seen.append)

    assert sorted(r.asset_id for r in seen) == ["a1", "a2"]


def test_workers_claim_distinct_names(catalog, storage, add_asset):
    """Concurrent relocations never land on the same destination."""
    ids = [f"a{i}" for i in range(8)]
    for asset_id in ids:
        add_asset(asset_id, content=asset_id.encode())
    engine = RelocationEngine(catalog, storage=storage)

    report = engine.relocate_all(workers=4, page_size=3)

    assert report.succeeded == 8
    paths = {catalog.get_asset(asset_id).path for asset_id in ids}
    expected = {f"{DAY_DIR}/IMG_0001.jpg"} | {f"{DAY_DIR}/IMG_0001+{n}.jpg" for n in range(1, 8)}
    assert paths == expected
    for asset_id in ids:
        assert Path(catalog.get_asset(asset_id).path).read_bytes() == asset_id.encode()
