"""Tests for storage layout and path helpers."""

from datetime import datetime

import pytest

from restow.model import Asset, AssetPathKind, AssetType
from restow.pathing import (
    StorageLayout,
    build_context,
    is_under,
    strip_counter,
    with_counter,
)
from restow.template import TemplateEngine


def make_asset(**overrides) -> Asset:
    values = dict(
        id="abcd1234-0000",
        owner_id="u1",
        path="in/IMG_0001.JPG",
        checksum="abc123",
        size=5,
        asset_type=AssetType.IMAGE,
        original_file_name="IMG_0001.JPG",
        is_read_only=False,
        captured_at=datetime(2023, 2, 23, 13, 45, 12),
        file_modified_at=datetime(2024, 1, 1),
    )
    values.update(overrides)
    return Asset(**values)


class TestCounters:
    def test_with_counter(self):
        assert with_counter("upload/a/b.jpg", 2) == "upload/a/b+2.jpg"
        assert with_counter("upload/a/b", 1) == "upload/a/b+1"

    def test_strip_counter(self):
        assert strip_counter("upload/a/b+12.jpg") == "upload/a/b.jpg"
        assert strip_counter("upload/a/b.jpg") == "upload/a/b.jpg"
        assert strip_counter("upload/a/b+x.jpg") == "upload/a/b+x.jpg"
        assert strip_counter("upload/a/b+3") == "upload/a/b"

    def test_is_under(self):
        assert is_under("upload/library/u1/x.jpg", "upload/library/u1")
        assert is_under("upload/library/u1", "upload/library/u1")
        assert not is_under("upload/library/u10/x.jpg", "upload/library/u1")
        assert not is_under("upload/library/x.jpg", "upload/library/u1")


class TestStorageLayout:
    def test_library_root_uses_owner_id(self):
        assert StorageLayout("upload").library_root("u1") == "upload/library/u1"

    def test_library_root_prefers_storage_label(self):
        assert StorageLayout("upload").library_root("u1", "alice") == "upload/library/alice"

    def test_template_target(self):
        compiled = TemplateEngine.compile("{{y}}/{{y}}-{{MM}}-{{dd}}/{{filename}}")
        context = build_context(make_asset())
        target = StorageLayout("upload").template_target(compiled, context)
        assert target == "upload/library/u1/2023/2023-02-23/IMG_0001.jpg"

    def test_template_target_rejects_escape(self):
        compiled = TemplateEngine.compile("../../{{filename}}")
        with pytest.raises(ValueError, match="escapes"):
            StorageLayout("upload").template_target(compiled, build_context(make_asset()))

    @pytest.mark.parametrize("kind,expected", [
        (AssetPathKind.THUMBNAIL, "upload/thumbs/u1/ab/cd/abcd1234-0000-thumbnail.webp"),
        (AssetPathKind.PREVIEW, "upload/thumbs/u1/ab/cd/abcd1234-0000-preview.jpeg"),
        (AssetPathKind.ENCODED_VIDEO, "upload/encoded-video/u1/ab/cd/abcd1234-0000.mp4"),
    ])
    def test_derived_path(self, kind, expected):
        assert StorageLayout("upload").derived_path(make_asset(), kind) == expected

    def test_derived_path_rejects_original(self):
        with pytest.raises(ValueError):
            StorageLayout("upload").derived_path(make_asset(), AssetPathKind.ORIGINAL)


class TestBuildContext:
    def test_extension_lowercased(self):
        context = build_context(make_asset())
        assert context.filename == "IMG_0001"
        assert context.extension == "jpg"

    def test_extension_falls_back_to_path(self):
        context = build_context(make_asset(original_file_name="IMG_0001", path="in/x.HEIC"))
        assert context.extension == "heic"

    def test_timestamp_falls_back_to_mtime(self):
        context = build_context(make_asset(captured_at=None))
        assert context.timestamp == datetime(2024, 1, 1)

    def test_empty_stem_uses_asset_id(self):
        context = build_context(make_asset(original_file_name="..."))
        assert context.filename == "abcd1234-0000"
