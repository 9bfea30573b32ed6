"""Canonical storage layout and path helpers."""

import os
import re
from typing import Optional, Tuple

from restow.model import Asset, AssetPathKind
from restow.template import CompiledTemplate, TemplateContext, sanitize_segment

_SUFFIX_RE = re.compile(r"^(?P<stem>.*)\+(?P<count>\d+)$")

# Derived files: (top-level folder, file name suffix)
_DERIVED = {
    AssetPathKind.THUMBNAIL: ("thumbs", "-thumbnail.webp"),
    AssetPathKind.PREVIEW: ("thumbs", "-preview.jpeg"),
    AssetPathKind.ENCODED_VIDEO: ("encoded-video", ".mp4"),
}


def split_extension(path: str) -> Tuple[str, str]:
    """Split into (path without extension, extension without dot)."""
    base, ext = os.path.splitext(path)
    return base, ext[1:] if ext else ""


def join_extension(base: str, extension: str) -> str:
    return f"{base}.{extension}" if extension else base


def with_counter(path: str, count: int) -> str:
    """upload/a/b.jpg, 2 -> upload/a/b+2.jpg"""
    base, ext = split_extension(path)
    return join_extension(f"{base}+{count}", ext)


def strip_counter(path: str) -> str:
    """Remove a +N disambiguation suffix from the file stem, if present."""
    base, ext = split_extension(path)
    match = _SUFFIX_RE.match(base)
    if not match:
        return path
    return join_extension(match.group("stem"), ext)


def is_under(path: str, root: str) -> bool:
    """Return True if path is root or lies below it (lexically)."""
    path = os.path.normpath(path)
    root = os.path.normpath(root)
    return path == root or path.startswith(root.rstrip(os.sep) + os.sep)


class StorageLayout:
    """
    Where files live under the media location.

    Originals are placed by the storage template under
    <media>/library/<storage label or owner id>/. Derived files have fixed
    sharded locations under <media>/thumbs and <media>/encoded-video.
    """

    def __init__(self, media_location: str):
        self.media_location = os.path.normpath(media_location)

    def library_root(self, owner_id: str, storage_label: Optional[str] = None) -> str:
        folder = sanitize_segment(storage_label) or owner_id
        return os.path.join(self.media_location, "library", folder)

    def template_target(self, compiled: CompiledTemplate, context: TemplateContext) -> str:
        """
        Full target path for an original file.

        Raises:
            ValueError: if the rendered path escapes the owner's library root
        """
        root = self.library_root(context.owner_id, context.storage_label)
        rendered = compiled.render(context)
        full = os.path.normpath(os.path.join(root, rendered))
        if full == root or not is_under(full, root):
            raise ValueError(f"Rendered path {rendered!r} escapes library root {root}")
        return join_extension(full, context.extension)

    def derived_path(self, asset: Asset, kind: AssetPathKind) -> str:
        kind = AssetPathKind(kind)
        if kind not in _DERIVED:
            raise ValueError(f"{kind.value} has no fixed derived location")
        folder, suffix = _DERIVED[kind]
        return os.path.join(
            self.media_location, folder, asset.owner_id,
            asset.id[0:2], asset.id[2:4], f"{asset.id}{suffix}",
        )


def build_context(asset: Asset, storage_label: Optional[str] = None,
                  album_name: Optional[str] = None) -> TemplateContext:
    """Derive the template context for an asset and its owner settings."""
    stem, extension = split_extension(os.path.basename(asset.original_file_name))
    if not extension:
        _, extension = split_extension(os.path.basename(asset.path))
    return TemplateContext(
        owner_id=asset.owner_id,
        timestamp=asset.timestamp,
        filename=sanitize_segment(stem) or asset.id,
        extension=extension.lower(),
        asset_id=asset.id,
        asset_type=asset.asset_type,
        storage_label=storage_label,
        album_name=album_name,
    )
