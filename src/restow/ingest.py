"""Register files on disk as catalog assets."""

import os
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, List, Optional

from restow.catalog import Catalog
from restow.fs_utils import compute_checksum
from restow.model import Asset, AssetType

IMAGE_EXTENSIONS = {
    "jpg", "jpeg", "png", "gif", "heic", "heif", "webp", "tif", "tiff", "bmp",
    "dng", "cr2", "cr3", "nef", "arw", "orf", "raf", "rw2", "avif", "jxl",
}
VIDEO_EXTENSIONS = {"mp4", "mov", "m4v", "mkv", "avi", "webm", "3gp", "mts", "m2ts", "wmv"}
AUDIO_EXTENSIONS = {"mp3", "m4a", "aac", "flac", "wav", "ogg", "opus"}


@dataclass
class IngestStats:
    """Statistics for an ingest run."""
    files_seen: int = 0
    files_added: int = 0
    files_known: int = 0
    files_unreadable: int = 0


def asset_type_for(path: str) -> AssetType:
    ext = os.path.splitext(path)[1][1:].lower()
    if ext in IMAGE_EXTENSIONS:
        return AssetType.IMAGE
    if ext in VIDEO_EXTENSIONS:
        return AssetType.VIDEO
    if ext in AUDIO_EXTENSIONS:
        return AssetType.AUDIO
    return AssetType.OTHER


def list_files(root: Path) -> List[Path]:
    """Regular files under root, sorted, skipping hidden entries."""
    found = []
    for dirpath, dirnames, filenames in os.walk(root):
        dirnames[:] = sorted(d for d in dirnames if not d.startswith("."))
        for name in sorted(filenames):
            if name.startswith("."):
                continue
            path = Path(dirpath) / name
            if path.is_file() and not path.is_symlink():
                found.append(path)
    return found


def ingest_path(catalog: Catalog, root: Path, owner_id: str, read_only: bool = False,
                algorithm: str = "sha1",
                on_file: Optional[Callable[[Path], None]] = None) -> IngestStats:
    """
    Add every file under root to the catalog, owned by owner_id.

    Files whose path is already catalogued are left alone. Capture time is
    unknown at this point, so templates fall back to the file mtime.
    """
    stats = IngestStats()
    if catalog.get_user(owner_id) is None:
        catalog.upsert_user(owner_id)

    for path in list_files(root):
        stats.files_seen += 1
        if on_file:
            on_file(path)
        path_str = str(path)
        if catalog.find_asset_id_by_path(path_str):
            stats.files_known += 1
            continue
        checksum = compute_checksum(path_str, algorithm)
        if checksum is None:
            stats.files_unreadable += 1
            continue
        st = path.stat()
        catalog.upsert_asset(Asset(
            id=str(uuid.uuid4()),
            owner_id=owner_id,
            path=path_str,
            checksum=checksum,
            size=st.st_size,
            asset_type=asset_type_for(path_str),
            original_file_name=path.name,
            is_read_only=read_only,
            captured_at=None,
            file_modified_at=datetime.fromtimestamp(st.st_mtime, tz=timezone.utc),
        ))
        stats.files_added += 1

    return stats
