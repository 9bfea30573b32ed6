"""
Catalog data model.

Dataclasses for the rows the relocation engine reads and writes, plus the
database connection helper that brings the schema up to date.
"""

import sqlite3
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Optional, Union


class AssetPathKind(str, Enum):
    """Category of file that can be relocated for an asset."""
    ORIGINAL = "original"
    THUMBNAIL = "thumbnail"
    PREVIEW = "preview"
    ENCODED_VIDEO = "encoded_video"


class AssetType(str, Enum):
    IMAGE = "IMAGE"
    VIDEO = "VIDEO"
    AUDIO = "AUDIO"
    OTHER = "OTHER"


# Asset column holding the path for each path kind.
PATH_COLUMNS = {
    AssetPathKind.ORIGINAL: "path",
    AssetPathKind.THUMBNAIL: "thumbnail_path",
    AssetPathKind.PREVIEW: "preview_path",
    AssetPathKind.ENCODED_VIDEO: "encoded_video_path",
}


@dataclass
class Asset:
    """Asset row from the catalog.

    Attributes:
        id: Asset ID
        owner_id: Owning user ID
        path: Current path of the original file
        checksum: Lower-case hex content hash of the original file
        size: Original file size in bytes
        asset_type: IMAGE, VIDEO, AUDIO or OTHER
        original_file_name: File name as uploaded (with extension)
        is_read_only: Read-only assets are never relocated
        captured_at: Capture timestamp (None when unknown)
        file_modified_at: File modification timestamp
        thumbnail_path: Small thumbnail path
        preview_path: Large thumbnail path
        encoded_video_path: Transcoded video path
    """
    id: str
    owner_id: str
    path: str
    checksum: str
    size: int
    asset_type: AssetType
    original_file_name: str
    is_read_only: bool
    captured_at: Optional[datetime]
    file_modified_at: datetime
    thumbnail_path: Optional[str] = None
    preview_path: Optional[str] = None
    encoded_video_path: Optional[str] = None

    @property
    def timestamp(self) -> datetime:
        """Reference time for template tokens: capture time, else file mtime."""
        return self.captured_at or self.file_modified_at

    def path_for(self, kind: AssetPathKind) -> Optional[str]:
        return getattr(self, PATH_COLUMNS[AssetPathKind(kind)])


@dataclass
class MoveRecord:
    """Journal entry for a planned or executed relocation.

    Attributes:
        id: Row ID
        entity_id: Asset ID the move belongs to
        path_kind: Which of the asset's files is being moved
        old_path: Source path at the time the move was recorded
        new_path: Destination path
        created_at: Creation timestamp
        updated_at: Last update timestamp
    """
    id: int
    entity_id: str
    path_kind: AssetPathKind
    old_path: str
    new_path: str
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


@dataclass
class User:
    id: str
    name: Optional[str]
    storage_label: Optional[str]


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    return datetime.fromisoformat(value)


def asset_from_row(row: sqlite3.Row) -> Asset:
    return Asset(
        id=row["id"],
        owner_id=row["owner_id"],
        path=row["path"],
        checksum=row["checksum"],
        size=row["size"],
        asset_type=AssetType(row["asset_type"]),
        original_file_name=row["original_file_name"],
        is_read_only=bool(row["is_read_only"]),
        captured_at=parse_timestamp(row["captured_at"]),
        file_modified_at=parse_timestamp(row["file_modified_at"]),
        thumbnail_path=row["thumbnail_path"],
        preview_path=row["preview_path"],
        encoded_video_path=row["encoded_video_path"],
    )


def move_record_from_row(row: sqlite3.Row) -> MoveRecord:
    return MoveRecord(
        id=row["id"],
        entity_id=row["entity_id"],
        path_kind=AssetPathKind(row["path_kind"]),
        old_path=row["old_path"],
        new_path=row["new_path"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def connect_db(path: Union[Path, str]) -> sqlite3.Connection:
    """
    Open the catalog database and apply pending schema migrations.

    The connection may be shared between threads; callers serialize access.
    """
    from restow.migrate import apply_migrations  # Lazy import
    if str(path) != ":memory:":
        Path(path).parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(str(path), check_same_thread=False)
    conn.row_factory = sqlite3.Row
    apply_migrations(conn)
    return conn
