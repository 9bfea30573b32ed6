"""
Asset catalog access.

Reads and updates assets, owners and album membership in the SQLite
catalog. One connection is shared by all worker threads; every statement
runs under the catalog lock.
"""

import sqlite3
import threading
from datetime import datetime
from typing import Dict, Iterable, Iterator, List, Optional

from restow.model import (
    PATH_COLUMNS,
    Asset,
    AssetPathKind,
    User,
    asset_from_row,
)

_ASSET_COLUMNS = """
    id, owner_id, path, checksum, size, asset_type, original_file_name,
    is_read_only, captured_at, file_modified_at,
    thumbnail_path, preview_path, encoded_video_path
"""


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


class Catalog:
    def __init__(self, conn: sqlite3.Connection, lock: Optional[threading.RLock] = None):
        self.conn = conn
        self.lock = lock or threading.RLock()

    # Assets

    def get_asset(self, asset_id: str) -> Optional[Asset]:
        with self.lock:
            row = self.conn.execute(
                f"SELECT {_ASSET_COLUMNS} FROM assets WHERE id = ?", (asset_id,)
            ).fetchone()
        return asset_from_row(row) if row else None

    def upsert_asset(self, asset: Asset) -> None:
        with self.lock:
            self.conn.execute("""
                INSERT INTO assets (
                    id, owner_id, path, checksum, size, asset_type, original_file_name,
                    is_read_only, captured_at, file_modified_at,
                    thumbnail_path, preview_path, encoded_video_path
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    owner_id = excluded.owner_id,
                    path = excluded.path,
                    checksum = excluded.checksum,
                    size = excluded.size,
                    asset_type = excluded.asset_type,
                    original_file_name = excluded.original_file_name,
                    is_read_only = excluded.is_read_only,
                    captured_at = excluded.captured_at,
                    file_modified_at = excluded.file_modified_at,
                    thumbnail_path = excluded.thumbnail_path,
                    preview_path = excluded.preview_path,
                    encoded_video_path = excluded.encoded_video_path,
                    updated_at = CURRENT_TIMESTAMP
            """, (
                asset.id, asset.owner_id, asset.path, asset.checksum, asset.size,
                asset.asset_type.value, asset.original_file_name, int(asset.is_read_only),
                _iso(asset.captured_at), _iso(asset.file_modified_at),
                asset.thumbnail_path, asset.preview_path, asset.encoded_video_path,
            ))
            self.conn.commit()

    def update_path(self, asset_id: str, kind: AssetPathKind, new_path: str) -> None:
        """Commit the canonical path of one of the asset's files."""
        column = PATH_COLUMNS[AssetPathKind(kind)]
        with self.lock:
            self.conn.execute(
                f"UPDATE assets SET {column} = ?, updated_at = CURRENT_TIMESTAMP WHERE id = ?",
                (new_path, asset_id),
            )
            self.conn.commit()

    def iter_asset_pages(self, page_size: int = 500) -> Iterator[List[Asset]]:
        """Yield all assets in ascending id order, page_size at a time."""
        last_id = None
        while True:
            with self.lock:
                if last_id is None:
                    rows = self.conn.execute(
                        f"SELECT {_ASSET_COLUMNS} FROM assets ORDER BY id LIMIT ?",
                        (page_size,),
                    ).fetchall()
                else:
                    rows = self.conn.execute(
                        f"SELECT {_ASSET_COLUMNS} FROM assets WHERE id > ? ORDER BY id LIMIT ?",
                        (last_id, page_size),
                    ).fetchall()
            if not rows:
                return
            page = [asset_from_row(r) for r in rows]
            yield page
            if len(rows) < page_size:
                return
            last_id = page[-1].id

    def find_asset_id_by_path(self, path: str) -> Optional[str]:
        with self.lock:
            row = self.conn.execute(
                "SELECT id FROM assets WHERE path = ?", (path,)
            ).fetchone()
        return row[0] if row else None

    def count_assets(self) -> int:
        with self.lock:
            return self.conn.execute("SELECT COUNT(*) FROM assets").fetchone()[0]

    # Owners

    def upsert_user(self, user_id: str, name: Optional[str] = None,
                    storage_label: Optional[str] = None) -> None:
        with self.lock:
            self.conn.execute("""
                INSERT INTO users (id, name, storage_label) VALUES (?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    name = COALESCE(excluded.name, users.name),
                    storage_label = excluded.storage_label
            """, (user_id, name, storage_label))
            self.conn.commit()

    def get_user(self, user_id: str) -> Optional[User]:
        with self.lock:
            row = self.conn.execute(
                "SELECT id, name, storage_label FROM users WHERE id = ?", (user_id,)
            ).fetchone()
        if not row:
            return None
        return User(id=row["id"], name=row["name"], storage_label=row["storage_label"])

    def get_storage_label(self, owner_id: str) -> Optional[str]:
        user = self.get_user(owner_id)
        return user.storage_label if user else None

    def get_storage_labels(self, owner_ids: Iterable[str]) -> Dict[str, Optional[str]]:
        """Storage label per owner (None when unset or unknown), in one query."""
        owner_ids = sorted(set(owner_ids))
        labels: Dict[str, Optional[str]] = {owner_id: None for owner_id in owner_ids}
        if not owner_ids:
            return labels
        placeholders = ",".join("?" for _ in owner_ids)
        with self.lock:
            rows = self.conn.execute(
                f"SELECT id, storage_label FROM users WHERE id IN ({placeholders})",
                owner_ids,
            ).fetchall()
        for row in rows:
            labels[row["id"]] = row["storage_label"]
        return labels

    # Albums

    def add_album(self, album_id: str, owner_id: str, name: str,
                  asset_ids: Iterable[str] = (), created_at: Optional[datetime] = None) -> None:
        with self.lock:
            self.conn.execute(
                "INSERT OR REPLACE INTO albums (id, owner_id, name, created_at) "
                "VALUES (?, ?, ?, COALESCE(?, CURRENT_TIMESTAMP))",
                (album_id, owner_id, name, _iso(created_at)),
            )
            self.conn.executemany(
                "INSERT OR IGNORE INTO album_assets (album_id, asset_id) VALUES (?, ?)",
                [(album_id, asset_id) for asset_id in asset_ids],
            )
            self.conn.commit()

    def get_album_name(self, asset_id: str) -> Optional[str]:
        """Name of the earliest created album containing the asset."""
        with self.lock:
            row = self.conn.execute("""
                SELECT a.name
                FROM albums a
                JOIN album_assets aa ON aa.album_id = a.id
                WHERE aa.asset_id = ?
                ORDER BY a.created_at, a.id
                LIMIT 1
            """, (asset_id,)).fetchone()
        return row[0] if row else None
