"""
Move journal accessor.

The journal holds at most one row per (entity, path kind). The row is
written before the filesystem is touched and is the only source of truth
when resuming an interrupted move. Rows are never deleted here; they double
as move history.
"""

import sqlite3
import threading
from typing import List, Optional

from restow.model import AssetPathKind, MoveRecord, move_record_from_row

_COLUMNS = "id, entity_id, path_kind, old_path, new_path, created_at, updated_at"


class MoveJournal:
    def __init__(self, conn: sqlite3.Connection, lock: Optional[threading.RLock] = None):
        self.conn = conn
        self.lock = lock or threading.RLock()

    def get_by_entity(self, entity_id: str, path_kind: AssetPathKind) -> Optional[MoveRecord]:
        """
        Fetch the journal entry for an asset file.

        Args:
            entity_id: Asset ID
            path_kind: Which of the asset's files

        Returns:
            MoveRecord if one exists, None otherwise
        """
        with self.lock:
            row = self.conn.execute(
                f"SELECT {_COLUMNS} FROM move_history WHERE entity_id = ? AND path_kind = ?",
                (entity_id, AssetPathKind(path_kind).value),
            ).fetchone()
        return move_record_from_row(row) if row else None

    def get_by_id(self, record_id: int) -> Optional[MoveRecord]:
        with self.lock:
            row = self.conn.execute(
                f"SELECT {_COLUMNS} FROM move_history WHERE id = ?", (record_id,)
            ).fetchone()
        return move_record_from_row(row) if row else None

    def create(self, entity_id: str, path_kind: AssetPathKind,
               old_path: str, new_path: str) -> MoveRecord:
        with self.lock:
            cursor = self.conn.execute(
                "INSERT INTO move_history (entity_id, path_kind, old_path, new_path) "
                "VALUES (?, ?, ?, ?)",
                (entity_id, AssetPathKind(path_kind).value, old_path, new_path),
            )
            self.conn.commit()
            return self.get_by_id(cursor.lastrowid)

    def update(self, record_id: int, old_path: str, new_path: str) -> MoveRecord:
        with self.lock:
            cursor = self.conn.execute(
                "UPDATE move_history SET old_path = ?, new_path = ?, "
                "updated_at = CURRENT_TIMESTAMP WHERE id = ?",
                (old_path, new_path, record_id),
            )
            self.conn.commit()
            if cursor.rowcount == 0:
                raise LookupError(f"Move record {record_id} not found")
            return self.get_by_id(record_id)

    def record_intent(self, entity_id: str, path_kind: AssetPathKind,
                      old_path: str, new_path: str,
                      existing: Optional[MoveRecord] = None) -> MoveRecord:
        """Create the entry for (entity, kind), or overwrite the existing one."""
        if existing is None:
            existing = self.get_by_entity(entity_id, path_kind)
        if existing is None:
            return self.create(entity_id, path_kind, old_path, new_path)
        return self.update(existing.id, old_path, new_path)

    def list_for_entity(self, entity_id: str) -> List[MoveRecord]:
        with self.lock:
            rows = self.conn.execute(
                f"SELECT {_COLUMNS} FROM move_history WHERE entity_id = ? ORDER BY path_kind",
                (entity_id,),
            ).fetchall()
        return [move_record_from_row(r) for r in rows]
