"""
Relocation engine.

Moves asset files to the location computed from the storage template (or the
fixed layout, for derived files) using a journal-first protocol:

1. Record intent (old path, new path) in the move journal
2. Rename, or copy + verify + delete when the rename crosses filesystems
3. Commit the new path on the asset

A crash at any point leaves either the journal entry and the source file, or
the journal entry and a verifiable copy at the new path; the next run picks up
from whichever exists.
"""

import logging
import os
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional

from restow.catalog import Catalog
from restow.config import RelocationConfig
from restow.conflicts import ConflictResolver
from restow.errors import (
    AssetNotFoundError,
    DisambiguationExhaustedError,
    IntegrityMismatchError,
)
from restow.fs_utils import LocalStorage, is_cross_device_error, verify_checksum, verify_size
from restow.journal import MoveJournal
from restow.locks import KeyedLockTable
from restow.model import Asset, AssetPathKind, MoveRecord
from restow.pathing import StorageLayout, build_context, strip_counter
from restow.template import CompiledTemplate, TemplateEngine

logger = logging.getLogger(__name__)

_PREFIXES = {
    "info": ("ℹ️", logging.INFO),
    "success": ("✅", logging.INFO),
    "warning": ("⚠️", logging.WARNING),
    "error": ("❌", logging.ERROR),
}


def _log(message: str, prefix: str = "info"):
    icon, level = _PREFIXES.get(prefix, _PREFIXES["info"])
    logger.log(level, f"{icon} {message}")


class RelocationStatus(str, Enum):
    SUCCESS = "success"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass
class RelocationResult:
    """Outcome of relocating one asset file.

    Attributes:
        asset_id: Asset ID
        status: SUCCESS, SKIPPED or FAILED
        path_kind: Which of the asset's files was handled
        reason: Why it was skipped or failed (or how it succeeded)
        old_path: Source path, when a move was attempted
        new_path: Destination path, when a move was attempted
    """
    asset_id: str
    status: RelocationStatus
    path_kind: AssetPathKind = AssetPathKind.ORIGINAL
    reason: Optional[str] = None
    old_path: Optional[str] = None
    new_path: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status != RelocationStatus.FAILED


@dataclass
class BulkReport:
    """Aggregate of a bulk relocation pass."""
    succeeded: int = 0
    skipped: int = 0
    failed: int = 0
    results: List[RelocationResult] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)

    @property
    def total(self) -> int:
        return self.succeeded + self.skipped + self.failed

    def record(self, result: RelocationResult) -> None:
        self.results.append(result)
        if result.status == RelocationStatus.SUCCESS:
            self.succeeded += 1
        elif result.status == RelocationStatus.SKIPPED:
            self.skipped += 1
        else:
            self.failed += 1
            self.errors.append(f"Asset {result.asset_id}: {result.reason}")


def _same_path(a: Optional[str], b: Optional[str]) -> bool:
    if a is None or b is None:
        return False
    return os.path.normpath(a) == os.path.normpath(b)


def is_already_migrated(current_path: str, target: str) -> bool:
    """True if current_path is target, or target with a +N suffix."""
    current = os.path.normpath(current_path)
    target = os.path.normpath(target)
    return current == target or strip_counter(current) == target


class RelocationEngine:
    """
    Relocates asset files to their canonical location.

    Responsibilities:
    - Render the target path from a configuration snapshot
    - Resume or reject interrupted moves recorded in the journal
    - Disambiguate occupied targets with +N suffixes
    - Move the file, falling back to copy + verify across filesystems
    - Commit the new path on the asset
    """

    def __init__(self, catalog: Catalog, journal: Optional[MoveJournal] = None,
                 storage: Optional[LocalStorage] = None,
                 config: Optional[RelocationConfig] = None,
                 locks: Optional[KeyedLockTable] = None):
        """
        Initialize engine.

        Args:
            catalog: Asset catalog
            journal: Move journal (default: on the catalog's connection)
            storage: Filesystem primitives (default: LocalStorage)
            config: Default configuration snapshot for calls that pass none
            locks: Shared lock table (default: a private one)

        Raises:
            TemplateValidationError: if the default template is invalid
        """
        self.catalog = catalog
        self.journal = journal or MoveJournal(catalog.conn, catalog.lock)
        self.storage = storage or LocalStorage()
        self.config = config or RelocationConfig()
        self.locks = locks or KeyedLockTable()
        self._templates: Dict[str, CompiledTemplate] = {}
        self._templates_lock = threading.Lock()
        self._compile(self.config.template)

    def _compile(self, template: str) -> CompiledTemplate:
        with self._templates_lock:
            compiled = self._templates.get(template)
            if compiled is None:
                compiled = self._templates[template] = TemplateEngine.compile(template)
            return compiled

    # Single asset

    def relocate_one(self, asset_id: str, config: Optional[RelocationConfig] = None) -> RelocationResult:
        """
        Move an asset's original file to its templated location.

        Never raises for expected outcomes; see RelocationResult.

        Raises:
            TemplateValidationError: if config carries an invalid template
        """
        config = config or self.config
        if not config.enabled:
            return RelocationResult(asset_id, RelocationStatus.SKIPPED,
                                    reason="storage template disabled")
        compiled = self._compile(config.template)

        asset = self.catalog.get_asset(asset_id)
        if asset is None:
            _log(f"relocate asset={asset_id} not found", "error")
            return RelocationResult(asset_id, RelocationStatus.FAILED, reason="asset not found")

        if asset.is_read_only:
            return RelocationResult(asset_id, RelocationStatus.SKIPPED, reason="read-only")

        storage_label = self.catalog.get_storage_label(asset.owner_id)
        return self._relocate_original(asset, config, compiled, storage_label)

    def relocate_derived(self, asset_id: str, path_kind: AssetPathKind,
                         config: Optional[RelocationConfig] = None) -> RelocationResult:
        """Move a thumbnail, preview or encoded video to its fixed layout location."""
        kind = AssetPathKind(path_kind)
        if kind == AssetPathKind.ORIGINAL:
            return self.relocate_one(asset_id, config)
        config = config or self.config

        asset = self.catalog.get_asset(asset_id)
        if asset is None:
            _log(f"relocate asset={asset_id} kind={kind.value} not found", "error")
            return RelocationResult(asset_id, RelocationStatus.FAILED, kind, reason="asset not found")
        if asset.is_read_only:
            return RelocationResult(asset_id, RelocationStatus.SKIPPED, kind, reason="read-only")

        current = asset.path_for(kind)
        if not current:
            return RelocationResult(asset_id, RelocationStatus.SKIPPED, kind,
                                    reason=f"no {kind.value} file")

        target = StorageLayout(config.media_location).derived_path(asset, kind)
        if _same_path(current, target):
            return RelocationResult(asset_id, RelocationStatus.SKIPPED, kind,
                                    reason="already at target")
        return self._move(asset, kind, target, config)

    def _target_for(self, asset: Asset, config: RelocationConfig, compiled: CompiledTemplate,
                    storage_label: Optional[str]) -> str:
        album_name = self.catalog.get_album_name(asset.id) if compiled.uses_album else None
        context = build_context(asset, storage_label, album_name)
        return StorageLayout(config.media_location).template_target(compiled, context)

    def _relocate_original(self, asset: Asset, config: RelocationConfig,
                           compiled: CompiledTemplate,
                           storage_label: Optional[str]) -> RelocationResult:
        try:
            target = self._target_for(asset, config, compiled, storage_label)
        except ValueError as e:
            _log(f"relocate asset={asset.id} template error: {e}", "error")
            return RelocationResult(asset.id, RelocationStatus.FAILED, reason=str(e))

        if _same_path(asset.path, target):
            return RelocationResult(asset.id, RelocationStatus.SKIPPED, reason="already at target")

        return self._move(asset, AssetPathKind.ORIGINAL, target, config)

    # Move protocol

    def _move(self, asset: Asset, kind: AssetPathKind, candidate: str,
              config: RelocationConfig) -> RelocationResult:
        asset_id = asset.id
        with self.locks.hold((asset_id, kind.value)):
            # Re-read under the lock: another worker may have committed meanwhile.
            asset = self.catalog.get_asset(asset_id)
            if asset is None:
                return RelocationResult(asset_id, RelocationStatus.FAILED, kind,
                                        reason="asset not found")
            recorded = asset.path_for(kind)
            if not recorded:
                return RelocationResult(asset_id, RelocationStatus.SKIPPED, kind,
                                        reason=f"no {kind.value} file")
            if _same_path(recorded, candidate):
                return RelocationResult(asset_id, RelocationStatus.SKIPPED, kind,
                                        reason="already at target")

            record = self.journal.get_by_entity(asset.id, kind)
            try:
                source = self._resolve_source(asset, kind, record, config)
            except (AssetNotFoundError, IntegrityMismatchError) as e:
                _log(f"relocate asset={asset.id} kind={kind.value} recovery failed: {e}", "error")
                return RelocationResult(asset.id, RelocationStatus.FAILED, kind, reason=str(e))

            if _same_path(source, candidate):
                return self._commit_resumed(asset, kind, recorded, source)

            with self.locks.hold(("target", os.path.normpath(candidate))):
                if (record is not None and _same_path(source, record.old_path)
                        and _same_path(record.new_path, candidate)):
                    reclaimed = self._reclaim_leftover(asset, kind, recorded, source,
                                                       candidate, config)
                    if reclaimed is not None:
                        return reclaimed

                resolver = ConflictResolver(self.storage, config.max_disambiguation_attempts)
                try:
                    target = resolver.resolve(candidate, source=source)
                except DisambiguationExhaustedError as e:
                    _log(f"relocate asset={asset.id} {e}", "error")
                    return RelocationResult(asset.id, RelocationStatus.FAILED, kind,
                                            reason=str(e), old_path=source)

                if _same_path(source, target):
                    return self._commit_resumed(asset, kind, recorded, source)

                self.journal.record_intent(asset.id, kind, source, target, existing=record)
                _log(f"move asset={asset.id} kind={kind.value} {source} → {target}")

                try:
                    self._transfer(asset, kind, source, target, config)
                except IntegrityMismatchError as e:
                    _log(f"move asset={asset.id} verification failed: {e}", "error")
                    return RelocationResult(asset.id, RelocationStatus.FAILED, kind,
                                            reason=str(e), old_path=source, new_path=target)
                except OSError as e:
                    _log(f"move asset={asset.id} failed: {e}", "error")
                    return RelocationResult(asset.id, RelocationStatus.FAILED, kind,
                                            reason=f"I/O error: {e}", old_path=source,
                                            new_path=target)

            self.catalog.update_path(asset.id, kind, target)
            _log(f"moved asset={asset.id} kind={kind.value} path={target}", "success")
            return RelocationResult(asset.id, RelocationStatus.SUCCESS, kind,
                                    old_path=source, new_path=target)

    def _commit_resumed(self, asset: Asset, kind: AssetPathKind, recorded: Optional[str],
                        source: str) -> RelocationResult:
        """The file already sits at its target; commit if the catalog lags behind."""
        if _same_path(recorded, source):
            return RelocationResult(asset.id, RelocationStatus.SKIPPED, kind,
                                    reason="already at target")
        self.catalog.update_path(asset.id, kind, source)
        _log(f"resumed asset={asset.id} kind={kind.value} path={source}", "success")
        return RelocationResult(asset.id, RelocationStatus.SUCCESS, kind,
                                reason="resumed interrupted move",
                                old_path=recorded, new_path=source)

    def _resolve_source(self, asset: Asset, kind: AssetPathKind, record: Optional[MoveRecord],
                        config: RelocationConfig) -> str:
        """
        Decide which file is the current source for this run.

        Raises:
            AssetNotFoundError: journal entry points at two missing files
            IntegrityMismatchError: file at the journal's new path does not
                match the catalog
        """
        if record is None:
            return asset.path_for(kind)

        _log(f"asset={asset.id} kind={kind.value} finishing recorded move "
             f"{record.old_path} → {record.new_path}")
        if self.storage.exists(record.old_path):
            return record.old_path
        if self.storage.exists(record.new_path):
            if kind == AssetPathKind.ORIGINAL:
                self._verify_original(asset, record.new_path, config)
            return record.new_path
        raise AssetNotFoundError(
            f"file missing at both journal locations: {record.old_path}, {record.new_path}"
        )

    def _verify_original(self, asset: Asset, path: str, config: RelocationConfig) -> None:
        ok, error = verify_size(self.storage, path, asset.size)
        if not ok:
            raise IntegrityMismatchError(path, error)
        if config.hash_verification:
            ok, error = verify_checksum(self.storage, path, asset.checksum,
                                        config.checksum_algorithm)
            if not ok:
                raise IntegrityMismatchError(path, error)

    def _transfer(self, asset: Asset, kind: AssetPathKind, source: str, target: str,
                  config: RelocationConfig) -> None:
        """
        Put source at target.

        Raises:
            IntegrityMismatchError: cross-device copy did not verify; the copy
                was removed and the source is untouched
            OSError: any other filesystem failure; a cross-device copy is
                removed as well, even when only deleting the source failed
        """
        self.storage.ensure_parent(target)
        try:
            self.storage.rename(source, target)
            return
        except OSError as e:
            if not is_cross_device_error(e):
                raise

        _log(f"asset={asset.id} cross-device rename, copying {source} → {target}", "warning")
        try:
            self.storage.copy(source, target)
            self._finish_copy(asset, kind, source, target, config)
        except (IntegrityMismatchError, OSError):
            # Only the source and the journal entry may survive a failed run
            self._discard(target)
            raise

    def _finish_copy(self, asset: Asset, kind: AssetPathKind, source: str, target: str,
                     config: RelocationConfig) -> None:
        """Verify the copy at target, give it the source's times, remove the source."""
        source_stat = self.storage.stat(source)
        if kind == AssetPathKind.ORIGINAL:
            self._verify_original(asset, target, config)
        else:
            ok, error = verify_size(self.storage, target, source_stat.st_size)
            if not ok:
                raise IntegrityMismatchError(target, error)
        self.storage.set_times(target, source_stat.st_atime_ns, source_stat.st_mtime_ns)
        self.storage.unlink(source)

    def _reclaim_leftover(self, asset: Asset, kind: AssetPathKind, recorded: Optional[str],
                          source: str, target: str,
                          config: RelocationConfig) -> Optional[RelocationResult]:
        """
        Handle a file left at the journal's target while the source still exists.

        That file comes from an interrupted copy of this asset. A copy that
        verifies is kept and the source removed; anything else is discarded so
        the target name is free again.

        Returns:
            RelocationResult when the move was settled here, None to carry on
            with a normal move
        """
        if not self.storage.exists(target):
            return None
        if kind == AssetPathKind.ORIGINAL:
            owner = self.catalog.find_asset_id_by_path(target)
            if owner is not None and owner != asset.id:
                return None

        try:
            self._finish_copy(asset, kind, source, target, config)
        except IntegrityMismatchError as e:
            _log(f"asset={asset.id} discarding partial copy: {e}", "warning")
            self._discard(target)
            return None
        except OSError as e:
            _log(f"move asset={asset.id} failed: {e}", "error")
            self._discard(target)
            return RelocationResult(asset.id, RelocationStatus.FAILED, kind,
                                    reason=f"I/O error: {e}", old_path=source, new_path=target)

        self.catalog.update_path(asset.id, kind, target)
        _log(f"resumed asset={asset.id} kind={kind.value} path={target}", "success")
        return RelocationResult(asset.id, RelocationStatus.SUCCESS, kind,
                                reason="resumed interrupted move",
                                old_path=recorded, new_path=target)

    def _discard(self, path: str) -> None:
        try:
            self.storage.unlink(path)
        except FileNotFoundError:
            pass
        except OSError as e:
            _log(f"could not remove partial copy {path}: {e}", "warning")

    # Bulk

    def relocate_all(self, config: Optional[RelocationConfig] = None, page_size: int = 500,
                     workers: int = 1,
                     progress_callback: Optional[Callable[[RelocationResult], None]] = None
                     ) -> BulkReport:
        """
        Relocate every asset in the catalog.

        Args:
            config: Configuration snapshot (default: the engine's)
            page_size: Assets fetched per catalog query
            workers: Concurrent relocations (1 = ascending asset id order)
            progress_callback: Optional callback(result) per asset

        Returns:
            BulkReport with per-asset results
        """
        config = config or self.config
        report = BulkReport()
        if not config.enabled:
            _log("storage template disabled, nothing to migrate")
            return report

        compiled = self._compile(config.template)
        layout = StorageLayout(config.media_location)
        executor = ThreadPoolExecutor(max_workers=workers) if workers > 1 else None

        def finish(result: RelocationResult) -> None:
            report.record(result)
            if progress_callback:
                progress_callback(result)

        try:
            for page in self.catalog.iter_asset_pages(page_size):
                labels = self.catalog.get_storage_labels(a.owner_id for a in page)
                pending = []

                for asset in page:
                    if asset.is_read_only:
                        finish(RelocationResult(asset.id, RelocationStatus.SKIPPED,
                                                reason="read-only"))
                        continue
                    try:
                        album_name = (self.catalog.get_album_name(asset.id)
                                      if compiled.uses_album else None)
                        context = build_context(asset, labels.get(asset.owner_id), album_name)
                        target = layout.template_target(compiled, context)
                    except ValueError as e:
                        finish(RelocationResult(asset.id, RelocationStatus.FAILED, reason=str(e)))
                        continue
                    if is_already_migrated(asset.path, target):
                        finish(RelocationResult(asset.id, RelocationStatus.SKIPPED,
                                                reason="already migrated"))
                        continue
                    pending.append((asset, target))

                if executor is None:
                    for asset, target in pending:
                        finish(self._move_guarded(asset, target, config))
                else:
                    futures = [
                        executor.submit(self._move_guarded, asset, target, config)
                        for asset, target in pending
                    ]
                    for future in futures:
                        finish(future.result())
        finally:
            if executor is not None:
                executor.shutdown(wait=True)

        _log(f"migration finished succeeded={report.succeeded} skipped={report.skipped} "
             f"failed={report.failed}", "success" if not report.failed else "warning")
        return report

    def _move_guarded(self, asset: Asset, target: str, config: RelocationConfig) -> RelocationResult:
        """Run one bulk item; an unexpected error fails the item, not the batch."""
        try:
            return self._move(asset, AssetPathKind.ORIGINAL, target, config)
        except Exception as e:
            logger.exception("❌ relocate asset=%s crashed", asset.id)
            return RelocationResult(asset.id, RelocationStatus.FAILED,
                                    reason=f"unexpected error: {e}")
