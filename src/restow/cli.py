# src/restow/cli.py

import logging
import os
import sys
import time
from datetime import datetime
from pathlib import Path
from typing import Optional

import click
from rich.console import Console
from rich.table import Table
from tqdm import tqdm

from restow import __version__
from restow.errors import ConfigError, TemplateValidationError

DEFAULT_DB_PATH = Path.home() / ".restow" / "catalog.db"

log = logging.getLogger("restow.cli")

console = Console()

db_option = click.option("--db", type=click.Path(dir_okay=False), default=str(DEFAULT_DB_PATH),
                         show_default=True, help="Catalog database.")
config_option = click.option("--config", "config_path", type=click.Path(dir_okay=False),
                             default=None, help="YAML config (default: ~/.restow/config.yml).")


def _run_log_path() -> Optional[Path]:
    """Run log location from RESTOW_LOG_* (None when disabled)."""
    if os.environ.get("RESTOW_LOG_DISABLED") == "1":
        return None
    log_file = os.environ.get("RESTOW_LOG_FILE")
    if log_file:
        return Path(os.path.expanduser(log_file))
    log_dir = os.environ.get("RESTOW_LOG_DIR")
    base_dir = Path(os.path.expanduser(log_dir)) if log_dir else (Path.home() / ".logs" / "restow")
    return base_dir / "restow.log"


def _configure_logging(verbose: bool) -> Optional[Path]:
    """
    Send restow logging to stdout and append it, timestamped, to the run log.

    Handlers are rebuilt on every invocation since sys.stdout may have been
    swapped (test runners) since the last one.

    Returns:
        Run log path, or None when the run log is disabled or unwritable
    """
    logger = logging.getLogger("restow")
    logger.setLevel(logging.DEBUG if verbose else logging.INFO)
    logger.propagate = False
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(logging.Formatter("%(message)s"))
    logger.addHandler(console_handler)

    log_path = _run_log_path()
    if log_path is None:
        return None
    try:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_path, encoding="utf-8")
    except OSError as e:
        click.echo(f"⚠️  Run log disabled: {e}", err=True)
        return None
    file_handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s %(message)s"))
    logger.addHandler(file_handler)
    return log_path


def _emit_run_header(log_path: Optional[Path]) -> None:
    args = " ".join(sys.argv[1:])
    log.info(f"🧾 restow v{__version__} @ {time.strftime('%Y-%m-%dT%H:%M:%S%z')} {args}".rstrip())
    if log_path:
        click.echo(f"🧾 log: {log_path}")


def _open(db):
    from restow.catalog import Catalog
    from restow.model import connect_db

    return Catalog(connect_db(Path(db)))


def _load_config(config_path):
    from restow.config import load_config

    try:
        return load_config(Path(config_path) if config_path else None)
    except (ConfigError, TemplateValidationError) as e:
        click.echo(f"❌ {e}", err=True)
        raise click.Abort()


def _sample_context():
    from restow.model import AssetType
    from restow.template import TemplateContext

    return TemplateContext(
        owner_id="user-id",
        timestamp=datetime(2023, 2, 23, 13, 45, 12, 123000),
        filename="IMG_0001",
        extension="jpg",
        asset_id="a1b2c3d4-0000-4000-8000-000000000000",
        asset_type=AssetType.IMAGE,
        album_name="Holidays",
    )


@click.group()
@click.version_option(__version__)
@click.option("-v", "--verbose", is_flag=True, help="Show debug output.")
def cli(verbose):
    """Restow: move asset files to their storage-template location, safely."""
    _emit_run_header(_configure_logging(verbose))


@cli.command("check-template")
@click.argument("template")
@click.option("--media-location", default="upload", show_default=True,
              help="Media root used for the sample path.")
def check_template_cmd(template, media_location):
    """Validate TEMPLATE and show a sample rendering."""
    from restow.pathing import StorageLayout
    from restow.template import TemplateEngine

    try:
        compiled = TemplateEngine.compile(template)
    except TemplateValidationError as e:
        click.echo(f"❌ {e}", err=True)
        raise click.Abort()

    sample = StorageLayout(media_location).template_target(compiled, _sample_context())
    click.echo("✅ Template is valid")
    click.echo(f"   Example: {sample}")


@cli.command("presets")
def presets_cmd():
    """List the built-in storage templates."""
    from restow.pathing import StorageLayout
    from restow.template import PRESET_TEMPLATES, TemplateEngine

    layout = StorageLayout("upload")
    table = Table(title="Storage template presets")
    table.add_column("Template")
    table.add_column("Example")
    for preset in PRESET_TEMPLATES:
        compiled = TemplateEngine.compile(preset)
        table.add_row(preset, layout.template_target(compiled, _sample_context()))
    console.print(table)


@cli.command("ingest")
@click.argument("path", type=click.Path(exists=True, file_okay=False))
@click.option("--owner", required=True, help="Owner user ID for the new assets.")
@click.option("--read-only", is_flag=True, help="Mark assets read-only (never relocated).")
@db_option
@config_option
def ingest_cmd(path, owner, read_only, db, config_path):
    """Register files under PATH as assets owned by OWNER."""
    from restow.ingest import ingest_path, list_files

    config = _load_config(config_path)
    catalog = _open(db)
    total = len(list_files(Path(path)))
    with tqdm(total=total, desc="📦 Ingesting") as pbar:
        stats = ingest_path(catalog, Path(path), owner, read_only=read_only,
                            algorithm=config.checksum_algorithm,
                            on_file=lambda _p: pbar.update(1))
    click.echo(f"✅ Added {stats.files_added} assets "
               f"({stats.files_known} already known, {stats.files_unreadable} unreadable)")


@cli.group()
def user():
    """Owner settings (storage labels)."""
    pass


@user.command("add")
@click.argument("user_id")
@click.option("--name", default=None, help="Display name.")
@click.option("--storage-label", default=None, help="Folder name used instead of the user ID.")
@db_option
def user_add_cmd(user_id, name, storage_label, db):
    """Create or update a user."""
    catalog = _open(db)
    catalog.upsert_user(user_id, name=name, storage_label=storage_label)
    click.echo(f"✅ User {user_id} saved")


@user.command("label")
@click.argument("user_id")
@click.argument("label", required=False)
@db_option
def user_label_cmd(user_id, label, db):
    """Set (or with no LABEL, clear) a user's storage label."""
    catalog = _open(db)
    if catalog.get_user(user_id) is None:
        click.echo(f"❌ User not found: {user_id}", err=True)
        raise click.Abort()
    catalog.upsert_user(user_id, storage_label=label or None)
    click.echo(f"✅ Storage label for {user_id}: {label or '(none)'}")


def _log_result(result):
    icons = {"success": "✅", "skipped": "⏭️ ", "failed": "❌"}
    line = f"{icons[result.status.value]} {result.asset_id} {result.path_kind.value} {result.status.value}"
    if result.new_path and result.status.value == "success":
        line += f" → {result.new_path}"
    if result.reason:
        line += f" ({result.reason})"
    log.info(line)


@cli.command("relocate")
@click.argument("asset_id")
@click.option("--kind", type=click.Choice(["original", "thumbnail", "preview", "encoded_video"]),
              default="original", show_default=True, help="Which of the asset's files to move.")
@db_option
@config_option
def relocate_cmd(asset_id, kind, db, config_path):
    """Move one asset file to its canonical location."""
    from restow.engine import RelocationEngine
    from restow.model import AssetPathKind

    config = _load_config(config_path)
    engine = RelocationEngine(_open(db), config=config)
    if kind == "original":
        result = engine.relocate_one(asset_id)
    else:
        result = engine.relocate_derived(asset_id, AssetPathKind(kind))
    _log_result(result)
    if not result.ok:
        sys.exit(1)


@cli.command("relocate-all")
@click.option("--workers", type=int, default=1, show_default=True,
              help="Concurrent relocations (1 keeps ascending asset-id order).")
@click.option("--page-size", type=int, default=500, show_default=True,
              help="Assets fetched per catalog page.")
@db_option
@config_option
def relocate_all_cmd(workers, page_size, db, config_path):
    """Move every asset to the location given by the storage template."""
    from restow.engine import RelocationEngine

    config = _load_config(config_path)
    if not config.enabled:
        log.info("⏭️  Storage template disabled; nothing to do")
        return
    catalog = _open(db)
    engine = RelocationEngine(catalog, config=config)

    with tqdm(total=catalog.count_assets(), desc="🚚 Relocating") as pbar:
        report = engine.relocate_all(page_size=page_size, workers=max(1, workers),
                                     progress_callback=lambda _r: pbar.update(1))

    log.info(f"✅ Moved: {report.succeeded}")
    log.info(f"⏭️  Skipped: {report.skipped}")
    log.info(f"❌ Failed: {report.failed}")
    for error in report.errors[:20]:
        log.info(f"   {error}")
    if len(report.errors) > 20:
        log.info(f"   ... and {len(report.errors) - 20} more")
    if report.failed:
        sys.exit(1)


@cli.command("history")
@click.argument("asset_id")
@db_option
def history_cmd(asset_id, db):
    """Show the move journal for ASSET_ID."""
    from restow.journal import MoveJournal

    catalog = _open(db)
    records = MoveJournal(catalog.conn, catalog.lock).list_for_entity(asset_id)
    if not records:
        click.echo(f"No moves recorded for {asset_id}")
        return

    table = Table(title=f"Moves for {asset_id}")
    table.add_column("Kind")
    table.add_column("Old path")
    table.add_column("New path")
    table.add_column("Updated")
    for r in records:
        table.add_row(r.path_kind.value, r.old_path, r.new_path, r.updated_at or "")
    console.print(table)


def main():
    cli()


if __name__ == "__main__":
    main()
