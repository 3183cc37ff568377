"""setlist-sync: Typer application root.

Entry point for the ``setlist-sync`` console script.  Inspects the storage
account directly; nothing here touches the local library.

    setlist-sync list                   current-format setlists
    setlist-sync list-legacy            setlists left by the predecessor app
    setlist-sync preview-legacy NAME    decode one legacy setlist
    setlist-sync show NAME              decode one current setlist
    setlist-sync delete NAME            remove one current setlist
    setlist-sync create-container       create the current container

Exit codes:
  0 - success
  1 - user error (unknown blob, unreadable blob)
  2 - configuration invalid (no account, undecodable key)
  3 - network / server error
"""
from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

import httpx
import typer

from setlist_sync.config import Settings, get_settings
from setlist_sync.errors import ExitCode, SetlistSyncError
from setlist_sync.models import LegacySetlist
from setlist_sync.services.blob_store import BlobStoreClient
from setlist_sync.services.import_resolver import parse_legacy_midi
from setlist_sync.services.legacy_archive import decode_legacy_archive
from setlist_sync.services.schema_codec import ExportedSetlist, decode_export_document
from setlist_sync.services.sync import BLOB_SUFFIX, display_name

logger = logging.getLogger(__name__)

T = TypeVar("T")

cli = typer.Typer(
    name="setlist-sync",
    help="Inspect and manage setlists in cloud storage.",
    no_args_is_help=True,
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _open_blob_store(settings: Settings) -> BlobStoreClient:
    return BlobStoreClient(
        settings.account_name,
        settings.account_key,
        base_url=settings.blob_endpoint,
        api_version=settings.api_version,
        timeout=settings.request_timeout,
    )


def _require_account() -> Settings:
    settings = get_settings()
    if not settings.account_name:
        typer.echo("❌ No storage account configured. Set SETLIST_SYNC_ACCOUNT_NAME.")
        raise typer.Exit(code=int(ExitCode.CONFIG_ERROR))
    return settings


def _run(action: Callable[[BlobStoreClient, Settings], Awaitable[T]]) -> T:
    """Run *action* against a fresh blob store client, mapping failures to exit codes."""
    settings = _require_account()

    async def _with_store() -> T:
        async with _open_blob_store(settings) as store:
            return await action(store, settings)

    try:
        return asyncio.run(_with_store())
    except SetlistSyncError as exc:
        typer.echo(f"❌ {exc}")
        logger.debug("❌ Command failed: %s", exc, exc_info=True)
        raise typer.Exit(code=int(exc.exit_code))
    except httpx.HTTPError as exc:
        typer.echo(f"❌ Network error: {exc}")
        raise typer.Exit(code=int(ExitCode.INTERNAL_ERROR))


def _blob_name(name: str) -> str:
    """Accept either ``Gig`` or ``Gig.json`` for current-container items."""
    return name if name.endswith(BLOB_SUFFIX) else f"{name}{BLOB_SUFFIX}"


def _format_size(size: int) -> str:
    if size < 1024:
        return f"{size} B"
    if size < 1024 * 1024:
        return f"{size / 1024:.1f} KB"
    return f"{size / (1024 * 1024):.1f} MB"


def _render_legacy(legacy: LegacySetlist) -> list[str]:
    lines = [f"📋 {legacy.name} (ID: {legacy.legacy_id}) - {len(legacy.songs)} song(s)"]
    for index, song in enumerate(legacy.songs, start=1):
        line = f"  {index:>2}. {song.name or '(untitled)'}  [{song.path or '?'}]"
        command = parse_legacy_midi(song.midi_commands)
        if command is not None:
            line += f"  🎹 Ch{command.channel + 1} Prog:{command.program}"
        elif song.midi_commands:
            line += f"  🎹 {song.midi_commands!r} (unparsed)"
        if song.file_data:
            line += f"  📦 {_format_size(len(song.file_data))}"
        lines.append(line)
    return lines


def _render_exported(exported: ExportedSetlist) -> list[str]:
    header = f"📋 {exported.name} (v{exported.version}) - {len(exported.songs)} song(s)"
    details = [d for d in (exported.event, exported.venue) if d]
    if exported.event_date is not None:
        details.append(exported.event_date.date().isoformat())
    if details:
        header += f"  [{' · '.join(details)}]"
    lines = [header]
    for index, song in enumerate(exported.songs, start=1):
        line = f"  {index:>2}. {song.title or song.file_name}  [{song.full_file_name}]"
        for profile in song.resolved_midi_profiles():
            line += f"  🎹 {profile.instrument_type.display_name}: {profile.description}"
        if song.annotation_profiles:
            line += f"  📝 {len(song.annotation_profiles)} profile(s)"
        data = song.decoded_file_data
        if data:
            line += f"  📦 {_format_size(len(data))}"
        lines.append(line)
    return lines


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


@cli.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log requests and decoding steps."),
) -> None:
    """Inspect and manage setlists in cloud storage."""
    debug = verbose or get_settings().debug
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.WARNING,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


@cli.command("list", help="List setlists in the current container.")
def list_current() -> None:
    async def _list(store: BlobStoreClient, settings: Settings) -> list[str]:
        return await store.list_blobs(settings.current_container)

    names = _run(_list)
    if not names:
        typer.echo("No setlists found.")
        return
    for name in names:
        typer.echo(display_name(name))


@cli.command("list-legacy", help="List setlists in the legacy container.")
def list_legacy() -> None:
    async def _list(store: BlobStoreClient, settings: Settings) -> list[str]:
        return await store.list_blobs(settings.legacy_container)

    names = _run(_list)
    if not names:
        typer.echo("No legacy setlists found.")
        return
    for name in names:
        typer.echo(name)


@cli.command("preview-legacy", help="Download and decode one legacy setlist.")
def preview_legacy(
    name: str = typer.Argument(..., help="Blob name in the legacy container."),
) -> None:
    async def _preview(store: BlobStoreClient, settings: Settings) -> LegacySetlist:
        data = await store.get_blob(settings.legacy_container, name)
        return decode_legacy_archive(data)

    for line in _render_legacy(_run(_preview)):
        typer.echo(line)


@cli.command("show", help="Download and decode one current setlist without importing it.")
def show(
    name: str = typer.Argument(..., help="Setlist name, with or without the .json suffix."),
) -> None:
    async def _show(store: BlobStoreClient, settings: Settings) -> ExportedSetlist:
        data = await store.get_blob(settings.current_container, _blob_name(name))
        return decode_export_document(data)

    for line in _render_exported(_run(_show)):
        typer.echo(line)


@cli.command("delete", help="Delete one setlist from the current container.")
def delete(
    name: str = typer.Argument(..., help="Setlist name, with or without the .json suffix."),
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation."),
) -> None:
    blob = _blob_name(name)
    if not yes:
        typer.confirm(f"Delete {display_name(blob)!r} from the cloud?", abort=True)

    async def _delete(store: BlobStoreClient, settings: Settings) -> None:
        await store.delete_blob(settings.current_container, blob)

    _run(_delete)
    typer.echo(f"✅ Deleted {display_name(blob)}")


@cli.command("create-container", help="Create the current container if it does not exist.")
def create_container() -> None:
    async def _create(store: BlobStoreClient, settings: Settings) -> str:
        await store.ensure_container(settings.current_container)
        return settings.current_container

    container = _run(_create)
    typer.echo(f"✅ Container {container} ready")


if __name__ == "__main__":
    cli()
