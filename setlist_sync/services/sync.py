"""Sync orchestrator: the public surface of the engine.

Ties the blob store client, both decoders and the import resolver together
into the operations a host application calls:

    upload_setlist                     local setlist → current container
    list_legacy_items / list_current_items
    preview_legacy_item                legacy blob → LegacySetlist (no import)
    import_legacy_item                 LegacySetlist → local setlist
    migrate_legacy_item                import, then upload in the current format
    download_and_import_current_item   current blob → local setlist
    delete_current_item

Every operation either returns its result or raises a
:class:`~setlist_sync.errors.SetlistSyncError`; nothing is retried here.
Local state (library, annotation store, setlist store) is only touched after
the network response for that operation fully succeeded.

Progress is reported through two independent callbacks, one for uploads and
one for downloads: ``0.0`` when the request starts, ``1.0`` once it has
succeeded.  A failed request reports nothing further.
"""
from __future__ import annotations

import contextlib
import enum
import logging
from collections.abc import Callable, Iterator

import httpx

from setlist_sync.config import Settings, get_settings
from setlist_sync.contracts.ports import AnnotationStore, SetlistStore, SongLibrary
from setlist_sync.models import AnnotationProfile, LegacySetlist, Setlist, Song
from setlist_sync.services.blob_store import BlobStoreClient
from setlist_sync.services.import_resolver import ImportResolver
from setlist_sync.services.legacy_archive import decode_legacy_archive
from setlist_sync.services.schema_codec import (
    JSON_CONTENT_TYPE,
    ExportedSetlist,
    decode_export_document,
    encode_setlist,
)

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[float], None]

BLOB_SUFFIX = ".json"


class SyncState(str, enum.Enum):
    IDLE = "idle"
    LISTING = "listing"
    PREVIEWING = "previewing"
    DOWNLOADING = "downloading"
    UPLOADING = "uploading"
    DELETING = "deleting"


def sanitize_blob_name(name: str) -> str:
    """Make a setlist name safe as a blob name: path separators become ``-``, ``?``/``#`` are dropped."""
    return name.replace("/", "-").replace("\\", "-").replace("?", "").replace("#", "")


def blob_name_for(setlist: Setlist) -> str:
    return f"{sanitize_blob_name(setlist.name)}{BLOB_SUFFIX}"


def display_name(blob_name: str) -> str:
    """Blob name as shown to users (without the ``.json`` suffix)."""
    return blob_name.removesuffix(BLOB_SUFFIX)


class SyncOrchestrator:
    """Runs sync operations against one storage account and one local library."""

    def __init__(
        self,
        blob_store: BlobStoreClient,
        library: SongLibrary,
        annotation_store: AnnotationStore,
        setlist_store: SetlistStore,
        *,
        legacy_container: str,
        current_container: str,
        on_upload_progress: ProgressCallback | None = None,
        on_download_progress: ProgressCallback | None = None,
    ) -> None:
        self.blob_store = blob_store
        self.library = library
        self.annotation_store = annotation_store
        self.setlist_store = setlist_store
        self.legacy_container = legacy_container
        self.current_container = current_container
        self.on_upload_progress = on_upload_progress
        self.on_download_progress = on_download_progress
        self.resolver = ImportResolver(library, annotation_store)
        self._in_flight: list[SyncState] = []

    @classmethod
    def from_settings(
        cls,
        library: SongLibrary,
        annotation_store: AnnotationStore,
        setlist_store: SetlistStore,
        *,
        settings: Settings | None = None,
        http_client: httpx.AsyncClient | None = None,
        on_upload_progress: ProgressCallback | None = None,
        on_download_progress: ProgressCallback | None = None,
    ) -> SyncOrchestrator:
        """Build an orchestrator (and its blob store client) from configuration."""
        settings = settings or get_settings()
        blob_store = BlobStoreClient(
            settings.account_name,
            settings.account_key,
            base_url=settings.blob_endpoint,
            api_version=settings.api_version,
            timeout=settings.request_timeout,
            http_client=http_client,
        )
        return cls(
            blob_store,
            library,
            annotation_store,
            setlist_store,
            legacy_container=settings.legacy_container,
            current_container=settings.current_container,
            on_upload_progress=on_upload_progress,
            on_download_progress=on_download_progress,
        )

    async def close(self) -> None:
        await self.blob_store.close()

    async def __aenter__(self) -> SyncOrchestrator:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # State and progress
    # ------------------------------------------------------------------

    @property
    def state(self) -> SyncState:
        """The most recently started operation still in flight, else ``IDLE``."""
        return self._in_flight[-1] if self._in_flight else SyncState.IDLE

    @contextlib.contextmanager
    def _operation(self, state: SyncState) -> Iterator[None]:
        self._in_flight.append(state)
        try:
            yield
        finally:
            self._in_flight.remove(state)

    @staticmethod
    def _report(callback: ProgressCallback | None, value: float) -> None:
        if callback is not None:
            callback(value)

    async def _download(self, container: str, name: str) -> bytes:
        self._report(self.on_download_progress, 0.0)
        data = await self.blob_store.get_blob(container, name)
        self._report(self.on_download_progress, 1.0)
        return data

    def _finish_import(self, setlist: Setlist) -> Setlist:
        self.setlist_store.save_setlist(setlist)
        self.library.reload()
        logger.info("✅ Imported setlist %r (%d song(s))", setlist.name, setlist.song_count)
        return setlist

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def ensure_current_container(self) -> None:
        await self.blob_store.ensure_container(self.current_container)

    def _songs_for_upload(self, setlist: Setlist, include_file_data: bool) -> list[Song]:
        songs = setlist.resolve_songs(self.library)
        if not include_file_data:
            return songs
        loaded: list[Song] = []
        for song in songs:
            if song.file_data is None:
                data = self.library.load_file_data(song)
                if data is None:
                    logger.warning("⚠️ %s: file missing, uploading without it", song.full_file_name)
                song = song.model_copy(update={"file_data": data})
            loaded.append(song)
        return loaded

    async def upload_setlist(self, setlist: Setlist, *, include_file_data: bool = True) -> str:
        """Export *setlist* to the current container and return the blob name used."""
        with self._operation(SyncState.UPLOADING):
            songs = self._songs_for_upload(setlist, include_file_data)
            annotations: dict[str, list[AnnotationProfile]] = {
                s.full_file_name: self.annotation_store.load_profiles(s.full_file_name) for s in songs
            }
            payload = encode_setlist(setlist, songs, annotations, include_file_data=include_file_data)
            name = blob_name_for(setlist)

            self._report(self.on_upload_progress, 0.0)
            await self.blob_store.put_blob(self.current_container, name, payload, JSON_CONTENT_TYPE)
            self._report(self.on_upload_progress, 1.0)
            logger.info("📤 Uploaded %r as %s (%d bytes)", setlist.name, name, len(payload))
            return name

    async def list_legacy_items(self) -> list[str]:
        with self._operation(SyncState.LISTING):
            return await self.blob_store.list_blobs(self.legacy_container)

    async def list_current_items(self) -> list[str]:
        with self._operation(SyncState.LISTING):
            return await self.blob_store.list_blobs(self.current_container)

    async def preview_legacy_item(self, name: str) -> LegacySetlist:
        """Download and decode a legacy blob without importing anything."""
        with self._operation(SyncState.PREVIEWING):
            data = await self._download(self.legacy_container, name)
            return decode_legacy_archive(data)

    async def import_legacy_item(self, legacy: LegacySetlist) -> Setlist:
        """Import an already previewed legacy setlist into local storage (no network)."""
        return self._finish_import(self.resolver.import_legacy(legacy))

    async def migrate_legacy_item(self, legacy: LegacySetlist) -> Setlist:
        """Import *legacy* locally, then upload it in the current format."""
        setlist = await self.import_legacy_item(legacy)
        await self.upload_setlist(setlist)
        return setlist

    async def preview_current_item(self, name: str) -> ExportedSetlist:
        """Download and decode a current export document without importing it."""
        with self._operation(SyncState.PREVIEWING):
            data = await self._download(self.current_container, name)
            return decode_export_document(data)

    async def download_and_import_current_item(self, name: str) -> Setlist:
        with self._operation(SyncState.DOWNLOADING):
            data = await self._download(self.current_container, name)
            exported = decode_export_document(data)
            return self._finish_import(self.resolver.import_exported(exported))

    async def delete_current_item(self, name: str) -> None:
        with self._operation(SyncState.DELETING):
            await self.blob_store.delete_blob(self.current_container, name)
