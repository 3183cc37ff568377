"""Services for setlist sync."""
from __future__ import annotations

from setlist_sync.services.blob_store import BlobStoreClient
from setlist_sync.services.import_resolver import ImportResolver, IncomingSong
from setlist_sync.services.legacy_archive import decode_legacy_archive
from setlist_sync.services.schema_codec import decode_export_document, encode_setlist
from setlist_sync.services.sync import SyncOrchestrator, SyncState

__all__ = [
    "BlobStoreClient",
    "ImportResolver",
    "IncomingSong",
    "SyncOrchestrator",
    "SyncState",
    "decode_export_document",
    "decode_legacy_archive",
    "encode_setlist",
]
