"""File-backed implementations of the setlist and annotation store ports."""
from __future__ import annotations

from setlist_sync.stores.annotation_store import FileAnnotationStore
from setlist_sync.stores.setlist_store import FileSetlistStore

__all__ = ["FileAnnotationStore", "FileSetlistStore"]
