"""Setlists on disk, one ``<id>.json`` per setlist."""
from __future__ import annotations

import logging
import pathlib

from pydantic import ValidationError

from setlist_sync.models import Setlist

logger = logging.getLogger(__name__)


class FileSetlistStore:
    """Stores each setlist as camelCase JSON under *root*.

    The directory is created on first save; an absent directory simply
    holds no setlists.
    """

    def __init__(self, root: pathlib.Path) -> None:
        self.root = root

    def _path(self, setlist_id: str) -> pathlib.Path:
        return self.root / f"{setlist_id}.json"

    def save_setlist(self, setlist: Setlist) -> None:
        self.root.mkdir(parents=True, exist_ok=True)
        path = self._path(setlist.id)
        path.write_text(setlist.model_dump_json(by_alias=True, indent=2), encoding="utf-8")
        logger.debug("✅ Saved setlist %r to %s", setlist.name, path)

    def load_setlists(self) -> list[Setlist]:
        """All readable setlists, most recently modified first."""
        if not self.root.is_dir():
            return []
        setlists: list[Setlist] = []
        for path in sorted(self.root.glob("*.json")):
            try:
                setlists.append(Setlist.model_validate_json(path.read_bytes()))
            except (OSError, ValidationError) as exc:
                logger.warning("⚠️ Skipping unreadable setlist %s: %s", path.name, exc)
        setlists.sort(key=lambda s: s.date_modified, reverse=True)
        return setlists

    def find_by_name(self, name: str) -> Setlist | None:
        wanted = name.casefold()
        return next((s for s in self.load_setlists() if s.name.casefold() == wanted), None)

    def delete_setlist(self, setlist_id: str) -> None:
        self._path(setlist_id).unlink(missing_ok=True)
        logger.debug("Deleted setlist %s", setlist_id)
