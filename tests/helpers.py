"""Test doubles shared by the test modules.

Provides:
- ``FakeBlobService``: an in-process blob service behind ``httpx.MockTransport``
  that verifies the shared-key signature of every request.
- In-memory implementations of the library, annotation and setlist ports.
- ``build_legacy_archive``: writes double-nested keyed archives the way the
  predecessor app did.
"""
from __future__ import annotations

import gzip
import plistlib
import posixpath
from collections.abc import Iterable
from typing import Any
from urllib.parse import unquote
from xml.sax.saxutils import escape

import httpx

from setlist_sync.models import AnnotationProfile, Setlist, Song
from setlist_sync.services.shared_key import canonicalize_headers, canonicalize_resource, sign_request

ACCOUNT = "devaccount"
# base64("secret-key-for-tests-only-012345")
ACCOUNT_KEY = "c2VjcmV0LWtleS1mb3ItdGVzdHMtb25seS0wMTIzNDU="
BASE_URL = "https://devaccount.blob.test"
LEGACY_CONTAINER = "playlists"
CURRENT_CONTAINER = "songlists-v2"


# ---------------------------------------------------------------------------
# Fake blob service
# ---------------------------------------------------------------------------


class FakeBlobService:
    """Blob storage double.

    Blobs are kept per container under their decoded names.  Requests with a
    wrong signature get 403, like the real service.  ``force_status`` maps an
    HTTP method to a status returned instead of performing the operation.
    """

    def __init__(self, containers: Iterable[str] = (), page_size: int = 5000) -> None:
        self.containers: dict[str, dict[str, bytes]] = {c: {} for c in containers}
        self.page_size = page_size
        self.force_status: dict[str, int] = {}
        self.requests: list[httpx.Request] = []

    def _signature_ok(self, request: httpx.Request, container: str, blob: str | None) -> bool:
        expected = sign_request(
            account=ACCOUNT,
            account_key=ACCOUNT_KEY,
            method=request.method,
            canonical_headers=canonicalize_headers(dict(request.headers)),
            canonical_resource=canonicalize_resource(ACCOUNT, container, blob, dict(request.url.params)),
            content_length=int(request.headers.get("content-length", "0") or 0),
            content_type=request.headers.get("content-type", ""),
        )
        return request.headers.get("authorization") == expected

    def _list_body(self, container: str, marker: str | None) -> bytes:
        names = list(self.containers[container])
        start = int(marker) if marker else 0
        page = names[start : start + self.page_size]
        next_marker = str(start + self.page_size) if start + self.page_size < len(names) else ""
        blobs = "".join(
            f"<Blob><Name>{escape(n)}</Name><Properties><Content-Length>"
            f"{len(self.containers[container][n])}</Content-Length></Properties></Blob>"
            for n in page
        )
        return (
            '<?xml version="1.0" encoding="utf-8"?>'
            f'<EnumerationResults ServiceEndpoint="{BASE_URL}/" ContainerName="{container}">'
            f"<Blobs>{blobs}</Blobs><NextMarker>{next_marker}</NextMarker></EnumerationResults>"
        ).encode("utf-8")

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        raw_path = request.url.raw_path.decode("ascii").split("?", 1)[0]
        container, _, encoded_blob = raw_path.lstrip("/").partition("/")
        blob = encoded_blob or None

        if not self._signature_ok(request, container, blob):
            return httpx.Response(403, text="AuthenticationFailed")
        if request.method in self.force_status:
            return httpx.Response(self.force_status[request.method], text="ForcedFailure")

        params = request.url.params
        if blob is None:
            if request.method == "PUT" and params.get("restype") == "container":
                if container in self.containers:
                    return httpx.Response(409, text="ContainerAlreadyExists")
                self.containers[container] = {}
                return httpx.Response(201)
            if request.method == "GET" and params.get("comp") == "list":
                if container not in self.containers:
                    return httpx.Response(404, text="ContainerNotFound")
                return httpx.Response(200, content=self._list_body(container, params.get("marker")))
            return httpx.Response(400, text="UnsupportedOperation")

        if container not in self.containers:
            return httpx.Response(404, text="ContainerNotFound")
        blobs = self.containers[container]
        name = unquote(blob)
        if request.method == "PUT":
            if request.headers.get("x-ms-blob-type") != "BlockBlob":
                return httpx.Response(400, text="MissingRequiredHeader")
            blobs[name] = request.content
            return httpx.Response(201)
        if request.method == "GET":
            if name not in blobs:
                return httpx.Response(404, text="BlobNotFound")
            return httpx.Response(200, content=blobs[name])
        if request.method == "DELETE":
            if blobs.pop(name, None) is None:
                return httpx.Response(404, text="BlobNotFound")
            return httpx.Response(202)
        return httpx.Response(405)


# ---------------------------------------------------------------------------
# In-memory ports
# ---------------------------------------------------------------------------


class FakeSongLibrary:
    """Song library double.  Imported Word documents come back as PDFs."""

    def __init__(self, songs: Iterable[Song] = (), files: dict[str, bytes] | None = None) -> None:
        self.songs: dict[str, Song] = {s.id: s for s in songs}
        self.files: dict[str, bytes] = dict(files or {})
        self.imported: list[str] = []
        self.saved: list[str] = []
        self.reload_count = 0

    def resolve(self, song_id: str) -> Song | None:
        return self.songs.get(song_id)

    def resolve_by_file_name(self, full_file_name: str) -> Song | None:
        return next((s for s in self.songs.values() if s.full_file_name == full_file_name), None)

    def list_songs(self) -> list[Song]:
        return list(self.songs.values())

    def load_file_data(self, song: Song) -> bytes | None:
        return self.files.get(song.full_file_name)

    def import_embedded_bytes(self, title: str, file_name: str, data: bytes) -> Song:
        base, ext = posixpath.splitext(file_name)
        ext = ext.lstrip(".").lower()
        if ext in ("doc", "docx"):
            ext = "pdf"
        song = Song(title=title or base.replace("_", " "), file_name=base, file_extension=ext)
        self.songs[song.id] = song
        self.files[song.full_file_name] = data
        self.imported.append(file_name)
        return song

    def save_song(self, song: Song) -> None:
        self.songs[song.id] = song
        self.saved.append(song.id)

    def reload(self) -> None:
        self.reload_count += 1


class InMemoryAnnotationStore:
    def __init__(self, profiles: dict[str, list[AnnotationProfile]] | None = None) -> None:
        self.profiles: dict[str, list[AnnotationProfile]] = dict(profiles or {})
        self.saves: list[str] = []

    def load_profiles(self, song_key: str) -> list[AnnotationProfile]:
        return list(self.profiles.get(song_key, []))

    def save_profiles(self, song_key: str, profiles: list[AnnotationProfile]) -> None:
        self.profiles[song_key] = list(profiles)
        self.saves.append(song_key)


class InMemorySetlistStore:
    def __init__(self) -> None:
        self.saved: list[Setlist] = []

    def save_setlist(self, setlist: Setlist) -> None:
        self.saved.append(setlist)


# ---------------------------------------------------------------------------
# Legacy archive builder
# ---------------------------------------------------------------------------


def build_legacy_archive(
    name: Any,
    legacy_id: Any,
    songs: list[dict[str, Any]],
    *,
    compress: bool = False,
) -> bytes:
    """Write a legacy setlist blob.

    Each song dict may carry ``name``, ``path``, ``file_data`` and ``midi``;
    a value of ``None`` is written as a reference to the ``$null`` sentinel.
    Every string and data value goes through a back-reference.
    """
    objects: list[Any] = ["$null"]

    def ref(value: Any) -> plistlib.UID:
        if value is None:
            return plistlib.UID(0)
        objects.append(value)
        return plistlib.UID(len(objects) - 1)

    root: dict[str, Any] = {}
    objects.append(root)  # index 1
    root["songlistName"] = ref(name)
    root["songlistID"] = legacy_id

    song_refs = []
    for song in songs:
        entry: dict[str, Any] = {
            "songName": ref(song.get("name")),
            "songPath": ref(song.get("path")),
        }
        if "file_data" in song:
            entry["actualFile"] = ref(song["file_data"])
        if "midi" in song:
            entry["midiCommands"] = ref(song["midi"])
        song_refs.append(ref(entry))
    root["songs"] = ref({"NS.objects": song_refs})

    inner = plistlib.dumps(
        {"$archiver": "NSKeyedArchiver", "$version": 100000, "$top": {"root": plistlib.UID(1)}, "$objects": objects},
        fmt=plistlib.FMT_BINARY,
    )
    outer = plistlib.dumps(
        {
            "$archiver": "NSKeyedArchiver",
            "$version": 100000,
            "$top": {"root": plistlib.UID(3)},
            "$objects": ["$null", {"$classname": "NSMutableData"}, "padding", {"NS.data": inner, "$class": plistlib.UID(1)}],
        },
        fmt=plistlib.FMT_BINARY,
    )
    return gzip.compress(outer) if compress else outer


