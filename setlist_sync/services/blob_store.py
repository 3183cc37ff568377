"""Blob storage REST client with shared-key authentication.

A thin async wrapper over :class:`httpx.AsyncClient` that speaks just enough
of the blob service API for setlist sync: create a container, list a
container, and get/put/delete a single block blob.  There is no SDK in the
loop; every request is signed by :mod:`setlist_sync.services.shared_key`.

Usage::

    async with BlobStoreClient(account_name="acct", account_key=key) as store:
        names = await store.list_blobs("songlists-v2")
        data = await store.get_blob("songlists-v2", names[0])

Blob names are percent-encoded exactly once (:func:`encode_blob_name`) and
the encoded form is used both in the signed resource and on the request
line; signing the decoded name while sending the encoded one is rejected by
the service with 403.

No request is retried here.  Status codes outside each operation's success
set raise the matching :mod:`setlist_sync.errors` type; transport failures
raise :class:`~setlist_sync.errors.TransportFailure`.
"""
from __future__ import annotations

import logging
import types
from urllib.parse import quote
from xml.etree import ElementTree

import httpx

from setlist_sync.config import DEFAULT_API_VERSION
from setlist_sync.errors import (
    AuthenticationFailedError,
    ContainerError,
    DeleteError,
    DownloadError,
    ListError,
    TransportFailure,
    UploadError,
)
from setlist_sync.services.shared_key import (
    canonicalize_headers,
    canonicalize_resource,
    rfc1123_now,
    sign_request,
)

logger = logging.getLogger(__name__)

# Characters left unescaped in a URL path segment (RFC 3986 pchar minus '%').
_PATH_SAFE = "!$&'()*+,/:;=@"

_NO_CACHE_HEADERS = {"Cache-Control": "no-cache", "Pragma": "no-cache"}

BLOCK_BLOB = "BlockBlob"


def encode_blob_name(name: str) -> str:
    """Percent-encode *name* for use in both the request path and the signature."""
    return quote(name, safe=_PATH_SAFE)


def parse_blob_list(body: bytes) -> tuple[list[str], str | None]:
    """Extract blob names and the continuation marker from a list response.

    Only ``Name`` elements directly inside ``Blob`` are collected, in document
    order.  A truncated or malformed body yields the names parsed before the
    error rather than failing the whole listing.
    """
    parser = ElementTree.XMLPullParser(events=("start", "end"))
    try:
        parser.feed(body)
        parser.close()
    except ElementTree.ParseError as exc:
        logger.warning("⚠️ Blob list response is not well-formed XML: %s", exc)

    names: list[str] = []
    next_marker: str | None = None
    depth_in_blob = 0
    for event, elem in parser.read_events():
        tag = elem.tag.rsplit("}", 1)[-1]
        if tag == "Blob":
            depth_in_blob += 1 if event == "start" else -1
        elif event == "end" and tag == "Name" and depth_in_blob:
            name = (elem.text or "").strip()
            if name:
                names.append(name)
        elif event == "end" and tag == "NextMarker" and not depth_in_blob:
            next_marker = (elem.text or "").strip() or None
    return names, next_marker


class BlobStoreClient:
    """Async client for one storage account.

    Args:
        account_name: Storage account name; part of every signed resource.
        account_key: Base64 shared key.  An undecodable key surfaces as
                     :class:`AuthenticationFailedError` on the first request.
        base_url: Blob endpoint.  Defaults to
                  ``https://<account>.blob.core.windows.net``.
        api_version: Value sent (and signed) as ``x-ms-version``.
        timeout: Request timeout in seconds.
        http_client: Pre-built client (tests inject one with a mock transport).
    """

    def __init__(
        self,
        account_name: str,
        account_key: str | None,
        *,
        base_url: str | None = None,
        api_version: str = DEFAULT_API_VERSION,
        timeout: float = 30.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self.account_name = account_name
        self._account_key = account_key or ""
        self.base_url = (base_url or f"https://{account_name}.blob.core.windows.net").rstrip("/")
        self.api_version = api_version
        self.timeout = timeout
        self._client = http_client

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> BlobStoreClient:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: types.TracebackType | None,
    ) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _signed_headers(
        self,
        method: str,
        container: str,
        *,
        blob: str | None = None,
        query: dict[str, str] | None = None,
        content_length: int = 0,
        content_type: str = "",
        extra: dict[str, str] | None = None,
    ) -> dict[str, str]:
        """Build the full header set for one request, including Authorization."""
        ms_headers = {
            "x-ms-date": rfc1123_now(),
            "x-ms-version": self.api_version,
            **(extra or {}),
        }
        auth = sign_request(
            account=self.account_name,
            account_key=self._account_key,
            method=method,
            canonical_headers=canonicalize_headers(ms_headers),
            canonical_resource=canonicalize_resource(self.account_name, container, blob, query),
            content_length=content_length,
            content_type=content_type,
        )
        if auth is None:
            raise AuthenticationFailedError()

        headers = {**ms_headers, **_NO_CACHE_HEADERS, "Authorization": auth}
        if content_type:
            headers["Content-Type"] = content_type
        if content_length:
            headers["Content-Length"] = str(content_length)
        return headers

    def _url(self, container: str, blob: str | None = None) -> str:
        if blob:
            return f"{self.base_url}/{container}/{blob}"
        return f"{self.base_url}/{container}"

    async def _send(
        self,
        method: str,
        url: str,
        headers: dict[str, str],
        *,
        params: dict[str, str] | None = None,
        content: bytes | None = None,
    ) -> httpx.Response:
        try:
            return await self.client.request(
                method, url, headers=headers, params=params, content=content
            )
        except httpx.TransportError as exc:
            logger.error("❌ %s %s failed before a response arrived: %s", method, url, exc)
            raise TransportFailure(f"{method} {url}: {exc}") from exc

    # ------------------------------------------------------------------
    # Container operations
    # ------------------------------------------------------------------

    async def ensure_container(self, name: str) -> None:
        """Create container *name*; an existing container counts as success."""
        query = {"restype": "container"}
        headers = self._signed_headers("PUT", name, query=query)
        response = await self._send("PUT", self._url(name), headers, params=query)
        if response.status_code not in (201, 409):
            logger.error("❌ Container %s: HTTP %d", name, response.status_code)
            raise ContainerError(response.status_code)
        logger.info("✅ Container %s ready (HTTP %d)", name, response.status_code)

    async def list_blobs(self, container: str) -> list[str]:
        """Return every blob name in *container*, in server order.

        Follows ``NextMarker`` continuation so containers larger than one
        listing page are returned whole.
        """
        names: list[str] = []
        marker: str | None = None
        while True:
            query = {"restype": "container", "comp": "list"}
            if marker:
                query["marker"] = marker
            headers = self._signed_headers("GET", container, query=query)
            response = await self._send("GET", self._url(container), headers, params=query)
            if response.status_code != 200:
                logger.error("❌ List %s: HTTP %d", container, response.status_code)
                raise ListError(response.status_code)
            page, marker = parse_blob_list(response.content)
            names.extend(page)
            if not marker:
                break
        logger.info("✅ Listed %d blob(s) in %s", len(names), container)
        return names

    # ------------------------------------------------------------------
    # Blob operations
    # ------------------------------------------------------------------

    async def get_blob(self, container: str, name: str) -> bytes:
        encoded = encode_blob_name(name)
        headers = self._signed_headers("GET", container, blob=encoded)
        logger.info("📥 Downloading %s/%s", container, name)
        response = await self._send("GET", self._url(container, encoded), headers)
        if response.status_code != 200:
            body = response.text or None
            logger.error("❌ Download %s: HTTP %d - %s", name, response.status_code, body)
            raise DownloadError(response.status_code, body)
        logger.debug("📥 %s: %d bytes", name, len(response.content))
        return response.content

    async def put_blob(
        self,
        container: str,
        name: str,
        data: bytes,
        content_type: str = "application/octet-stream",
    ) -> None:
        encoded = encode_blob_name(name)
        headers = self._signed_headers(
            "PUT",
            container,
            blob=encoded,
            content_length=len(data),
            content_type=content_type,
            extra={"x-ms-blob-type": BLOCK_BLOB},
        )
        logger.info("📤 Uploading %s/%s (%d bytes)", container, name, len(data))
        response = await self._send("PUT", self._url(container, encoded), headers, content=data)
        if response.status_code != 201:
            body = response.text or None
            logger.error("❌ Upload %s: HTTP %d - %s", name, response.status_code, body)
            raise UploadError(response.status_code, body)
        logger.info("✅ Uploaded %s/%s", container, name)

    async def delete_blob(self, container: str, name: str) -> None:
        encoded = encode_blob_name(name)
        headers = self._signed_headers("DELETE", container, blob=encoded)
        response = await self._send("DELETE", self._url(container, encoded), headers)
        if response.status_code != 202:
            logger.error("❌ Delete %s: HTTP %d", name, response.status_code)
            raise DeleteError(response.status_code)
        logger.info("✅ Deleted %s/%s", container, name)
