"""Shared-key request signing for the blob storage REST API.

The service authenticates every request by recomputing an HMAC-SHA256 over a
canonical description of it and comparing the result with the
``Authorization`` header.  The canonical string has a fixed layout:

    VERB
    Content-Encoding
    Content-Language
    Content-Length        (empty when the body is empty)
    Content-MD5
    Content-Type
    Date                  (empty; x-ms-date is used instead)
    If-Modified-Since
    If-Match
    If-None-Match
    If-Unmodified-Since
    Range
    CanonicalizedHeaders  (x-ms-* headers, lowercase, sorted, name:value)
    CanonicalizedResource (/<account>/<container>[/<blob>] + query lines)

Any deviation in field order or in the placement of empty fields makes the
service answer 403, so this module is the single place the string is built.
"""
from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import logging
from collections.abc import Mapping
from email.utils import formatdate

logger = logging.getLogger(__name__)

_SCHEME = "SharedKey"
_SIGNED_HEADER_PREFIX = "x-ms-"


def rfc1123_now() -> str:
    """Current time in the ``Sun, 06 Nov 1994 08:49:37 GMT`` form used by x-ms-date."""
    return formatdate(usegmt=True)


def canonicalize_headers(headers: Mapping[str, str]) -> str:
    """Return the CanonicalizedHeaders block for *headers*.

    Only ``x-ms-*`` headers take part.  Names are lowercased and sorted; each
    line is ``name:value`` with surrounding whitespace trimmed from the value.
    """
    signed = sorted(
        (name.lower(), value.strip())
        for name, value in headers.items()
        if name.lower().startswith(_SIGNED_HEADER_PREFIX)
    )
    return "\n".join(f"{name}:{value}" for name, value in signed)


def canonicalize_resource(
    account: str,
    container: str,
    blob: str | None = None,
    query: Mapping[str, str] | None = None,
) -> str:
    """Return the CanonicalizedResource for a container or blob.

    *blob* must already be in its percent-encoded transport form: the service
    signs the path exactly as it appears on the request line.
    """
    resource = f"/{account}/{container}"
    if blob:
        resource = f"{resource}/{blob}"
    for key, value in sorted((k.lower(), v) for k, v in (query or {}).items()):
        resource = f"{resource}\n{key}:{value}"
    return resource


def string_to_sign(
    *,
    method: str,
    canonical_headers: str,
    canonical_resource: str,
    content_length: int = 0,
    content_type: str = "",
) -> str:
    """Assemble the 14-field canonical string (see module docstring)."""
    fields = [
        method.upper(),
        "",  # Content-Encoding
        "",  # Content-Language
        str(content_length) if content_length > 0 else "",
        "",  # Content-MD5
        content_type,
        "",  # Date
        "",  # If-Modified-Since
        "",  # If-Match
        "",  # If-None-Match
        "",  # If-Unmodified-Since
        "",  # Range
        canonical_headers,
        canonical_resource,
    ]
    return "\n".join(fields)


def sign_request(
    *,
    account: str,
    account_key: str,
    method: str,
    canonical_headers: str,
    canonical_resource: str,
    content_length: int = 0,
    content_type: str = "",
) -> str | None:
    """Return ``"SharedKey <account>:<signature>"`` for one request.

    Returns ``None`` when *account_key* is not valid base64; no other input
    can make signing fail.  The key is never logged.
    """
    try:
        key = base64.b64decode(account_key, validate=True)
    except (binascii.Error, ValueError):
        logger.error("❌ Account key for %s is not valid base64 - cannot sign requests", account)
        return None

    payload = string_to_sign(
        method=method,
        canonical_headers=canonical_headers,
        canonical_resource=canonical_resource,
        content_length=content_length,
        content_type=content_type,
    )
    mac = hmac.new(key, payload.encode("utf-8"), hashlib.sha256)
    signature = base64.b64encode(mac.digest()).decode("ascii")
    return f"{_SCHEME} {account}:{signature}"
