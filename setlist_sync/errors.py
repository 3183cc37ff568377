"""Exit-code contract and exception types for the sync engine.

Every failure surfaced by the blob store client, the archive decoders and the
orchestrator is a :class:`SetlistSyncError` subclass.  Transport failures
(timeouts, refused connections) are wrapped in :class:`TransportFailure` so
callers can tell them apart from a well-formed rejection by the service.
"""
from __future__ import annotations

import enum


class ExitCode(enum.IntEnum):
    """Standardised CLI exit codes.

    0 - success
    1 - user error (bad arguments, unknown blob)
    2 - configuration invalid (missing or undecodable account key)
    3 - server / internal error
    """

    SUCCESS = 0
    USER_ERROR = 1
    CONFIG_ERROR = 2
    INTERNAL_ERROR = 3


class ArchiveStage(str, enum.Enum):
    """Where in a payload a format error was detected."""

    OUTER = "outer archive"
    INNER = "inner archive"
    JSON = "json"


class SetlistSyncError(Exception):
    """Base exception for sync engine errors."""

    def __init__(self, message: str, exit_code: ExitCode = ExitCode.INTERNAL_ERROR) -> None:
        super().__init__(message)
        self.exit_code = exit_code


class AuthenticationFailedError(SetlistSyncError):
    """Raised when the account key cannot be base64-decoded, so no request can be signed."""

    def __init__(self, message: str = "Auth failed: the account key is not valid base64.") -> None:
        super().__init__(message, exit_code=ExitCode.CONFIG_ERROR)


class _StatusError(SetlistSyncError):
    """A request the service answered with an unexpected HTTP status."""

    operation = "Request"

    def __init__(self, status: int, body: str | None = None) -> None:
        message = f"{self.operation} failed ({status})"
        if body:
            message = f"{message}: {body}"
        exit_code = ExitCode.USER_ERROR if status == 404 else ExitCode.INTERNAL_ERROR
        super().__init__(message, exit_code=exit_code)
        self.status = status
        self.body = body


class ContainerError(_StatusError):
    operation = "Container"


class ListError(_StatusError):
    operation = "List"


class DownloadError(_StatusError):
    operation = "Download"


class UploadError(_StatusError):
    operation = "Upload"


class DeleteError(_StatusError):
    operation = "Delete"


class InvalidFormatError(SetlistSyncError):
    """Raised when a blob is not a readable legacy archive or export document."""

    def __init__(self, stage: ArchiveStage, detail: str | None = None) -> None:
        message = f"Invalid: {stage.value}"
        if detail:
            message = f"{message} ({detail})"
        super().__init__(message, exit_code=ExitCode.USER_ERROR)
        self.stage = stage


class DecompressionFailedError(SetlistSyncError):
    """Raised when a gzip-framed legacy blob cannot be decompressed."""

    def __init__(self, message: str = "Decompress failed") -> None:
        super().__init__(message, exit_code=ExitCode.USER_ERROR)


class TransportFailure(SetlistSyncError):
    """Raised when the request never produced an HTTP response."""

    def __init__(self, message: str) -> None:
        super().__init__(message, exit_code=ExitCode.INTERNAL_ERROR)
