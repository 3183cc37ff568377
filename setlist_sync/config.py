"""
Setlist Sync Configuration

Environment-based configuration for the cloud sync engine.
"""
import logging
from functools import lru_cache
from typing import Optional

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


# Protocol version sent as x-ms-version on every request. It is part of the
# signed canonical headers, so the service rejects a mismatch.
DEFAULT_API_VERSION: str = "2021-06-08"


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    debug: bool = False

    # Object storage account (shared-key auth)
    # The key is the base64 account key from the storage portal; never logged.
    account_name: str = ""
    account_key: Optional[str] = None
    endpoint_suffix: str = "blob.core.windows.net"
    # Full endpoint override, e.g. http://127.0.0.1:10000/devstoreaccount1 for the emulator
    base_url: Optional[str] = None
    api_version: str = DEFAULT_API_VERSION
    request_timeout: float = 30.0  # seconds

    # Containers
    legacy_container: str = "playlists"      # read-only blobs written by the predecessor app
    current_container: str = "songlists-v2"  # JSON exports, read/write

    @model_validator(mode="after")
    def _warn_missing_account_key(self) -> "Settings":
        """Warn when an account is configured without a key."""
        if self.account_name and not self.account_key:
            logging.getLogger(__name__).warning(
                "⚠️ SETLIST_SYNC_ACCOUNT_NAME is set but SETLIST_SYNC_ACCOUNT_KEY is not. "
                "Every storage request will fail authentication."
            )
        return self

    @property
    def blob_endpoint(self) -> str:
        """Base URL of the blob service for the configured account."""
        if self.base_url:
            return self.base_url.rstrip("/")
        return f"https://{self.account_name}.{self.endpoint_suffix}"

    model_config = SettingsConfigDict(
        env_prefix="SETLIST_SYNC_",
        env_file=".env",
        env_file_encoding="utf-8",
    )


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()

