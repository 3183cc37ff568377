"""Pytest configuration and fixtures."""
from __future__ import annotations

import logging
from collections.abc import AsyncGenerator

import httpx
import pytest
import pytest_asyncio

from setlist_sync.services.blob_store import BlobStoreClient
from setlist_sync.services.sync import SyncOrchestrator

from tests.helpers import (
    ACCOUNT,
    ACCOUNT_KEY,
    BASE_URL,
    CURRENT_CONTAINER,
    LEGACY_CONTAINER,
    FakeBlobService,
    FakeSongLibrary,
    InMemoryAnnotationStore,
    InMemorySetlistStore,
)


def pytest_configure(config):
    """Ensure asyncio_mode is auto so async fixtures work when pyproject is not in cwd."""
    if hasattr(config.option, "asyncio_mode") and config.option.asyncio_mode is None:
        config.option.asyncio_mode = "auto"
    logging.getLogger("httpcore").setLevel(logging.CRITICAL)


@pytest.fixture
def blob_service() -> FakeBlobService:
    return FakeBlobService(containers=(LEGACY_CONTAINER, CURRENT_CONTAINER))


@pytest_asyncio.fixture
async def blob_store(blob_service: FakeBlobService) -> AsyncGenerator[BlobStoreClient, None]:
    client = httpx.AsyncClient(transport=httpx.MockTransport(blob_service.handler))
    store = BlobStoreClient(ACCOUNT, ACCOUNT_KEY, base_url=BASE_URL, http_client=client)
    yield store
    await store.close()


@pytest.fixture
def library() -> FakeSongLibrary:
    return FakeSongLibrary()


@pytest.fixture
def annotation_store() -> InMemoryAnnotationStore:
    return InMemoryAnnotationStore()


@pytest.fixture
def setlist_store() -> InMemorySetlistStore:
    return InMemorySetlistStore()


@pytest.fixture
def progress() -> dict[str, list[float]]:
    """Values reported to the orchestrator's upload and download progress callbacks."""
    return {"upload": [], "download": []}


@pytest.fixture
def orchestrator(
    blob_store: BlobStoreClient,
    library: FakeSongLibrary,
    annotation_store: InMemoryAnnotationStore,
    setlist_store: InMemorySetlistStore,
    progress: dict[str, list[float]],
) -> SyncOrchestrator:
    return SyncOrchestrator(
        blob_store,
        library,
        annotation_store,
        setlist_store,
        legacy_container=LEGACY_CONTAINER,
        current_container=CURRENT_CONTAINER,
        on_upload_progress=progress["upload"].append,
        on_download_progress=progress["download"].append,
    )
