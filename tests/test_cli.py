"""Tests for the ``setlist-sync`` CLI.

All tests use ``typer.testing.CliRunner`` against the full app.  Settings and
the blob store client factory are monkeypatched so every command talks to
FakeBlobService through ``httpx.MockTransport``.
"""
from __future__ import annotations

import json

import httpx
import pytest
from typer.testing import CliRunner

import setlist_sync.cli.app as cli_app
from setlist_sync.cli.app import _blob_name, _format_size, cli
from setlist_sync.config import Settings
from setlist_sync.errors import ExitCode
from setlist_sync.services.blob_store import BlobStoreClient

from tests.helpers import (
    ACCOUNT,
    ACCOUNT_KEY,
    BASE_URL,
    CURRENT_CONTAINER,
    LEGACY_CONTAINER,
    FakeBlobService,
    build_legacy_archive,
)

runner = CliRunner()


# ---------------------------------------------------------------------------
# Helpers / fixtures
# ---------------------------------------------------------------------------


def _settings(**overrides: object) -> Settings:
    values: dict[str, object] = {
        "account_name": ACCOUNT,
        "account_key": ACCOUNT_KEY,
        "base_url": BASE_URL,
        "legacy_container": LEGACY_CONTAINER,
        "current_container": CURRENT_CONTAINER,
    }
    values.update(overrides)
    return Settings(**values)


@pytest.fixture
def service(monkeypatch: pytest.MonkeyPatch) -> FakeBlobService:
    blob_service = FakeBlobService(containers=(LEGACY_CONTAINER, CURRENT_CONTAINER))

    def _open(settings: Settings) -> BlobStoreClient:
        client = httpx.AsyncClient(transport=httpx.MockTransport(blob_service.handler))
        return BlobStoreClient(
            settings.account_name,
            settings.account_key,
            base_url=settings.blob_endpoint,
            http_client=client,
        )

    monkeypatch.setattr(cli_app, "get_settings", _settings)
    monkeypatch.setattr(cli_app, "_open_blob_store", _open)
    return blob_service


def _export(name: str) -> bytes:
    return json.dumps({
        "version": 4,
        "name": name,
        "venue": "The Pub",
        "songs": [
            {
                "title": "Opener",
                "fileName": "Opener",
                "fileExtension": "pdf",
                "midiProfiles": [{"instrumentType": "keyboard", "channel": 0, "programNumber": 5}],
                "fileData": "JVBERg==",
            }
        ],
    }).encode()


# ---------------------------------------------------------------------------
# Pure helpers
# ---------------------------------------------------------------------------


def test_blob_name_appends_suffix_once() -> None:
    assert _blob_name("Gig") == "Gig.json"
    assert _blob_name("Gig.json") == "Gig.json"


def test_format_size() -> None:
    assert _format_size(12) == "12 B"
    assert _format_size(2048) == "2.0 KB"
    assert _format_size(3 * 1024 * 1024) == "3.0 MB"


# ---------------------------------------------------------------------------
# Listing
# ---------------------------------------------------------------------------


def test_list_empty(service: FakeBlobService) -> None:
    result = runner.invoke(cli, ["list"])
    assert result.exit_code == 0
    assert "No setlists found." in result.output


def test_list_shows_display_names(service: FakeBlobService) -> None:
    service.containers[CURRENT_CONTAINER].update({"Gig 1.json": b"{}", "Wedding.json": b"{}"})
    result = runner.invoke(cli, ["list"])
    assert result.exit_code == 0
    assert result.output.splitlines() == ["Gig 1", "Wedding"]


def test_list_legacy(service: FakeBlobService) -> None:
    service.containers[LEGACY_CONTAINER]["Friday"] = b"x"
    result = runner.invoke(cli, ["list-legacy"])
    assert result.exit_code == 0
    assert result.output.strip() == "Friday"


# ---------------------------------------------------------------------------
# Previews
# ---------------------------------------------------------------------------


def test_preview_legacy_renders_songs_and_midi(service: FakeBlobService) -> None:
    service.containers[LEGACY_CONTAINER]["Friday"] = build_legacy_archive(
        "Friday Gig", 7,
        [
            {"name": "Intro", "path": "Intro.pdf", "file_data": b"%PDF", "midi": "3-42"},
            {"name": "Ballad", "path": "Ballad.pdf", "midi": "junk"},
        ],
        compress=True,
    )
    result = runner.invoke(cli, ["preview-legacy", "Friday"])
    assert result.exit_code == 0, result.output
    assert "Friday Gig (ID: 7)" in result.output
    assert "Ch4 Prog:42" in result.output
    assert "'junk' (unparsed)" in result.output
    assert "4 B" in result.output


def test_preview_legacy_corrupt_blob_is_user_error(service: FakeBlobService) -> None:
    service.containers[LEGACY_CONTAINER]["Broken"] = b"nope"
    result = runner.invoke(cli, ["preview-legacy", "Broken"])
    assert result.exit_code == int(ExitCode.USER_ERROR)
    assert "❌ Invalid: outer archive" in result.output


def test_show_renders_current_document(service: FakeBlobService) -> None:
    service.containers[CURRENT_CONTAINER]["Gig 1.json"] = _export("Gig 1")
    result = runner.invoke(cli, ["show", "Gig 1"])
    assert result.exit_code == 0, result.output
    assert "Gig 1 (v4)" in result.output
    assert "The Pub" in result.output
    assert "Keyboard: Ch1 Prog:5" in result.output


def test_show_missing_blob_is_user_error(service: FakeBlobService) -> None:
    result = runner.invoke(cli, ["show", "Nope"])
    assert result.exit_code == int(ExitCode.USER_ERROR)
    assert "Download failed (404)" in result.output


# ---------------------------------------------------------------------------
# Mutations
# ---------------------------------------------------------------------------


def test_delete_with_yes(service: FakeBlobService) -> None:
    service.containers[CURRENT_CONTAINER]["Old.json"] = b"{}"
    result = runner.invoke(cli, ["delete", "Old", "--yes"])
    assert result.exit_code == 0
    assert "✅ Deleted Old" in result.output
    assert "Old.json" not in service.containers[CURRENT_CONTAINER]


def test_delete_declined_keeps_blob(service: FakeBlobService) -> None:
    service.containers[CURRENT_CONTAINER]["Old.json"] = b"{}"
    result = runner.invoke(cli, ["delete", "Old.json"], input="n\n")
    assert result.exit_code != 0
    assert "Old.json" in service.containers[CURRENT_CONTAINER]
    assert service.requests == []


def test_create_container(service: FakeBlobService) -> None:
    del service.containers[CURRENT_CONTAINER]
    result = runner.invoke(cli, ["create-container"])
    assert result.exit_code == 0
    assert f"Container {CURRENT_CONTAINER} ready" in result.output
    assert CURRENT_CONTAINER in service.containers


# ---------------------------------------------------------------------------
# Exit codes
# ---------------------------------------------------------------------------


def test_missing_account_is_config_error(service: FakeBlobService, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(cli_app, "get_settings", lambda: _settings(account_name=""))
    result = runner.invoke(cli, ["list"])
    assert result.exit_code == int(ExitCode.CONFIG_ERROR)
    assert "No storage account configured" in result.output


def test_undecodable_key_is_config_error(service: FakeBlobService, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(cli_app, "get_settings", lambda: _settings(account_key="%%%"))
    result = runner.invoke(cli, ["list"])
    assert result.exit_code == int(ExitCode.CONFIG_ERROR)
    assert service.requests == []


def test_server_error_is_internal_error(service: FakeBlobService) -> None:
    service.force_status["GET"] = 500
    result = runner.invoke(cli, ["list"])
    assert result.exit_code == int(ExitCode.INTERNAL_ERROR)
    assert "List failed (500)" in result.output
