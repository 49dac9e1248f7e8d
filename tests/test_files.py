"""Tests for rename, delete, download and the presign command."""

from __future__ import annotations

from pathlib import Path

import pytest

from sdrive.api.exceptions import FileOperationError, SessionExpiredError
from sdrive.listing.events import EventKind, ListingEvent
from sdrive.services.drive import Drive
from sdrive.tiers.manager import DownloadKind

from conftest import STORE_URL, FakeBackend, FakeObjectStore, file_payload

DOWNLOAD_PATH = "/api/files/{}/download_presigned_url/"


@pytest.fixture
async def listed(drive: Drive, backend: FakeBackend) -> Drive:
    backend.listing(
        [
            file_payload(1, "draft.txt"),
            file_payload(2, "old.zip", tier="glacier"),
        ]
    )
    await drive.cache.load_page(1)
    return drive


class TestRename:
    """Renames re-read the record from the backend."""

    async def test_rename_refetches_and_publishes(self, listed: Drive, backend: FakeBackend):
        events: list[ListingEvent] = []
        listed.events.subscribe(events.append, {EventKind.RECORD_RENAMED})
        backend.on("POST", "/api/files/rename/", json={"message": "File renamed"})
        backend.on(
            "GET",
            "/api/files/1/details/",
            json=file_payload(1, "final.txt", s3_key="user-1/final.txt"),
        )

        record = await listed.files.rename("1", "  final.txt ")

        assert backend.json_bodies("POST", "/api/files/rename/") == [
            {"s3_key": "user-1/draft.txt", "new_filename": "final.txt"}
        ]
        assert record.display_name == "final.txt"
        assert record.object_key == "user-1/final.txt"
        assert listed.cache.get("1").object_key == "user-1/final.txt"
        assert events[0].detail == {"old_name": "draft.txt", "new_name": "final.txt"}

    async def test_refetch_failure_patches_name(self, listed: Drive, backend: FakeBackend):
        backend.on("POST", "/api/files/rename/", json={"message": "File renamed"})
        record = await listed.files.rename("1", "final.txt")
        assert record.display_name == "final.txt"
        assert record.object_key == "user-1/draft.txt"

    async def test_empty_name_rejected(self, listed: Drive, backend: FakeBackend):
        with pytest.raises(ValueError):
            await listed.files.rename("1", "   ")
        assert backend.calls("POST", "/api/files/rename/") == []

    async def test_refused_rename_keeps_record(self, listed: Drive, backend: FakeBackend):
        backend.on("POST", "/api/files/rename/", status=400, json={"error": "Name taken"})
        with pytest.raises(FileOperationError, match="Name taken"):
            await listed.files.rename("1", "final.txt")
        assert listed.cache.get("1").display_name == "draft.txt"


class TestDelete:
    async def test_delete_removes_record(self, listed: Drive, backend: FakeBackend):
        backend.on("DELETE", "/api/files/", json={"message": "deleted"})
        await listed.files.delete("1")
        assert listed.cache.get("1") is None
        assert backend.json_bodies("DELETE", "/api/files/") == [{"s3_key": "user-1/draft.txt"}]

    async def test_failed_delete_keeps_record(self, listed: Drive, backend: FakeBackend):
        backend.on("DELETE", "/api/files/", status=404)
        with pytest.raises(FileOperationError, match="File not found"):
            await listed.files.delete("1")
        assert listed.cache.get("1") is not None


class TestDownload:
    """Presigned GET of standard files; notices for archived ones."""

    async def test_download_to_directory(
        self, listed: Drive, backend: FakeBackend, object_store: FakeObjectStore, tmp_path: Path
    ):
        object_store.objects["draft.txt"] = b"draft body"
        backend.on(
            "GET",
            DOWNLOAD_PATH.format(1),
            json={"presigned_url": f"{STORE_URL}/user-1/draft.txt?sig=1", "file_name": "draft.txt"},
        )

        result = await listed.files.download("1", tmp_path)

        assert result.path == tmp_path / "draft.txt"
        assert result.bytes_written == 10
        assert (tmp_path / "draft.txt").read_bytes() == b"draft body"
        assert not (tmp_path / "draft.txt.part").exists()

    async def test_existing_target_needs_overwrite(
        self, listed: Drive, backend: FakeBackend, object_store: FakeObjectStore, tmp_path: Path
    ):
        object_store.objects["draft.txt"] = b"new"
        (tmp_path / "draft.txt").write_bytes(b"old")
        backend.on(
            "GET",
            DOWNLOAD_PATH.format(1),
            json={"presigned_url": f"{STORE_URL}/user-1/draft.txt", "file_name": "draft.txt"},
        )

        with pytest.raises(FileExistsError):
            await listed.files.download("1", tmp_path)
        await listed.files.download("1", tmp_path, overwrite=True)

        assert (tmp_path / "draft.txt").read_bytes() == b"new"

    async def test_archived_file_returns_notice(
        self, listed: Drive, backend: FakeBackend, object_store: FakeObjectStore, tmp_path: Path
    ):
        backend.on("GET", DOWNLOAD_PATH.format(2), status=202)

        result = await listed.files.download("2", tmp_path)

        assert result.path is None
        assert result.link.kind is DownloadKind.NEEDS_RESTORE
        assert list(tmp_path.iterdir()) == []

    async def test_failed_get_leaves_nothing(
        self, listed: Drive, backend: FakeBackend, tmp_path: Path
    ):
        backend.on(
            "GET",
            DOWNLOAD_PATH.format(1),
            json={"presigned_url": f"{STORE_URL}/user-1/missing.txt", "file_name": "draft.txt"},
        )
        with pytest.raises(FileOperationError, match="404"):
            await listed.files.download("1", tmp_path)
        assert list(tmp_path.iterdir()) == []


class TestAccount:
    async def test_presign_command(self, drive: Drive, backend: FakeBackend, tmp_path: Path):
        backend.on("GET", "/api/files/presign/", json={"presigned_url": f"{STORE_URL}/u/a.bin?sig=1"})
        command = await drive.files.presign_command(tmp_path / "a.bin")
        assert command == f'curl -X PUT -T "{tmp_path / "a.bin"}" "{STORE_URL}/u/a.bin?sig=1"'

    async def test_usage(self, drive: Drive, backend: FakeBackend):
        backend.on("GET", "/api/account/check_account_usage/", json={"used": 10, "limit": 100})
        assert await drive.files.account_usage() == {"used": 10, "limit": 100}


class TestDriveSession:
    async def test_expiry_clears_listing(self, listed: Drive, backend: FakeBackend):
        backend.on("GET", DOWNLOAD_PATH.format(1), status=401)
        with pytest.raises(SessionExpiredError):
            await listed.tiers.request_download("1")
        assert not listed.cache.loaded
        assert not listed.session.is_authenticated

    async def test_login_stores_token(self, drive: Drive, backend: FakeBackend):
        drive.session.logout()
        backend.on("POST", "/api/auth/login/", json={"token": "fresh"})
        await drive.login("a@b.c", "pw")
        assert drive.session.token == "fresh"
