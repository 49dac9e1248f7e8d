"""Tests for data models, wire schemas and configuration loading."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from sdrive.api.schemas import FilePayload, ListingResponse, TicketResponse, error_message
from sdrive.config import load_client_config, lookup_auth_token
from sdrive.models import (
    BatchUploadResult,
    PendingUpload,
    StorageTier,
    UploadOutcome,
    UploadResultEntry,
)
from sdrive.session import SessionStore

from conftest import file_payload


class TestStorageTier:
    """Backend tier names map onto the three client tiers."""

    @pytest.mark.parametrize(
        "wire, tier",
        [
            ("standard", StorageTier.STANDARD),
            ("glacier", StorageTier.ARCHIVE),
            ("unarchiving", StorageTier.RESTORING),
            ("restored", StorageTier.STANDARD),
            ("GLACIER", StorageTier.ARCHIVE),
        ],
    )
    def test_from_wire(self, wire, tier):
        """Known names (any case) parse to their tier."""
        assert StorageTier.from_wire(wire) is tier

    def test_unknown_and_missing_default_to_standard(self):
        """Unknown or absent tiers are treated as standard."""
        assert StorageTier.from_wire(None) is StorageTier.STANDARD
        assert StorageTier.from_wire("deep_freeze") is StorageTier.STANDARD

    def test_to_wire_uses_backend_names(self):
        """Tier-change requests send the backend's names."""
        assert StorageTier.ARCHIVE.to_wire() == "glacier"
        assert StorageTier.STANDARD.to_wire() == "standard"


class TestPendingUpload:
    """Per-file progress and single-assignment outcome."""

    def test_percent_complete(self):
        upload = PendingUpload("a.txt", 200, "text/plain", bytes_transferred=50)
        assert upload.percent_complete == 25.0

    def test_percent_capped_at_100(self):
        upload = PendingUpload("a.txt", 10, "text/plain", bytes_transferred=20)
        assert upload.percent_complete == 100.0

    def test_zero_size_is_zero_percent(self):
        assert PendingUpload("empty", 0, "text/plain").percent_complete == 0.0

    def test_outcome_set_once(self):
        """A second outcome assignment is a programming error."""
        upload = PendingUpload("a.txt", 10, "text/plain")
        upload.mark_error("quota exceeded")
        assert upload.outcome is UploadOutcome.ERROR
        assert upload.error_message == "quota exceeded"
        with pytest.raises(RuntimeError):
            upload.mark_success()


class TestBatchUploadResult:
    """Partitioning of batch outcomes."""

    def test_partitions_keys_and_failures(self):
        result = BatchUploadResult(
            entries=[
                UploadResultEntry("a", "k/a", UploadOutcome.SUCCESS),
                UploadResultEntry("b", None, UploadOutcome.ERROR, "quota exceeded"),
                UploadResultEntry("c", "k/c", UploadOutcome.ERROR, "denied"),
            ]
        )
        assert result.successful_keys == ["k/a"]
        assert result.failed_descriptions == ["b: quota exceeded", "k/c: denied"]
        assert result.summary() == {"total": 3, "succeeded": 1, "failed": 2}
        assert result.confirmed

    def test_not_confirmed_with_warning(self):
        result = BatchUploadResult(
            entries=[UploadResultEntry("a", "k/a", UploadOutcome.SUCCESS)],
            confirmation_warning="confirmation failed",
        )
        assert not result.confirmed


class TestSchemas:
    """Wire payloads convert into client records."""

    def test_file_payload_to_record(self):
        record = FilePayload.model_validate(file_payload(7, "report.pdf", size=2048)).to_record()
        assert record.id == "7"
        assert record.object_key == "user-1/report.pdf"
        assert record.display_name == "report.pdf"
        assert record.size_bytes == 2048
        assert record.tier is StorageTier.STANDARD
        assert record.public_url is not None
        assert record.last_modified is not None

    def test_archived_record_has_no_public_url(self):
        payload = FilePayload.model_validate(file_payload(7, "old.zip", tier="glacier"))
        record = payload.to_record()
        assert record.tier is StorageTier.ARCHIVE
        assert record.public_url is None

    def test_missing_id_falls_back_to_key(self):
        data = file_payload(1, "a.txt")
        del data["id"]
        assert FilePayload.model_validate(data).to_record().id == "user-1/a.txt"

    def test_listing_page(self):
        response = ListingResponse.model_validate(
            {"files": [file_payload(1, "a"), file_payload(2, "b")], "total": 12, "total_pages": 0}
        )
        page = response.to_page(2, 10)
        assert [f.id for f in page.files] == ["1", "2"]
        assert page.total == 12
        assert page.total_pages == 1

    def test_ticket_response_accepts_null_lists(self):
        response = TicketResponse.model_validate({"successful": None, "failed": None})
        assert response.successful == []
        assert response.failed == []

    def test_error_message_keys(self):
        assert error_message({"error": "nope"}, "default") == "nope"
        assert error_message({"detail": "bad token"}, "default") == "bad token"
        assert error_message("plain text", "default") == "plain text"
        assert error_message(None, "default") == "default"


class TestConfig:
    """Configuration and token lookup."""

    def test_defaults_without_file(self, tmp_path: Path):
        config = load_client_config(tmp_path / "missing.json")
        assert config.backend_url == "http://localhost:8000"
        assert config.refresh_interval_seconds == 60.0
        assert config.max_concurrent_transfers is None

    def test_file_and_env_override(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
        path = tmp_path / "sdrive.json"
        path.write_text(json.dumps({"per_page": 25, "max_concurrent_transfers": 4, "colour": "blue"}))
        monkeypatch.setenv("SDRIVE_BACKEND_URL", "https://api.example.com/")
        config = load_client_config(path)
        assert config.per_page == 25
        assert config.max_concurrent_transfers == 4
        assert config.backend_url == "https://api.example.com"

    def test_token_from_keyring_then_env(self, monkeypatch: pytest.MonkeyPatch):
        assert lookup_auth_token() is None
        monkeypatch.setenv("SDRIVE_TOKEN", "env-token")
        assert lookup_auth_token() == "env-token"
        assert SessionStore().token == "env-token"
        SessionStore().login("kr-token")
        assert lookup_auth_token() == "kr-token"


class TestSessionStore:
    """Keyring-backed session with invalidation listeners."""

    def test_invalidate_logs_out_and_notifies(self):
        session = SessionStore()
        session.login("abc")
        calls: list[str] = []
        session.add_invalidation_listener(lambda: calls.append("out"))

        session.invalidate()

        assert session.token is None
        assert not session.is_authenticated
        assert calls == ["out"]

    def test_env_token_stays_invalid_until_login(self, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.setenv("SDRIVE_TOKEN", "env-token")
        session = SessionStore()
        assert session.is_authenticated

        session.invalidate()
        assert session.token is None

        session.login("fresh")
        assert session.token == "fresh"

    def test_logout_without_token_is_quiet(self):
        SessionStore().logout()

    def test_empty_token_rejected(self):
        with pytest.raises(ValueError):
            SessionStore().login("  ")
