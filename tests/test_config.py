"""Tests for Settings loading and storage backend selection."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pydantic
import pytest

from filedrop import config
from filedrop.config import Settings, get_settings, load_settings, reload_settings
from filedrop.fs.exceptions import ConfigurationError
from filedrop.storage.factory import create_storage_provider
from filedrop.storage.local import LocalStorageProvider
from filedrop.storage.s3 import S3StorageProvider

if TYPE_CHECKING:
    from pathlib import Path


@pytest.fixture(autouse=True)
def _fresh_state(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setattr(config, "_settings", None)
    monkeypatch.setattr(config, "_overrides", {})
    # Keep a developer's .env out of the way.
    monkeypatch.chdir(tmp_path)


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------


class TestSettings:
    def test_defaults(self):
        s = Settings(_env_file=None)
        assert s.storage_backend == "local"
        assert s.default_quota_bytes == 5 * 1024**3
        assert s.max_file_size == 100 * 1024**2
        assert s.trash_retention_days == 30
        assert s.share_slug_length == 8
        assert s.share_password_rounds == 12
        assert s.max_share_expiry_days == 365
        assert s.stream_chunk_size == 64 * 1024

    def test_reads_prefixed_environment(self, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.setenv("FILEDROP_MAX_FILE_SIZE", "1234")
        monkeypatch.setenv("FILEDROP_STORAGE_BACKEND", "s3")
        s = Settings(_env_file=None)
        assert s.max_file_size == 1234
        assert s.storage_backend == "s3"

    def test_reads_env_file(self, tmp_path: Path):
        (tmp_path / ".env").write_text("FILEDROP_TRASH_RETENTION_DAYS=7\n")
        assert Settings().trash_retention_days == 7

    def test_secret_is_masked(self):
        s = Settings(_env_file=None, s3_secret_key="hunter2")
        assert "hunter2" not in repr(s)

    def test_unknown_backend(self):
        with pytest.raises(pydantic.ValidationError):
            Settings(_env_file=None, storage_backend="ftp")

    @pytest.mark.parametrize(
        "field",
        ["max_file_size", "stream_chunk_size", "trash_retention_days", "max_share_expiry_days"],
    )
    def test_non_positive_sizes(self, field: str):
        with pytest.raises(pydantic.ValidationError):
            Settings(_env_file=None, **{field: 0})

    def test_short_slug_rejected(self):
        with pytest.raises(pydantic.ValidationError):
            Settings(_env_file=None, share_slug_length=4)

    def test_small_alphabet_rejected(self):
        with pytest.raises(pydantic.ValidationError):
            Settings(_env_file=None, share_slug_alphabet="abc")


# ---------------------------------------------------------------------------
# Process-wide state
# ---------------------------------------------------------------------------


class TestProcessState:
    def test_get_settings_loads_once(self):
        first = get_settings()
        assert get_settings() is first

    def test_load_applies_overrides(self):
        s = load_settings(max_file_size=99)
        assert s.max_file_size == 99
        assert get_settings() is s

    def test_reload_rereads_environment(self, monkeypatch: pytest.MonkeyPatch):
        load_settings(max_file_size=99)
        monkeypatch.setenv("FILEDROP_TRASH_RETENTION_DAYS", "3")
        s = reload_settings()
        assert s.trash_retention_days == 3
        assert s.max_file_size == 99
        assert get_settings() is s


# ---------------------------------------------------------------------------
# create_storage_provider
# ---------------------------------------------------------------------------


class TestStorageFactory:
    def test_local(self, tmp_path: Path):
        s = Settings(_env_file=None, storage_path=str(tmp_path / "blobs"), stream_chunk_size=10)
        provider = create_storage_provider(s)
        assert isinstance(provider, LocalStorageProvider)
        assert provider.chunk_size == 10

    def test_s3(self):
        s = Settings(
            _env_file=None,
            storage_backend="s3",
            s3_endpoint="localhost",
            s3_access_key="key",
            s3_secret_key="secret",
            s3_bucket="drops",
        )
        provider = create_storage_provider(s)
        assert isinstance(provider, S3StorageProvider)
        assert provider.bucket == "drops"

    def test_s3_without_credentials(self):
        s = Settings(_env_file=None, storage_backend="s3", s3_endpoint="localhost")
        with pytest.raises(ConfigurationError):
            create_storage_provider(s)

    def test_unknown_backend(self):
        s = Settings.model_construct(storage_backend="ftp")
        with pytest.raises(ConfigurationError):
            create_storage_provider(s)
