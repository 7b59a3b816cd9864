"""
Tests for admin-saved credentials and display helpers.
"""

import threading

import pytest

from country_directory.config import Settings
from country_directory.platforms.base import split_name
from country_directory.services import credentials as credentials_module
from country_directory.services.credentials import CredentialStore, DirectoryCredentials
from country_directory.utils.avatars import avatar_url, initials


def make_settings(tmp_path, **overrides) -> Settings:
    values = dict(credentials_path=str(tmp_path / "creds.json"))
    values.update(overrides)
    return Settings(_env_file=None, **values)


class TestCredentialStore:

    def test_defaults_from_environment(self, tmp_path):
        """Test credentials default to the environment."""
        store = CredentialStore(make_settings(tmp_path, discourse_url="https://f.example/", discourse_api_key="k"))
        creds = store.current()
        assert creds.api_url == "https://f.example"
        assert creds.api_key == "k"
        assert store.is_configured

    def test_unconfigured(self, tmp_path):
        """Test unconfigured store."""
        assert not CredentialStore(make_settings(tmp_path)).is_configured

    @pytest.mark.asyncio
    async def test_saved_values_override_and_survive_restart(self, tmp_path):
        """Test saved credentials override env and survive restart."""
        settings = make_settings(tmp_path, discourse_url="https://f.example", discourse_api_key="k")
        await CredentialStore(settings).save(
            DirectoryCredentials(api_url="https://g.example", api_key="k2", api_username="bot", api_limit=250)
        )

        reloaded = CredentialStore(settings)
        assert reloaded.current().api_url == "https://g.example"
        assert reloaded.current().api_key == "k2"
        assert reloaded.page_size() == 250

    @pytest.mark.asyncio
    async def test_save_writes_off_the_event_loop(self, tmp_path, monkeypatch):
        """Test that saving writes the file in a worker thread."""
        writer_threads = []
        real_write = credentials_module.write_json_atomic

        def recording_write(path, payload):
            writer_threads.append(threading.get_ident())
            real_write(path, payload)

        monkeypatch.setattr(credentials_module, "write_json_atomic", recording_write)
        store = CredentialStore(make_settings(tmp_path))

        await store.save(DirectoryCredentials(api_url="https://g.example", api_key="k2"))

        assert len(writer_threads) == 1
        assert writer_threads[0] != threading.get_ident()
        assert (tmp_path / "creds.json").exists()
        assert store.is_configured

    def test_corrupt_file_falls_back_to_environment(self, tmp_path):
        """Test corrupt credentials file falls back to env."""
        settings = make_settings(tmp_path, discourse_url="https://f.example", discourse_api_key="k")
        (tmp_path / "creds.json").write_text("{broken")
        assert CredentialStore(settings).current().api_key == "k"


class TestDisplayHelpers:

    def test_split_name(self):
        """Test display name splitting."""
        assert split_name("Ana María López", "ana") == ("Ana", "María López")
        assert split_name("Cher", "cher") == ("Cher", "")
        assert split_name(None, "ghost") == ("ghost", "")
        assert split_name("   ", "ghost") == ("ghost", "")

    def test_initials(self):
        """Test initials."""
        assert initials("ana", "lópez") == "AL"
        assert initials("Bob", "") == "B"
        assert initials("", None) == "?"

    def test_avatar_url(self):
        """Test avatar URL expansion."""
        assert avatar_url("/user_avatar/f/a/{size}/1.png", 48, "https://f.example") == \
            "https://f.example/user_avatar/f/a/48/1.png"
        assert avatar_url("//cdn.example/a/{size}.png", 96) == "https://cdn.example/a/96.png"
        assert avatar_url(None, 48) == ""
