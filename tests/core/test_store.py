"""
Tests for the Config Store: validation, default handling and persistence.
"""

import os
import stat

import pytest

from lkcli.core.errors import ConfigError, DuplicateNameError, InputError, NotFoundError
from lkcli.core.store import ConfigStore, make_project


def _make_project(name="proj", url="wss://proj-ab12.livekit.cloud"):
    return make_project(name, url, "APIkey", "secret123")


class TestMakeProject:
    def test_valid(self):
        project = _make_project()
        assert project.name == "proj"
        assert project.project_id == ""

    @pytest.mark.parametrize(
        "kwargs,field",
        [
            ({"name": "bad name"}, "name"),
            ({"url": "ftp://x.y"}, "url"),
            ({"api_key": "ab"}, "api-key"),
        ],
    )
    def test_invalid_field_reported(self, kwargs, field):
        values = {"name": "proj", "url": "wss://proj.livekit.cloud", "api_key": "APIkey", "api_secret": "secret"}
        values.update(kwargs)
        with pytest.raises(InputError, match=f"invalid {field}"):
            make_project(**values)


class TestConfigStore:
    """In-memory behaviour of the store."""

    def test_first_project_becomes_default(self, tmp_path):
        store = ConfigStore(tmp_path / "cli-config.toml")
        store.add(_make_project("a"))
        store.add(_make_project("b"))
        assert store.default_name == "a"
        assert store.default.name == "a"

    def test_make_default(self, tmp_path):
        store = ConfigStore(tmp_path / "cli-config.toml")
        store.add(_make_project("a"))
        store.add(_make_project("b"), make_default=True)
        assert store.default_name == "b"

    def test_duplicate_name_rejected(self, tmp_path):
        store = ConfigStore(tmp_path / "cli-config.toml")
        store.add(_make_project("a"))
        with pytest.raises(DuplicateNameError):
            store.add(_make_project("a"))

    def test_remove_clears_default(self, tmp_path):
        store = ConfigStore(tmp_path / "cli-config.toml")
        store.add(_make_project("a"))
        assert store.remove("a") is True
        assert store.default_name == ""
        assert store.remove("a") is False

    def test_set_default_unknown(self, tmp_path):
        store = ConfigStore(tmp_path / "cli-config.toml")
        with pytest.raises(NotFoundError, match="project not found"):
            store.set_default("missing")

    def test_lookup_by_subdomain(self, tmp_path):
        store = ConfigStore(tmp_path / "cli-config.toml")
        store.add(_make_project("a", "wss://alpha-1.livekit.cloud"))
        store.add(_make_project("b", "wss://beta-2.livekit.cloud"))
        assert store.lookup_by_subdomain("beta-2").name == "b"
        assert store.lookup_by_subdomain("gamma") is None


class TestPersistence:
    """Round trips through the TOML file."""

    def test_missing_file_gives_empty_store(self, tmp_path):
        store = ConfigStore.load(tmp_path / "nope.toml")
        assert store.projects == []
        assert not store.has_persisted

    def test_empty_store_never_written(self, tmp_path):
        path = tmp_path / "cli-config.toml"
        assert ConfigStore.load(path).save() is False
        assert not path.exists()

    def test_save_and_reload(self, tmp_path):
        path = tmp_path / "nested" / "cli-config.toml"
        store = ConfigStore.load(path)
        store.add(_make_project("a"))
        assert store.save() is True

        assert stat.S_IMODE(os.stat(path).st_mode) == 0o600
        reloaded = ConfigStore.load(path)
        assert reloaded.default_name == "a"
        assert reloaded.get("a").url == "wss://proj-ab12.livekit.cloud"

    def test_unchanged_store_not_rewritten(self, tmp_path):
        path = tmp_path / "cli-config.toml"
        store = ConfigStore.load(path)
        store.add(_make_project("a"))
        store.save()
        reloaded = ConfigStore.load(path)
        assert reloaded.save() is False

    def test_corrupt_file(self, tmp_path):
        path = tmp_path / "cli-config.toml"
        path.write_text("not = [valid")
        path.chmod(0o600)
        with pytest.raises(ConfigError, match="could not parse"):
            ConfigStore.load(path)
