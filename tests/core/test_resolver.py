"""
Tests for project resolution priority and failure modes.
"""

from unittest.mock import MagicMock

import pytest

from lkcli.core.config import ProjectEnv
from lkcli.core.errors import InputError, MissingCredentialsError, NotFoundError
from lkcli.core.models import ProjectSource
from lkcli.core.resolver import DEV_API_KEY, ProjectResolver, ResolveOptions
from lkcli.core.store import ConfigStore, make_project


def _make_store(tmp_path, *names):
    store = ConfigStore(tmp_path / "cli-config.toml")
    for name in names:
        store.add(make_project(name, f"wss://{name}-ab12.livekit.cloud", f"key-{name}", f"secret-{name}"))
    return store


def _make_resolver(store, env=None, **hooks):
    return ProjectResolver(store, env=env or ProjectEnv(url="", api_key="", api_secret=""), **hooks)


class TestResolvePriority:
    """First matching source wins."""

    def test_project_flag(self, tmp_path):
        store = _make_store(tmp_path, "a", "b")
        ctx = _make_resolver(store).resolve(ResolveOptions(project="b", working_dir=str(tmp_path)))
        assert ctx.name == "b"
        assert ctx.source == ProjectSource.PROJECT_FLAG

    def test_unknown_project(self, tmp_path):
        with pytest.raises(NotFoundError):
            _make_resolver(_make_store(tmp_path)).resolve(ResolveOptions(project="x"))

    def test_subdomain_flag(self, tmp_path):
        store = _make_store(tmp_path, "a", "b")
        ctx = _make_resolver(store).resolve(ResolveOptions(subdomain="b-ab12", working_dir=str(tmp_path)))
        assert ctx.name == "b"

    def test_explicit_flags_beat_default(self, tmp_path):
        store = _make_store(tmp_path, "a")
        ctx = _make_resolver(store).resolve(
            ResolveOptions(url="ws://localhost:7880", api_key="k1", api_secret="s1", working_dir=str(tmp_path))
        )
        assert ctx.source == ProjectSource.EXPLICIT
        assert ctx.api_key == "k1"

    def test_environment_credentials(self, tmp_path):
        notify = MagicMock()
        env = ProjectEnv(url="wss://env.livekit.cloud", api_key="envkey", api_secret="envsecret")
        ctx = _make_resolver(_make_store(tmp_path), env=env, notify=notify).resolve(
            ResolveOptions(working_dir=str(tmp_path))
        )
        assert ctx.url == "wss://env.livekit.cloud"
        notify.assert_called_once_with("Using url, api-key, api-secret from environment")

    def test_dev_credentials(self, tmp_path):
        ctx = _make_resolver(_make_store(tmp_path, "a")).resolve(ResolveOptions(dev=True, working_dir=str(tmp_path)))
        assert ctx.api_key == DEV_API_KEY
        assert ctx.url == "http://localhost:7880"

    def test_project_file(self, tmp_path):
        (tmp_path / "livekit.toml").write_text('[project]\nsubdomain = "b-ab12"\n')
        ctx = _make_resolver(_make_store(tmp_path, "a", "b")).resolve(ResolveOptions(working_dir=str(tmp_path)))
        assert ctx.name == "b"
        assert ctx.source == ProjectSource.PROJECT_FILE

    def test_dev_beats_project_file(self, tmp_path):
        (tmp_path / "livekit.toml").write_text('[project]\nsubdomain = "b-ab12"\n')
        store = _make_store(tmp_path, "a", "b")
        ctx = _make_resolver(store).resolve(ResolveOptions(dev=True, working_dir=str(tmp_path)))
        assert ctx.api_key == DEV_API_KEY

    def test_default_project(self, tmp_path):
        ctx = _make_resolver(_make_store(tmp_path, "a", "b")).resolve(ResolveOptions(working_dir=str(tmp_path)))
        assert ctx.name == "a"
        assert ctx.source == ProjectSource.DEFAULT


class TestResolveConflicts:
    def test_project_and_dev(self, tmp_path):
        with pytest.raises(InputError, match="both project and dev"):
            _make_resolver(_make_store(tmp_path, "a")).resolve(ResolveOptions(project="a", dev=True))

    def test_api_key_and_dev(self, tmp_path):
        with pytest.raises(InputError, match="both api-key and dev"):
            _make_resolver(_make_store(tmp_path)).resolve(ResolveOptions(api_key="k", dev=True))

    def test_nothing_configured(self, tmp_path):
        with pytest.raises(MissingCredentialsError) as exc:
            _make_resolver(_make_store(tmp_path)).resolve(ResolveOptions(working_dir=str(tmp_path)))
        assert exc.value.missing == ["url", "api-key", "api-secret"]


class TestInteractiveDefault:
    def test_declined_default_prompts_for_project(self, tmp_path):
        store = _make_store(tmp_path, "a", "b")
        select = MagicMock(side_effect=lambda projects: projects[1])
        resolver = _make_resolver(store, confirm=MagicMock(return_value=False), select=select)
        ctx = resolver.resolve(ResolveOptions(confirm_default=True, working_dir=str(tmp_path)))
        assert ctx.name == "b"
        assert ctx.source == ProjectSource.PROMPT
