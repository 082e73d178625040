"""
Tests for app templates: the index, env instantiation and task running.
"""

import stat
import subprocess
from unittest.mock import patch

import httpx
import pytest

from lkcli import bootstrap
from lkcli.core.errors import ConflictError, InputError, NotFoundError, ProtocolError, TransportError
from lkcli.core.models import ProjectContext

INDEX = """
- name: voice-assistant-frontend
  desc: Voice assistant UI
  tags: [react, voice]
- name: internal
  url: https://example.com/internal.git
  is_hidden: true
"""


def _make_project() -> ProjectContext:
    return ProjectContext(name="p", url="wss://p.livekit.cloud", api_key="APIkey", api_secret="sec")


class TestTemplateIndex:
    def test_parse(self):
        templates = bootstrap.parse_template_index(INDEX)
        assert [t.name for t in templates] == ["voice-assistant-frontend", "internal"]
        assert templates[0].tags == ["react", "voice"]
        assert templates[1].is_hidden

    def test_invalid(self):
        with pytest.raises(ProtocolError):
            bootstrap.parse_template_index("- desc: no name")

    def test_urls(self):
        templates = bootstrap.parse_template_index(INDEX)
        assert bootstrap.template_url(templates[0]) == "https://github.com/livekit-examples/voice-assistant-frontend"
        assert bootstrap.template_url(bootstrap.find_template(templates, "internal")) == "https://example.com/internal.git"
        with pytest.raises(NotFoundError):
            bootstrap.find_template(templates, "missing")

    @pytest.mark.asyncio
    async def test_fetch(self):
        transport = httpx.MockTransport(lambda request: httpx.Response(200, text=INDEX))
        async with httpx.AsyncClient(transport=transport) as client:
            templates = await bootstrap.fetch_templates(client)
        assert len(templates) == 2

    @pytest.mark.asyncio
    async def test_fetch_error_status(self):
        transport = httpx.MockTransport(lambda request: httpx.Response(404))
        async with httpx.AsyncClient(transport=transport) as client:
            with pytest.raises(ProtocolError, match="404"):
                await bootstrap.fetch_templates(client)


class TestEnv:
    def test_example_keys_filled(self, tmp_path):
        (tmp_path / ".env.example").write_text("LIVEKIT_URL=\nOPENAI_API_KEY=sk-example\n")
        asked = []

        def prompt(key, old):
            asked.append((key, old))
            return "sk-real"

        env = bootstrap.instantiate_env(tmp_path, bootstrap.project_substitutions(_make_project()), prompt)
        assert env == {"LIVEKIT_URL": "wss://p.livekit.cloud", "OPENAI_API_KEY": "sk-real"}
        assert asked == [("OPENAI_API_KEY", "sk-example")]

    def test_without_example(self, tmp_path):
        subs = bootstrap.project_substitutions(_make_project())
        assert bootstrap.instantiate_env(tmp_path, subs, lambda k, o: "") == subs

    def test_render_and_write(self, tmp_path):
        env = {"B": 'say "hi"', "A": "42"}
        assert bootstrap.render_env(env) == 'A=42\nB="say \\"hi\\""'
        path = bootstrap.write_env(tmp_path, env)
        assert path.name == ".env.local"
        assert stat.S_IMODE(path.stat().st_mode) == 0o600

    def test_env_file_names(self):
        assert bootstrap.env_file_names(None) == (".env.example", ".env.local")
        taskfile = {"vars": {"env_example": ".env.sample", "env_file": ".env"}}
        assert bootstrap.env_file_names(taskfile) == (".env.sample", ".env")


class TestTemplateFiles:
    def test_cleanup(self, tmp_path):
        (tmp_path / ".git").mkdir()
        (tmp_path / ".git" / "HEAD").write_text("ref")
        (tmp_path / "taskfile.yaml").write_text("version: 3")
        (tmp_path / "LICENSE").write_text("MIT")
        (tmp_path / "app.py").write_text("")
        bootstrap.cleanup_template(tmp_path)
        assert sorted(p.name for p in tmp_path.iterdir()) == ["app.py"]

    def test_clone_into_existing(self, tmp_path):
        with pytest.raises(ConflictError):
            bootstrap.clone_template("https://example.com/t.git", tmp_path)

    def test_clone_failure(self, tmp_path):
        failed = subprocess.CompletedProcess([], 128, stdout="", stderr="repository not found")
        with (
            patch("lkcli.bootstrap.shutil.which", return_value="/usr/bin/git"),
            patch("lkcli.bootstrap.subprocess.run", return_value=failed) as run,
        ):
            with pytest.raises(TransportError, match="repository not found"):
                bootstrap.clone_template("https://example.com/t.git", tmp_path / "app")
        assert run.call_args.args[0][:3] == ["git", "clone", "--depth=1"]


class TestRunTask:
    def _taskfile(self, tmp_path):
        (tmp_path / "taskfile.yaml").write_text("version: '3'\ntasks:\n  install:\n    cmds: [npm install]\n")

    def test_no_taskfile(self, tmp_path):
        with pytest.raises(NotFoundError, match="taskfile.yaml"):
            bootstrap.run_task(tmp_path, "install")

    def test_unknown_task(self, tmp_path):
        self._taskfile(tmp_path)
        with pytest.raises(NotFoundError, match='task "dev" not found'):
            bootstrap.run_task(tmp_path, "dev")

    def test_runner_missing(self, tmp_path):
        self._taskfile(tmp_path)
        with patch("lkcli.bootstrap.shutil.which", return_value=None):
            with pytest.raises(InputError, match="task runner"):
                bootstrap.run_task(tmp_path, "install")

    def test_runs_silently(self, tmp_path):
        self._taskfile(tmp_path)
        ok = subprocess.CompletedProcess([], 0)
        with (
            patch("lkcli.bootstrap.shutil.which", return_value="/usr/bin/task"),
            patch("lkcli.bootstrap.subprocess.run", return_value=ok) as run,
        ):
            bootstrap.run_task(tmp_path, "install")
        assert run.call_args.args[0] == ["/usr/bin/task", "--silent", "install"]
        assert run.call_args.kwargs["cwd"] == str(tmp_path)

    def test_task_failure(self, tmp_path):
        self._taskfile(tmp_path)
        with (
            patch("lkcli.bootstrap.shutil.which", return_value="/usr/bin/task"),
            patch("lkcli.bootstrap.subprocess.run", return_value=subprocess.CompletedProcess([], 2)),
        ):
            with pytest.raises(ProtocolError, match="exit code 2"):
                bootstrap.run_task(tmp_path, "install")

    def test_has_task(self):
        assert bootstrap.has_task({"tasks": {"post_create": {}}}, "post_create")
        assert not bootstrap.has_task(None, "post_create")
