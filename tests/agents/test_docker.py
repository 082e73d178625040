"""
Tests for Dockerfile generation and entrypoint selection.
"""

from unittest.mock import MagicMock

import pytest

from lkcli.agents.detect import ProjectType
from lkcli.agents.docker import choose_entrypoint, create_dockerfile, render_dockerfile
from lkcli.core.errors import ConflictError, InputError, ProtocolError

SETTINGS = {"python_entrypoint": "agent.py,main.py", "node_entrypoint": "agent.js"}


class TestChooseEntrypoint:
    def test_first_existing_candidate(self, tmp_path):
        (tmp_path / "main.py").write_text("")
        assert choose_entrypoint(tmp_path, ProjectType.PYTHON_PIP, SETTINGS) == "main.py"

    def test_single_source_file(self, tmp_path):
        (tmp_path / "src").mkdir()
        (tmp_path / "src" / "bot.py").write_text("")
        assert choose_entrypoint(tmp_path, ProjectType.PYTHON_PIP, SETTINGS) == "src/bot.py"

    def test_ignored_files_not_offered(self, tmp_path):
        (tmp_path / ".venv").mkdir()
        (tmp_path / ".venv" / "site.py").write_text("")
        (tmp_path / "a.py").write_text("")
        (tmp_path / "b.py").write_text("")
        select = MagicMock(return_value="b.py")

        assert choose_entrypoint(tmp_path, ProjectType.PYTHON_PIP, SETTINGS, select) == "b.py"
        assert select.call_args.args[1] == ["a.py", "b.py"]

    def test_ambiguous_without_prompt(self, tmp_path):
        (tmp_path / "a.py").write_text("")
        (tmp_path / "b.py").write_text("")
        with pytest.raises(InputError, match="multiple Python files found"):
            choose_entrypoint(tmp_path, ProjectType.PYTHON_PIP, SETTINGS)

    def test_missing_setting(self, tmp_path):
        with pytest.raises(ProtocolError, match="client setting node_entrypoint is required"):
            choose_entrypoint(tmp_path, ProjectType.NODE, {"python_entrypoint": "agent.py"})


class TestCreateDockerfile:
    def test_python_pip(self, tmp_path):
        (tmp_path / "agent.py").write_text("")
        path = create_dockerfile(tmp_path, ProjectType.PYTHON_PIP, SETTINGS)

        text = path.read_text()
        assert 'ARG PROGRAM_MAIN="agent.py"' in text
        assert "USER appuser" in text
        assert "download-files" in text
        assert "EXPOSE 8081" in text
        assert 'CMD ["python", "agent.py", "start"]' in text
        assert (tmp_path / ".dockerignore").read_text().startswith("# Python")

    def test_uv_uses_locked_sync(self, tmp_path):
        (tmp_path / "agent.py").write_text("")
        text = create_dockerfile(tmp_path, ProjectType.PYTHON_UV, SETTINGS).read_text()
        assert "ghcr.io/astral-sh/uv:python3.11-bookworm-slim" in text
        assert "uv sync --locked" in text

    def test_existing_dockerfile(self, tmp_path):
        (tmp_path / "Dockerfile").write_text("FROM scratch\n")
        with pytest.raises(ConflictError):
            create_dockerfile(tmp_path, ProjectType.PYTHON_PIP, SETTINGS)

    def test_existing_dockerignore_kept(self, tmp_path):
        (tmp_path / "agent.js").write_text("")
        (tmp_path / ".dockerignore").write_text("custom\n")
        create_dockerfile(tmp_path, ProjectType.NODE, SETTINGS)
        assert (tmp_path / ".dockerignore").read_text() == "custom\n"

    def test_no_settings(self, tmp_path):
        with pytest.raises(ProtocolError, match="unable to fetch client settings"):
            create_dockerfile(tmp_path, ProjectType.PYTHON_PIP, {})


class TestRenderDockerfile:
    def test_entrypoint_replaced_in_cmd(self):
        template = 'ARG PROGRAM_MAIN="agent.py"\nCMD ["python", "agent.py", "start"]\n'
        out = render_dockerfile(template, "src/bot.py", ProjectType.PYTHON_PIP)
        assert out == 'ARG PROGRAM_MAIN="src/bot.py"\nCMD ["python", "src/bot.py", "start"]\n'
