"""
End-to-end tests of the `lk` entrypoint.

Commands run through run() with in-memory consoles and a config store
under tmp_path; nothing reaches the network.
"""

import json
import re
from io import StringIO

import pytest
from rich.console import Console

from lkcli.cli.main import build_parser, run
from lkcli.cli.output import TerminalUI
from lkcli.core.store import ConfigStore, make_project
from lkcli.core.token import decode_token

SECRET = "cli-test-secret-that-is-long-enough-for-hs256"
CREDENTIALS = ["--url", "ws://localhost:7880", "--api-key", "APIkey", "--api-secret", SECRET]


@pytest.fixture(autouse=True)
def _isolated(monkeypatch, tmp_path):
    for name in ("LIVEKIT_URL", "LIVEKIT_API_KEY", "LIVEKIT_API_SECRET"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)


def _make_ui(**kwargs) -> TerminalUI:
    return TerminalUI(
        Console(file=StringIO(), width=4000),
        Console(file=StringIO(), width=4000),
        interactive=False,
        **kwargs,
    )


def _out(ui: TerminalUI) -> str:
    return ui.console.file.getvalue()


def _err(ui: TerminalUI) -> str:
    return ui.err_console.file.getvalue()


def _make_store(tmp_path) -> ConfigStore:
    return ConfigStore(tmp_path / "cli-config.toml")


class TestParser:
    def test_no_command_prints_help(self, capsys, tmp_path):
        assert run([], ui=_make_ui(), store=_make_store(tmp_path)) == 0
        assert "usage: lk" in capsys.readouterr().out

    def test_group_without_subcommand(self, capsys, tmp_path):
        assert run(["token"], ui=_make_ui(), store=_make_store(tmp_path)) == 0
        assert "usage: lk token" in capsys.readouterr().out

    def test_version(self):
        with pytest.raises(SystemExit) as exc:
            build_parser().parse_args(["--version"])
        assert exc.value.code == 0

    def test_global_flags_anywhere(self):
        parser = build_parser()
        before = parser.parse_args(["--url", "ws://a", "room", "list"])
        after = parser.parse_args(["room", "list", "--url", "ws://b"])
        assert before.url == "ws://a"
        assert after.url == "ws://b"

    def test_aliases(self):
        args = build_parser().parse_args(["numbers", "list"])
        assert args.handler.__name__ == "list_numbers"

    def test_unknown_layout_rejected(self, capsys):
        with pytest.raises(SystemExit) as exc:
            build_parser().parse_args(["perf", "load-test", "--layout", "3X3"])
        assert exc.value.code == 2
        assert "invalid choice: '3X3'" in capsys.readouterr().err
        assert build_parser().parse_args(["perf", "load-test", "--layout", "4x4"]).layout == "4x4"


class TestTokenCreate:
    def test_join_token(self, tmp_path):
        ui = _make_ui()
        argv = ["token", "create", "--join", "--room", "r1", "--identity", "user-{.}", "--grant", '{"hidden": true}']
        assert run(argv + CREDENTIALS, ui=ui, store=_make_store(tmp_path)) == 0

        token = re.search(r"Access token: (\S+)", _out(ui)).group(1)
        claims = decode_token(token, SECRET)
        assert re.fullmatch(r"user-[0-9a-f]{12}", claims.identity)
        assert claims.video.room_join
        assert claims.video.room == "r1"
        assert claims.video.hidden
        assert "Project URL: ws://localhost:7880" in _out(ui)

    def test_no_permissions_non_interactive(self, tmp_path):
        ui = _make_ui()
        assert run(["token", "create"] + CREDENTIALS, ui=ui, store=_make_store(tmp_path)) == 1
        assert "error: no permissions were given in this grant" in _err(ui)

    def test_dev_credentials(self, tmp_path):
        ui = _make_ui()
        assert run(["token", "create", "--list", "--dev"], ui=ui, store=_make_store(tmp_path)) == 0
        token = re.search(r"Access token: (\S+)", _out(ui)).group(1)
        assert decode_token(token, "secret").video.room_list


class TestProjectCommands:
    def test_add_and_list(self, tmp_path):
        store = _make_store(tmp_path)
        ui = _make_ui()
        argv = ["project", "add", "prod", "--url", "wss://prod.livekit.cloud", "--api-key", "APIk", "--api-secret", "sec"]
        assert run(argv, ui=ui, store=store) == 0
        assert "Project prod is now the default" in _out(ui)
        assert ConfigStore.load(store.path).default_name == "prod"

        ui = _make_ui()
        assert run(["project", "list", "--json"], ui=ui, store=store) == 0
        listed = json.loads(_out(ui))
        assert listed == [
            {"name": "prod", "url": "wss://prod.livekit.cloud", "api_key": "APIk", "project_id": "", "default": True}
        ]

    def test_add_missing_value(self, tmp_path):
        ui = _make_ui()
        assert run(["project", "add", "prod", "--url", "wss://prod.livekit.cloud"], ui=ui, store=_make_store(tmp_path)) == 1
        assert "error: api-key is required" in _err(ui)

    def test_set_default_unknown(self, tmp_path):
        ui = _make_ui()
        assert run(["project", "set-default", "nope"], ui=ui, store=_make_store(tmp_path)) == 1
        assert "error: project not found" in _err(ui)

    def test_remove(self, tmp_path):
        store = _make_store(tmp_path)
        store.add(make_project("prod", "wss://prod.livekit.cloud", "APIk", "sec"))
        store.save()
        ui = _make_ui()
        assert run(["project", "remove", "prod"], ui=ui, store=store) == 0
        assert ConfigStore.load(store.path).projects == []


class TestCurl:
    def test_room_list_prints_curl(self, tmp_path):
        ui = _make_ui()
        assert run(["room", "list", "--dev", "--curl"], ui=ui, store=_make_store(tmp_path)) == 0
        out = _out(ui)
        assert "curl -X POST" in out
        assert "http://localhost:7880/twirp/livekit.RoomService/ListRooms" in out
        assert "No rooms found" in out
