"""Tests for the daemon client and the CLI that drives it."""

from __future__ import annotations

import asyncio
import json
import os
import signal

import pytest

from idasen_control import cli
from idasen_control.client import ensure_daemon, send_command, stop_daemon
from idasen_control.config import Config
from idasen_control.errors import DaemonUnavailable


@pytest.fixture
def client_config(short_tmp) -> Config:
    return Config(socket_path=str(short_tmp / "d.sock"), pid_file_path=str(short_tmp / "d.pid"))


async def echo_server(config: Config, reply):
    async def handle(reader, writer):
        line = await reader.readline()
        handle.requests.append(json.loads(line))
        writer.write((json.dumps(reply) + "\n").encode())
        await writer.drain()
        writer.close()

    handle.requests = []
    server = await asyncio.start_unix_server(handle, path=config.socket_path)
    return server, handle.requests


def test_send_command_round_trip(client_config) -> None:
    async def scenario():
        server, requests = await echo_server(client_config, {"ready": False})
        reply = await send_command(client_config, {"op": "getStatus"})
        server.close()
        await server.wait_closed()
        return reply, requests

    reply, requests = asyncio.run(scenario())
    assert reply == {"ready": False}
    assert requests == [{"op": "getStatus"}]


def test_send_command_without_daemon(client_config) -> None:
    with pytest.raises(DaemonUnavailable):
        asyncio.run(send_command(client_config, {"op": "wait"}))


def test_ensure_daemon_spawns_once(client_config) -> None:
    spawned = []

    def spawn():
        spawned.append(True)
        open(client_config.socket_path, "w").close()
        with open(client_config.pid_file_path, "w") as f:
            f.write(f"{os.getpid()}\n")

    assert asyncio.run(ensure_daemon(client_config, spawn=spawn)) is True
    assert asyncio.run(ensure_daemon(client_config, spawn=spawn)) is False
    assert spawned == [True]


def test_ensure_daemon_times_out(client_config) -> None:
    with pytest.raises(DaemonUnavailable):
        asyncio.run(ensure_daemon(client_config, spawn=lambda: None, timeout=0.2))


def test_stop_daemon(client_config, monkeypatch) -> None:
    assert stop_daemon(client_config) is False

    with open(client_config.pid_file_path, "w") as f:
        f.write("4242\n")
    sent = []

    def kill(pid, sig):
        sent.append((pid, sig))

    monkeypatch.setattr(os, "kill", kill)
    assert stop_daemon(client_config) is True
    assert sent[-1] == (4242, signal.SIGTERM)


class TestCli:
    @pytest.fixture(autouse=True)
    def use_config(self, monkeypatch, short_tmp, client_config):
        monkeypatch.setenv("IDASEN_CONFIG", str(short_tmp / "config.json"))
        monkeypatch.setattr(cli, "load_config", lambda: client_config)

    def test_print_config(self, capsys, client_config) -> None:
        assert cli.main(["--print-config"]) == 0
        assert json.loads(capsys.readouterr().out)["socketPath"] == client_config.socket_path

    def test_connect_to_saves_address(self, capsys, short_tmp) -> None:
        assert cli.main(["--connect-to", "E8:5B:5B:24:22:E4"]) == 0
        saved = json.loads((short_tmp / "config.json").read_text())
        assert saved["deskAddress"] == "E8:5B:5B:24:22:E4"
        assert "E8:5B:5B:24:22:E4" in capsys.readouterr().out

    def test_prompt_fragment_without_daemon_is_silent(self, capsys) -> None:
        assert cli.main(["--prompt-fragment"]) == 0
        assert capsys.readouterr().out == ""

    def test_status_json(self, capsys, monkeypatch) -> None:
        async def fake_request(config, payload, autostart=True, verbose=False):
            assert payload == {"op": "getStatus"}
            return {"ready": True, "height": 40.0, "pos": "standing", "sittingTime": 0}

        monkeypatch.setattr(cli, "request", fake_request)
        assert cli.main(["--status", "--json"]) == 0
        assert json.loads(capsys.readouterr().out)["height"] == 40.0

    def test_move_to_reports_failure(self, capsys, monkeypatch) -> None:
        async def fake_request(config, payload, autostart=True, verbose=False):
            assert payload == {"op": "moveTo", "pos": 45.0}
            return False

        monkeypatch.setattr(cli, "request", fake_request)
        assert cli.main(["--move-to", "45"]) == 1
        assert "failed" in capsys.readouterr().out

    def test_unreachable_daemon_exits_1(self, capsys, monkeypatch) -> None:
        async def fake_request(config, payload, autostart=True, verbose=False):
            raise DaemonUnavailable("no socket")

        monkeypatch.setattr(cli, "request", fake_request)
        assert cli.main(["--wait"]) == 1
        assert "no socket" in capsys.readouterr().err

    def test_stop_server_without_daemon(self, capsys) -> None:
        assert cli.main(["--stop-server"]) == 0
        assert "No daemon running" in capsys.readouterr().out
