import os
import random
import socket

import pytest

from packdeploy import ports
from packdeploy.exceptions import PortUnavailableError
from packdeploy.subprocess_utils import CommandResult


def test_is_port_in_use_detects_listener():
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as server:
        server.bind(("127.0.0.1", 0))
        server.listen(1)
        port = server.getsockname()[1]
        assert ports.is_port_in_use(port) is True


def test_pick_free_port_skips_occupied_candidates(monkeypatch):
    occupied = set(range(8000, 9990))
    monkeypatch.setattr(ports, "is_port_in_use", lambda port: port in occupied)

    port = ports.pick_free_port(max_attempts=10_000, rng=random.Random(7))

    assert 9990 <= port < 9999
    assert port not in occupied


def test_pick_free_port_gives_up_after_max_attempts(monkeypatch):
    probes = []

    def _always_busy(port):
        probes.append(port)
        return True

    monkeypatch.setattr(ports, "is_port_in_use", _always_busy)
    with pytest.raises(PortUnavailableError, match="No available port"):
        ports.pick_free_port(max_attempts=25, rng=random.Random(1))
    assert len(probes) == 25
    assert all(8000 <= port < 9999 for port in probes)


@pytest.mark.skipif(os.name == "nt", reason="lsof output format")
def test_find_port_owners_parses_lsof(monkeypatch):
    calls = []

    def _fake_run(command, cwd=None, timeout=None):
        calls.append(command)
        return CommandResult(returncode=0, output="1234\n5678\n1234\n\n")

    monkeypatch.setattr(ports, "run_combined", _fake_run)
    assert ports.find_port_owners(8123) == [1234, 5678]
    assert calls == [["lsof", "-t", "-iTCP:8123", "-sTCP:LISTEN"]]


def test_find_port_owners_returns_empty_when_tool_missing(monkeypatch):
    def _missing(command, cwd=None, timeout=None):
        raise FileNotFoundError(command[0])

    monkeypatch.setattr(ports, "run_combined", _missing)
    assert ports.find_port_owners(8123) == []


def test_reclaim_port_terminates_owners_once(monkeypatch):
    terminated = []
    monkeypatch.setattr(ports, "find_port_owners", lambda port: [4321])
    monkeypatch.setattr(ports, "_terminate_pid", terminated.append)
    monkeypatch.setattr(ports, "is_port_in_use", lambda port: False)
    monkeypatch.setattr(ports.time, "sleep", lambda seconds: None)

    assert ports.reclaim_port(8123) is True
    assert terminated == [4321]


def test_reclaim_port_reports_failure_when_still_bound(monkeypatch):
    messages = []
    monkeypatch.setattr(ports, "find_port_owners", lambda port: [])
    monkeypatch.setattr(ports, "is_port_in_use", lambda port: True)

    assert ports.reclaim_port(8123, log_handler=messages.append) is False
    assert any("could not identify" in message for message in messages)
