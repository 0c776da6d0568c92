from __future__ import annotations

import os
import random
import re
import signal
import socket
import subprocess
import time

from .exceptions import PortUnavailableError
from .process import LogHandler
from .subprocess_utils import run_combined


def is_port_in_use(port: int, host: str = "127.0.0.1", timeout: float = 0.5) -> bool:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.settimeout(timeout)
        return sock.connect_ex((host, port)) == 0


def pick_free_port(
    low: int = 8000,
    high: int = 9999,
    max_attempts: int = 100,
    rng: random.Random | None = None,
) -> int:
    chooser = rng or random.Random()
    for _ in range(max_attempts):
        candidate = chooser.randrange(low, high)
        if not is_port_in_use(candidate):
            return candidate
    raise PortUnavailableError(
        f"No available port found in {low}-{high - 1} after {max_attempts} attempts."
    )


_NETSTAT_LISTEN = re.compile(r"^\s*TCP\s+\S+:(\d+)\s+\S+\s+LISTENING\s+(\d+)\s*$", re.I)


def find_port_owners(port: int) -> list[int]:
    """Best-effort lookup of the pids listening on ``port``. Returns [] when unknown."""
    if os.name == "nt":
        command = ["netstat", "-ano", "-p", "tcp"]
    else:
        command = ["lsof", "-t", f"-iTCP:{port}", "-sTCP:LISTEN"]
    try:
        result = run_combined(command, timeout=10)
    except (OSError, subprocess.SubprocessError):
        return []

    pids: list[int] = []
    for line in result.output.splitlines():
        if os.name == "nt":
            match = _NETSTAT_LISTEN.match(line)
            if not match or int(match.group(1)) != port:
                continue
            value = match.group(2)
        else:
            value = line.strip()
        if value.isdigit() and int(value) > 0 and int(value) not in pids:
            pids.append(int(value))
    return pids


def _terminate_pid(pid: int) -> None:
    if os.name == "nt":
        run_combined(["taskkill", "/PID", str(pid), "/F"], timeout=10)
    else:
        os.kill(pid, signal.SIGTERM)


def reclaim_port(
    port: int,
    log_handler: LogHandler | None = None,
    settle_seconds: float = 1.0,
) -> bool:
    """Terminate whatever owns ``port`` once and report whether it is free afterwards."""
    owners = find_port_owners(port)
    if not owners and log_handler:
        log_handler(f"Warning: could not identify the process holding port {port}.")
    for pid in owners:
        if pid == os.getpid():
            continue
        if log_handler:
            log_handler(f"Stopping process {pid} holding port {port}.")
        try:
            _terminate_pid(pid)
        except (OSError, subprocess.SubprocessError) as exc:
            if log_handler:
                log_handler(f"Warning: failed to stop process {pid}: {exc}")
    if owners:
        time.sleep(settle_seconds)
    return not is_port_in_use(port)
