from __future__ import annotations

from collections import deque
import os
from pathlib import Path
import subprocess
import threading
from typing import Callable


LogHandler = Callable[[str], None]

RUNNING = "running"
STOPPED = "stopped"
MAX_RECENT_LINES = 400


class ServeProcess:
    """Background ``packwiz serve`` process owned by a single deployment run.

    With ``log_path`` the output goes to that file instead of a pipe, so the
    process can outlive the interpreter that started it.
    """

    def __init__(
        self,
        process: subprocess.Popen[str],
        command: list[str],
        cwd: Path,
        port: int,
        log_handler: LogHandler | None = None,
        log_path: Path | None = None,
    ) -> None:
        self._process = process
        self.command = command
        self.cwd = cwd
        self.port = port
        self.log_path = log_path
        self._log_handler = log_handler
        self._recent_lines: deque[str] = deque(maxlen=MAX_RECENT_LINES)
        self._reader_thread: threading.Thread | None = None
        if log_path is None:
            self._reader_thread = threading.Thread(
                target=self._pump_stdout,
                name="packdeploy-serve-reader",
                daemon=True,
            )
            self._reader_thread.start()

    @classmethod
    def start(
        cls,
        command: list[str],
        cwd: Path,
        port: int,
        log_handler: LogHandler | None = None,
        log_path: Path | None = None,
    ) -> ServeProcess:
        if log_path is None:
            process = subprocess.Popen(
                command,
                cwd=str(cwd),
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                encoding="utf-8",
                errors="replace",
            )
        else:
            log_path.parent.mkdir(parents=True, exist_ok=True)
            with open(log_path, "wb") as log_file:
                process = subprocess.Popen(
                    command,
                    cwd=str(cwd),
                    stdin=subprocess.DEVNULL,
                    stdout=log_file,
                    stderr=subprocess.STDOUT,
                    start_new_session=os.name != "nt",
                )
        return cls(
            process=process,
            command=command,
            cwd=cwd,
            port=port,
            log_handler=log_handler,
            log_path=log_path,
        )

    def _pump_stdout(self) -> None:
        if self._process.stdout is None:
            return
        for line in self._process.stdout:
            line = line.rstrip("\n")
            self._recent_lines.append(line)
            if self._log_handler:
                self._log_handler(f"[serve] {line}")

    def poll(self) -> int | None:
        return self._process.poll()

    def is_alive(self) -> bool:
        return self.poll() is None

    def capture_output(self, join_timeout: float = 1.0) -> list[str]:
        """Return recent output, draining the reader first if the process exited."""
        if self.log_path is not None:
            try:
                text = self.log_path.read_text(encoding="utf-8", errors="replace")
            except OSError:
                return []
            return text.splitlines()[-MAX_RECENT_LINES:]
        if not self.is_alive() and self._reader_thread is not None:
            self._reader_thread.join(timeout=join_timeout)
        return list(self._recent_lines)

    def stop(self, timeout: float = 10.0) -> int:
        if not self.is_alive():
            code = self.poll()
            return code if code is not None else 0
        self._process.terminate()
        try:
            return self._process.wait(timeout=timeout)
        except subprocess.TimeoutExpired:
            self._process.kill()
            return self._process.wait(timeout=5)

    @property
    def state(self) -> str:
        return RUNNING if self.is_alive() else STOPPED

    @property
    def returncode(self) -> int | None:
        return self.poll()

    @property
    def pid(self) -> int:
        return self._process.pid
