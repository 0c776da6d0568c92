from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
import subprocess


@dataclass(slots=True)
class CommandResult:
    returncode: int
    output: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0


def run_combined(
    command: list[str],
    cwd: Path | None = None,
    timeout: float | None = None,
) -> CommandResult:
    """Run ``command`` to completion, capturing stdout and stderr as one stream."""
    process = subprocess.run(
        command,
        cwd=str(cwd) if cwd is not None else None,
        stdin=subprocess.DEVNULL,
        stdout=subprocess.PIPE,
        stderr=subprocess.STDOUT,
        text=True,
        encoding="utf-8",
        errors="replace",
        timeout=timeout,
    )
    return CommandResult(returncode=process.returncode, output=process.stdout or "")
