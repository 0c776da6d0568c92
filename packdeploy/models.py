from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

from .exceptions import ConfigurationError
from .process import ServeProcess

BOOTSTRAP_URL = (
    "https://github.com/packwiz/packwiz-installer-bootstrap/releases/latest/download/"
    "packwiz-installer-bootstrap.jar"
)
BOOTSTRAP_NAME = "packwiz-installer-bootstrap.jar"
PACK_MANIFEST = "pack.toml"


class DeployStage(Enum):
    INIT = "init"
    PORT_SELECTED = "port-selected"
    DIRS_READY = "dirs-ready"
    ARTIFACT_READY = "artifact-ready"
    SERVING = "serving"
    SERVER_CONFIRMED_READY = "server-confirmed-ready"
    INSTALLED = "installed"
    OVERLAID = "overlaid"
    TERMINATED = "terminated"
    FAILED = "failed"

    @property
    def label(self) -> str:
        return _STAGE_LABELS[self]


_STAGE_LABELS = {
    DeployStage.INIT: "preflight checks",
    DeployStage.PORT_SELECTED: "port selection",
    DeployStage.DIRS_READY: "directory setup",
    DeployStage.ARTIFACT_READY: "bootstrap download",
    DeployStage.SERVING: "packwiz serve startup",
    DeployStage.SERVER_CONFIRMED_READY: "readiness polling",
    DeployStage.INSTALLED: "bootstrap installer",
    DeployStage.OVERLAID: "overrides overlay",
    DeployStage.TERMINATED: "cleanup",
    DeployStage.FAILED: "failure",
}


@dataclass(frozen=True, slots=True)
class DeployRequest:
    port: int = 0
    skip_download: bool = False
    keep_serving: bool = False
    install_dir: Path = Path(".server")

    def __post_init__(self) -> None:
        if isinstance(self.port, bool) or not isinstance(self.port, int):
            raise ConfigurationError(f"Port must be an integer, got {self.port!r}.")
        if not 0 <= self.port <= 65535:
            raise ConfigurationError(f"Port {self.port} is outside 0-65535.")
        if not str(self.install_dir).strip():
            raise ConfigurationError("Install directory cannot be empty.")


@dataclass(slots=True)
class DeploySettings:
    root: Path = Path(".")
    bin_dir_name: str = ".bin"
    overrides_dir_name: str = "server"
    packwiz_path: str = "packwiz"
    java_path: str = "java"
    bootstrap_url: str = BOOTSTRAP_URL
    bootstrap_name: str = BOOTSTRAP_NAME
    serve_log_name: str = "packwiz-serve.log"
    port_range: tuple[int, int] = (8000, 9999)
    max_port_attempts: int = 100
    settle_delay: float = 3.0
    readiness_attempts: int = 10
    readiness_interval: float = 2.0
    readiness_timeout: float = 5.0
    stop_timeout: float = 10.0

    def validate(self) -> None:
        for name in ("packwiz_path", "java_path", "bin_dir_name", "bootstrap_name", "serve_log_name"):
            value = str(getattr(self, name)).strip()
            if not value:
                raise ConfigurationError(f"Setting '{name}' cannot be empty.")
            if any(char in value for char in ("\x00", "\r", "\n")):
                raise ConfigurationError(f"Setting '{name}' contains unsupported characters.")
        low, high = self.port_range
        if not 1 <= low < high <= 65536:
            raise ConfigurationError(f"Invalid port range {low}-{high}.")
        if self.max_port_attempts < 1:
            raise ConfigurationError("max_port_attempts must be at least 1.")
        if self.readiness_attempts < 1:
            raise ConfigurationError("readiness_attempts must be at least 1.")
        for name in ("settle_delay", "readiness_interval", "readiness_timeout", "stop_timeout"):
            if getattr(self, name) < 0:
                raise ConfigurationError(f"Setting '{name}' cannot be negative.")


@dataclass(frozen=True, slots=True)
class ManualDownload:
    mod_name: str
    file_name: str
    source_url: str

    def to_dict(self) -> dict[str, str]:
        return {
            "mod_name": self.mod_name,
            "file_name": self.file_name,
            "source_url": self.source_url,
        }


@dataclass(slots=True)
class DeployContext:
    """Per-run state handed from step to step by the orchestrator."""

    request: DeployRequest
    root: Path
    bin_dir: Path
    install_dir: Path
    overrides_dir: Path
    bootstrap_jar: Path
    stage: DeployStage = DeployStage.INIT
    port: int | None = None
    process: ServeProcess | None = None
    overlay_applied: bool = False
    manual_downloads: list[ManualDownload] = field(default_factory=list)
    notes: list[str] = field(default_factory=list)

    @property
    def serve_url(self) -> str | None:
        if self.port is None:
            return None
        return f"http://localhost:{self.port}/{PACK_MANIFEST}"


@dataclass(slots=True)
class DeployResult:
    install_dir: Path
    port: int
    serve_url: str
    serve_state: str
    serve_pid: int | None = None
    overlay_applied: bool = False
    notes: list[str] = field(default_factory=list)
    manual_downloads: list[ManualDownload] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "install_dir": str(self.install_dir),
            "port": self.port,
            "serve_url": self.serve_url,
            "serve_state": self.serve_state,
            "serve_pid": self.serve_pid,
            "overlay_applied": self.overlay_applied,
            "notes": list(self.notes),
            "manual_downloads": [item.to_dict() for item in self.manual_downloads],
        }
