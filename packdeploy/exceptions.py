from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .models import DeployStage, ManualDownload


class PackDeployError(Exception):
    """Base exception for packdeploy."""


class ConfigurationError(PackDeployError):
    """Raised when settings, the request or the pack root are invalid."""


class ToolNotFoundError(ConfigurationError):
    """Raised when an external executable cannot be located."""


class DownloadError(PackDeployError):
    """Raised when an artifact download fails."""


class PortUnavailableError(PackDeployError):
    """Raised when no usable port can be bound for the serve process."""


class ServeError(PackDeployError):
    """Raised when the serve process dies during startup."""

    def __init__(self, message: str, output: list[str] | None = None) -> None:
        super().__init__(message)
        self.output = list(output or [])


class ReadinessTimeoutError(PackDeployError):
    """Raised when the served pack manifest never becomes reachable."""


class InstallerError(PackDeployError):
    """Raised when the bootstrap installer exits with a failure code."""

    def __init__(
        self,
        message: str,
        returncode: int,
        output: str = "",
        manual_downloads: list[ManualDownload] | None = None,
    ) -> None:
        super().__init__(message)
        self.returncode = returncode
        self.output = output
        self.manual_downloads = list(manual_downloads or [])


class OverlayError(PackDeployError):
    """Raised when copying override files fails."""


class DeploymentError(PackDeployError):
    """Raised by the orchestrator once cleanup has run for a failed deployment."""

    def __init__(
        self,
        stage: DeployStage,
        cause: BaseException,
        manual_downloads: list[ManualDownload] | None = None,
    ) -> None:
        super().__init__(f"Deployment failed at {stage.label}: {cause}")
        self.stage = stage
        self.cause = cause
        self.manual_downloads = list(manual_downloads or [])
