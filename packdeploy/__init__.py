from .deploy import DeploymentOrchestrator
from .http import HttpClient
from .models import DeployRequest, DeployResult, DeploySettings, DeployStage, ManualDownload
from .process import ServeProcess

__all__ = [
    "DeployRequest",
    "DeployResult",
    "DeploySettings",
    "DeployStage",
    "DeploymentOrchestrator",
    "HttpClient",
    "ManualDownload",
    "ServeProcess",
]
