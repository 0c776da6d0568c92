from __future__ import annotations

import os
from pathlib import Path
import shutil
import subprocess
import time
from typing import Callable

from . import ports
from .exceptions import (
    ConfigurationError,
    DeploymentError,
    InstallerError,
    PackDeployError,
    PortUnavailableError,
    ReadinessTimeoutError,
    ServeError,
    ToolNotFoundError,
)
from .http import HttpClient
from .installer import build_installer_command, parse_manual_downloads, run_installer
from .models import (
    PACK_MANIFEST,
    DeployContext,
    DeployRequest,
    DeployResult,
    DeploySettings,
    DeployStage,
)
from .overlay import apply_overlay
from .process import STOPPED, LogHandler, ServeProcess
from .subprocess_utils import CommandResult

ProcessFactory = Callable[..., ServeProcess]
InstallerRunner = Callable[[list[str], Path], CommandResult]


class DeploymentOrchestrator:
    """Runs the packwiz server deployment pipeline and owns the serve process it starts."""

    def __init__(
        self,
        settings: DeploySettings | None = None,
        http_client: HttpClient | None = None,
        process_factory: ProcessFactory | None = None,
        installer_runner: InstallerRunner | None = None,
        sleep: Callable[[float], None] = time.sleep,
        log_handler: LogHandler | None = None,
    ) -> None:
        self.settings = settings or DeploySettings()
        self.http_client = http_client or HttpClient()
        self._process_factory = process_factory or ServeProcess.start
        self._installer_runner = installer_runner or run_installer
        self._sleep = sleep
        self._log_handler = log_handler

    def _log(self, message: str) -> None:
        if self._log_handler:
            self._log_handler(message)

    def _pipeline(self) -> list[tuple[DeployStage, Callable[[DeployContext], None]]]:
        return [
            (DeployStage.INIT, self._preflight),
            (DeployStage.PORT_SELECTED, self._select_port),
            (DeployStage.DIRS_READY, self._prepare_directories),
            (DeployStage.ARTIFACT_READY, self._acquire_bootstrap),
            (DeployStage.SERVING, self._start_serving),
            (DeployStage.SERVER_CONFIRMED_READY, self._await_ready),
            (DeployStage.INSTALLED, self._run_installer),
            (DeployStage.OVERLAID, self._apply_overlay),
        ]

    def create_context(self, request: DeployRequest) -> DeployContext:
        root = Path(self.settings.root).resolve()
        install_dir = Path(request.install_dir)
        if not install_dir.is_absolute():
            install_dir = root / install_dir
        bin_dir = root / self.settings.bin_dir_name
        return DeployContext(
            request=request,
            root=root,
            bin_dir=bin_dir,
            install_dir=install_dir.resolve(),
            overrides_dir=root / self.settings.overrides_dir_name,
            bootstrap_jar=bin_dir / self.settings.bootstrap_name,
        )

    def run(self, request: DeployRequest) -> DeployResult:
        self.settings.validate()
        context = self.create_context(request)
        pipeline = self._pipeline()
        attempting = DeployStage.INIT
        succeeded = False
        try:
            for index, (stage, step) in enumerate(pipeline, start=1):
                attempting = stage
                self._log(f"[{index}/{len(pipeline)}] {stage.label}")
                step(context)
                context.stage = stage
            succeeded = True
        except PackDeployError as exc:
            context.stage = DeployStage.FAILED
            raise DeploymentError(attempting, exc, context.manual_downloads) from exc
        finally:
            if context.process is not None:
                self._cleanup(context, stop=not (succeeded and request.keep_serving))

        context.stage = DeployStage.TERMINATED
        self._log(f"Deployment complete: {context.install_dir}")
        return self._build_result(context)

    def _preflight(self, context: DeployContext) -> None:
        if not (context.root / PACK_MANIFEST).is_file():
            raise ConfigurationError(
                f"No {PACK_MANIFEST} found in {context.root}; run from the pack root or pass --root."
            )
        self._require_tool(self.settings.packwiz_path, "packwiz")
        self._require_tool(self.settings.java_path, "java")

    @staticmethod
    def _require_tool(path: str, name: str) -> str:
        resolved = shutil.which(path)
        if resolved:
            return resolved
        if Path(path).is_file():
            return path
        raise ToolNotFoundError(f"Could not find {name} executable '{path}'.")

    def _select_port(self, context: DeployContext) -> None:
        if context.request.port:
            context.port = context.request.port
            self._log(f"Using requested port {context.port}.")
            return
        low, high = self.settings.port_range
        context.port = ports.pick_free_port(
            low=low,
            high=high,
            max_attempts=self.settings.max_port_attempts,
        )
        self._log(f"Selected free port {context.port}.")

    def _prepare_directories(self, context: DeployContext) -> None:
        for directory in (context.bin_dir, context.install_dir):
            try:
                directory.mkdir(parents=True, exist_ok=True)
            except OSError as exc:
                raise ConfigurationError(f"Cannot create directory {directory}: {exc}") from exc

    def _acquire_bootstrap(self, context: DeployContext) -> None:
        jar = context.bootstrap_jar
        if context.request.skip_download and jar.is_file():
            self._log(f"Reusing existing {jar.name}.")
            return
        if context.request.skip_download:
            self._log(f"{jar.name} is missing; downloading despite --skip-download.")
        self._log(f"Downloading {self.settings.bootstrap_url}")
        self.http_client.download(self.settings.bootstrap_url, jar)

    def _start_serving(self, context: DeployContext) -> None:
        if context.process is not None:
            raise ServeError("A packwiz serve process is already running for this deployment.")
        port = self._require_port(context)
        if ports.is_port_in_use(port):
            self._log(f"Port {port} is in use; attempting to reclaim it.")
            if not ports.reclaim_port(port, log_handler=self._log_handler):
                raise PortUnavailableError(f"Port {port} is still in use after reclaim attempt.")

        command = [self.settings.packwiz_path, "serve", "--port", str(port)]
        log_path = None
        if context.request.keep_serving:
            log_path = context.bin_dir / self.settings.serve_log_name
        try:
            context.process = self._process_factory(
                command=command,
                cwd=context.root,
                port=port,
                log_handler=self._log_handler,
                log_path=log_path,
            )
        except OSError as exc:
            raise ServeError(f"Failed to start {' '.join(command)}: {exc}") from exc
        self._log(f"Started packwiz serve (pid {context.process.pid}) on port {port}.")
        if log_path is not None:
            self._log(f"packwiz serve output is written to {log_path}.")

        self._sleep(self.settings.settle_delay)
        if not context.process.is_alive():
            output = context.process.capture_output()
            details = "\n".join(output[-20:]) or "(no output)"
            raise ServeError(
                f"packwiz serve exited with code {context.process.returncode}:\n{details}",
                output=output,
            )

    def _await_ready(self, context: DeployContext) -> None:
        url = context.serve_url
        attempts = self.settings.readiness_attempts
        for attempt in range(1, attempts + 1):
            status = self.http_client.get_status(url, timeout=self.settings.readiness_timeout)
            if status == 200:
                self._log(f"{url} is ready.")
                return
            reason = f"HTTP {status}" if status is not None else "no response"
            self._log(f"Waiting for {url} ({attempt}/{attempts}): {reason}")
            if context.process is not None and not context.process.is_alive():
                raise ServeError(
                    f"packwiz serve exited with code {context.process.returncode} "
                    "while waiting for it to become ready.",
                    output=context.process.capture_output(),
                )
            self._sleep(self.settings.readiness_interval)
        raise ReadinessTimeoutError(f"{url} did not return HTTP 200 after {attempts} attempts.")

    def _run_installer(self, context: DeployContext) -> None:
        pack_folder = os.path.relpath(context.install_dir, context.bin_dir)
        command = build_installer_command(
            java_path=self.settings.java_path,
            bootstrap_jar=context.bootstrap_jar.name,
            pack_folder=pack_folder,
            pack_url=context.serve_url,
        )
        try:
            result = self._installer_runner(command, context.bin_dir)
        except (OSError, subprocess.SubprocessError) as exc:
            raise InstallerError(f"Failed to run bootstrap installer: {exc}", returncode=-1) from exc
        for line in result.output.splitlines():
            self._log(f"[installer] {line}")
        if result.ok:
            return

        manual = parse_manual_downloads(result.output)
        context.manual_downloads.extend(manual)
        for record in manual:
            self._log(f"Manual download required: {record.mod_name} -> {record.source_url}")
        raise InstallerError(
            f"Bootstrap installer exited with code {result.returncode}.",
            returncode=result.returncode,
            output=result.output,
            manual_downloads=manual,
        )

    def _apply_overlay(self, context: DeployContext) -> None:
        context.overlay_applied = apply_overlay(context.overrides_dir, context.install_dir)
        if context.overlay_applied:
            self._log(f"Copied overrides from {context.overrides_dir}.")
        else:
            note = f"No overrides directory at {context.overrides_dir}; skipped overlay."
            context.notes.append(note)
            self._log(note)

    def _cleanup(self, context: DeployContext, stop: bool) -> None:
        process = context.process
        try:
            if not stop:
                note = (
                    f"packwiz serve left running on port {process.port} (pid {process.pid}); "
                    "stop it manually when finished."
                )
                if process.log_path is not None:
                    note += f" Output is written to {process.log_path}."
                context.notes.append(note)
                self._log(note)
                return
            code = process.stop(timeout=self.settings.stop_timeout)
            self._log(f"Stopped packwiz serve (pid {process.pid}, exit code {code}).")
        except Exception as exc:  # noqa: BLE001
            self._log(f"Warning: failed to stop packwiz serve (pid {process.pid}): {exc}")

    @staticmethod
    def _require_port(context: DeployContext) -> int:
        if context.port is None:
            raise PortUnavailableError("No port was selected before starting packwiz serve.")
        return context.port

    @staticmethod
    def _build_result(context: DeployContext) -> DeployResult:
        process = context.process
        return DeployResult(
            install_dir=context.install_dir,
            port=context.port or 0,
            serve_url=context.serve_url or "",
            serve_state=process.state if process is not None else STOPPED,
            serve_pid=process.pid if process is not None else None,
            overlay_applied=context.overlay_applied,
            notes=list(context.notes),
            manual_downloads=list(context.manual_downloads),
        )
