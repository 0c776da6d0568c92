from __future__ import annotations

import argparse
import json
from pathlib import Path
import sys

from .deploy import DeploymentOrchestrator
from .exceptions import DeploymentError, PackDeployError
from .models import DeployRequest, DeploySettings


def _print_manual_downloads(error: DeploymentError) -> None:
    if not error.manual_downloads:
        return
    print(
        "The following mods must be downloaded manually and placed in the mods folder:",
        file=sys.stderr,
    )
    for record in error.manual_downloads:
        print(f"  - {record.mod_name} ({record.file_name}): {record.source_url}", file=sys.stderr)


def _cmd_deploy(args: argparse.Namespace) -> int:
    log_stream = sys.stderr if args.json else sys.stdout

    def _log(line: str) -> None:
        print(line, file=log_stream, flush=True)

    settings = DeploySettings(
        root=Path(args.root).resolve(),
        packwiz_path=args.packwiz,
        java_path=args.java,
        max_port_attempts=args.max_port_attempts,
    )
    request = DeployRequest(
        port=args.port,
        skip_download=args.skip_download,
        keep_serving=args.keep_serving,
        install_dir=Path(args.install_dir),
    )
    orchestrator = DeploymentOrchestrator(settings=settings, log_handler=_log)
    result = orchestrator.run(request)
    if args.json:
        print(json.dumps(result.to_dict(), indent=2))
    else:
        print(f"Server files installed to {result.install_dir}")
        if result.serve_state == "running":
            print(f"packwiz serve is still running on port {result.port} (pid {result.serve_pid}).")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="packdeploy",
        description="Build a Minecraft server directory from a packwiz modpack.",
    )
    parser.add_argument(
        "--port",
        type=int,
        default=0,
        help="Port for packwiz serve (default: 0, pick a free port in 8000-9998).",
    )
    parser.add_argument(
        "--skip-download",
        action="store_true",
        help="Reuse the bootstrap installer jar if it already exists.",
    )
    parser.add_argument(
        "--keep-serving",
        action="store_true",
        help="Leave packwiz serve running after a successful deployment.",
    )
    parser.add_argument(
        "--install-dir",
        default=".server",
        help="Directory the server is installed into, relative to the pack root (default: .server).",
    )
    parser.add_argument(
        "--root",
        default=".",
        help="Pack root containing pack.toml (default: current directory).",
    )
    parser.add_argument("--java", default="java", help="Java executable path.")
    parser.add_argument("--packwiz", default="packwiz", help="packwiz executable path.")
    parser.add_argument(
        "--max-port-attempts",
        type=int,
        default=100,
        help="How many random ports to probe before giving up (default: 100).",
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="Print the deployment result as JSON.",
    )
    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    try:
        return _cmd_deploy(args)
    except DeploymentError as exc:
        print(f"Deployment failed at {exc.stage.label}: {exc.cause}", file=sys.stderr)
        _print_manual_downloads(exc)
        return 1
    except PackDeployError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
