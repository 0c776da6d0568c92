from __future__ import annotations

from pathlib import Path, PureWindowsPath
import re

from .models import ManualDownload
from .subprocess_utils import CommandResult, run_combined

EXCLUDED_MARKER = re.compile(r"excluded from (?:the )?[\w ]*API", re.IGNORECASE)
URL_PATTERN = re.compile(r"https?://[^\s\"'<>]+")
SAVE_TO_PATTERN = re.compile(r"save (?:this|the) file to\s+(.+?)\s*$", re.IGNORECASE)
ARCHIVE_PATTERN = re.compile(r"([^\s\"'<>]+\.(?:jar|zip))\b", re.IGNORECASE)
VERSION_SUFFIX = re.compile(r"^(.+?)[-_+ ]+(?:v|mc)?\d")
DEFAULT_LOOKAHEAD = 4


def build_installer_command(
    java_path: str,
    bootstrap_jar: str,
    pack_folder: str,
    pack_url: str,
) -> list[str]:
    return [
        java_path,
        "-jar",
        bootstrap_jar,
        "-g",
        "-s",
        "server",
        "--pack-folder",
        pack_folder,
        pack_url,
    ]


def run_installer(command: list[str], cwd: Path) -> CommandResult:
    return run_combined(command, cwd=cwd)


def derive_mod_name(file_name: str) -> str:
    """``CoolMod-1.2.3.jar`` -> ``CoolMod``."""
    base = PureWindowsPath(file_name.strip().strip("\"'")).name
    stem = re.sub(r"\.(?:jar|zip|disabled)$", "", base, flags=re.IGNORECASE)
    match = VERSION_SUFFIX.match(stem)
    name = match.group(1) if match else stem
    return name.strip("-_+ ") or stem


def _trim_url(url: str) -> str:
    return url.rstrip(".,;:)]")


def _file_name_from(line: str) -> str | None:
    save_to = SAVE_TO_PATTERN.search(line)
    candidate = save_to.group(1) if save_to else None
    if candidate is None:
        archive = ARCHIVE_PATTERN.search(URL_PATTERN.sub(" ", line))
        candidate = archive.group(1) if archive else None
    if not candidate:
        return None
    name = PureWindowsPath(candidate.strip().strip("\"'").rstrip(".")).name
    return name or None


def parse_manual_downloads(
    output: str,
    lookahead: int = DEFAULT_LOOKAHEAD,
) -> list[ManualDownload]:
    """Collect mods the bootstrap installer reports as excluded from the CurseForge API.

    The installer log has no stable format, so blocks missing a URL or file name are skipped.
    """
    lines = output.splitlines()
    records: list[ManualDownload] = []
    seen: set[str] = set()
    for index, line in enumerate(lines):
        marker = EXCLUDED_MARKER.search(line)
        if not marker:
            continue
        window = [line[marker.end():], *lines[index + 1 : index + 1 + lookahead]]
        source_url: str | None = None
        file_name: str | None = None
        for candidate in window:
            if EXCLUDED_MARKER.search(candidate):
                break
            if source_url is None:
                url_match = URL_PATTERN.search(candidate)
                if url_match:
                    source_url = _trim_url(url_match.group(0))
            if file_name is None:
                file_name = _file_name_from(candidate)
            if source_url and file_name:
                break
        if not source_url or not file_name:
            continue
        mod_name = derive_mod_name(file_name)
        if mod_name in seen:
            continue
        seen.add(mod_name)
        records.append(
            ManualDownload(mod_name=mod_name, file_name=file_name, source_url=source_url)
        )
    return records
