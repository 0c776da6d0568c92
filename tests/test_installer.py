from packdeploy.installer import (
    build_installer_command,
    derive_mod_name,
    parse_manual_downloads,
)
from packdeploy.models import ManualDownload


INSTALLER_OUTPUT = """\
Loading manifest...
Failed to download modfile CoolMod
java.lang.Exception: This mod is excluded from the CurseForge API and must be downloaded manually.
Please go to https://www.curseforge.com/minecraft/mc-mods/coolmod/files/4512345 and save this file to /srv/pack/.server/mods/CoolMod-1.2.3.jar
\tat link.infra.packwiz.installer.DownloadTask.download(DownloadTask.kt:181)
Failed to download modfile Other Mod
java.lang.Exception: This mod is excluded from the CurseForge API and must be downloaded manually.
Please go to https://www.curseforge.com/minecraft/mc-mods/other-mod/files/777 and save this file to C:\\pack\\.server\\mods\\other_mod-mc1.20.1-2.0.jar
Finished with errors.
"""


def test_build_installer_command_layout():
    command = build_installer_command(
        java_path="java",
        bootstrap_jar="packwiz-installer-bootstrap.jar",
        pack_folder="../.server",
        pack_url="http://localhost:8123/pack.toml",
    )
    assert command == [
        "java",
        "-jar",
        "packwiz-installer-bootstrap.jar",
        "-g",
        "-s",
        "server",
        "--pack-folder",
        "../.server",
        "http://localhost:8123/pack.toml",
    ]


def test_derive_mod_name_strips_version_and_extension():
    assert derive_mod_name("CoolMod-1.2.3.jar") == "CoolMod"
    assert derive_mod_name("jei-1.20.1-forge-15.2.0.27.jar") == "jei"
    assert derive_mod_name("other_mod-mc1.20.1-2.0.jar") == "other_mod"
    assert derive_mod_name("Iris-Forge_v1.6.jar") == "Iris-Forge"
    assert derive_mod_name("NoVersion.jar") == "NoVersion"


def test_parse_manual_downloads_extracts_two_blocks():
    records = parse_manual_downloads(INSTALLER_OUTPUT)
    assert records == [
        ManualDownload(
            mod_name="CoolMod",
            file_name="CoolMod-1.2.3.jar",
            source_url="https://www.curseforge.com/minecraft/mc-mods/coolmod/files/4512345",
        ),
        ManualDownload(
            mod_name="other_mod",
            file_name="other_mod-mc1.20.1-2.0.jar",
            source_url="https://www.curseforge.com/minecraft/mc-mods/other-mod/files/777",
        ),
    ]


def test_parse_manual_downloads_deduplicates_by_mod_name():
    block = (
        "This mod is excluded from the CurseForge API and must be downloaded manually.\n"
        "Please go to https://example.invalid/a and save this file to mods/CoolMod-1.2.3.jar\n"
    )
    again = (
        "This mod is excluded from the CurseForge API and must be downloaded manually.\n"
        "Please go to https://example.invalid/b and save this file to mods/CoolMod-1.2.4.jar\n"
    )
    records = parse_manual_downloads(block + again)
    assert len(records) == 1
    assert records[0].source_url == "https://example.invalid/a"


def test_parse_manual_downloads_respects_lookahead():
    output = (
        "This mod is excluded from the CurseForge API\n"
        "one\ntwo\nthree\nfour\n"
        "Please go to https://example.invalid/late and save this file to mods/Late-1.0.jar\n"
    )
    assert parse_manual_downloads(output) == []
    assert parse_manual_downloads(output, lookahead=5)[0].mod_name == "Late"


def test_parse_manual_downloads_ignores_incomplete_blocks():
    output = "This mod is excluded from the CurseForge API\nNo link here\n"
    assert parse_manual_downloads(output) == []
    assert parse_manual_downloads("Everything installed.\n") == []
