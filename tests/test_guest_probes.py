"""Tests for the read-only guest probes."""
from __future__ import annotations

from pathlib import Path

import pytest
from conftest import ScriptedExecutor

from wsldockctl.commands import CommandRunner
from wsldockctl.guest.probes import (
    GuestProbeError,
    WslGeneration,
    detect_wsl_generation,
    distribution_codename,
    dpkg_architecture,
    invoking_user,
    parse_os_release,
    read_proc_version,
)


@pytest.mark.parametrize(
    ("proc_version", "expected"),
    [
        ("Linux version 5.15.153.1-microsoft-standard-WSL2 (gcc)", WslGeneration.WSL2),
        ("Linux version 4.4.0-19041-Microsoft (Microsoft@Microsoft.com)", WslGeneration.WSL1),
        ("Linux version 6.8.0-45-generic (buildd@lcy02-amd64)", WslGeneration.NONE),
        ("", WslGeneration.NONE),
    ],
)
def test_detect_wsl_generation(proc_version: str, expected: WslGeneration) -> None:
    """The kernel string decides between WSL2, WSL1 and neither."""
    assert detect_wsl_generation(proc_version) is expected


def test_read_proc_version_missing_file(tmp_path: Path) -> None:
    """An unreadable file reads as empty, which classifies as no WSL."""
    assert read_proc_version(tmp_path / "missing") == ""


def test_invoking_user_prefers_sudo_caller() -> None:
    """Under sudo the provisioner acts for the original user."""
    assert invoking_user({"SUDO_USER": "alice"}) == "alice"


def test_invoking_user_ignores_root_sudo_user(monkeypatch: pytest.MonkeyPatch) -> None:
    """SUDO_USER=root falls back to the login name."""
    monkeypatch.setattr("wsldockctl.guest.probes.getpass.getuser", lambda: "bob")

    assert invoking_user({"SUDO_USER": "root"}) == "bob"


def test_dpkg_architecture(scripted: ScriptedExecutor) -> None:
    scripted.on("dpkg", "--print-architecture", stdout="arm64\n")

    assert dpkg_architecture(CommandRunner(executor=scripted)) == "arm64"


def test_distribution_codename_from_lsb_release(scripted: ScriptedExecutor) -> None:
    scripted.on("lsb_release", "-cs", stdout="noble\n")

    assert distribution_codename(CommandRunner(executor=scripted)) == "noble"


def test_distribution_codename_falls_back_to_os_release(
    scripted: ScriptedExecutor, tmp_path: Path
) -> None:
    """Without lsb_release the os-release file supplies the codename."""
    scripted.on("lsb_release", missing=True)
    os_release = tmp_path / "os-release"
    os_release.write_text(
        'NAME="Ubuntu"\nVERSION_CODENAME=jammy\nUBUNTU_CODENAME=jammy\n',
        encoding="utf-8",
    )

    assert distribution_codename(CommandRunner(executor=scripted), os_release) == "jammy"


def test_distribution_codename_unknown(scripted: ScriptedExecutor, tmp_path: Path) -> None:
    scripted.on("lsb_release", returncode=127)

    with pytest.raises(GuestProbeError):
        distribution_codename(CommandRunner(executor=scripted), tmp_path / "missing")


def test_parse_os_release_strips_quotes() -> None:
    values = parse_os_release("# comment\nID=ubuntu\nPRETTY_NAME='Ubuntu 22.04.4 LTS'\n")

    assert values == {"ID": "ubuntu", "PRETTY_NAME": "Ubuntu 22.04.4 LTS"}
