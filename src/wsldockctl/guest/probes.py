"""Read-only queries against the WSL guest."""
from __future__ import annotations

import getpass
import os
import pwd
from collections.abc import Mapping
from enum import Enum
from pathlib import Path

from ..commands import CommandError, CommandRunner
from ..pipeline.models import ProvisionError

OS_RELEASE = Path("/etc/os-release")


class GuestProbeError(ProvisionError):
    """Raised when guest state cannot be determined."""


class WslGeneration(str, Enum):
    """Which WSL kernel (if any) the guest runs on."""

    NONE = "none"
    WSL1 = "wsl1"
    WSL2 = "wsl2"


def detect_wsl_generation(proc_version: str) -> WslGeneration:
    """Classify the contents of ``/proc/version``."""
    marker = proc_version.lower()
    if "microsoft" not in marker:
        return WslGeneration.NONE
    if "wsl2" in marker:
        return WslGeneration.WSL2
    return WslGeneration.WSL1


def _read_text(path: Path) -> str:
    try:
        return path.read_text(encoding="utf-8", errors="replace")
    except OSError:
        return ""


def read_proc_version(path: Path) -> str:
    """Return the kernel identity string, or an empty string when unreadable."""
    return _read_text(path)


def invoking_user(env: Mapping[str, str] | None = None) -> str:
    """Return the user the provisioner acts for (the sudo caller when elevated)."""
    environ = os.environ if env is None else env
    sudo_user = environ.get("SUDO_USER", "").strip()
    if sudo_user and sudo_user != "root":
        return sudo_user
    return getpass.getuser()


def user_home(user: str) -> Path:
    """Return *user*'s home directory from the passwd database."""
    try:
        return Path(pwd.getpwnam(user).pw_dir)
    except KeyError:
        return Path.home()


def dpkg_architecture(runner: CommandRunner) -> str:
    """Return the Debian architecture name (``amd64``, ``arm64``...)."""
    result = runner.run(["dpkg", "--print-architecture"])
    arch = str(result.stdout or "").strip()
    if not arch:
        raise GuestProbeError("dpkg did not report an architecture.")
    return arch


def distribution_codename(runner: CommandRunner, os_release: Path = OS_RELEASE) -> str:
    """Return the release codename, preferring ``lsb_release -cs``."""
    try:
        result = runner.run(["lsb_release", "-cs"])
    except CommandError:
        result = None
    if result is not None:
        codename = str(result.stdout or "").strip()
        if codename:
            return codename
    values = parse_os_release(_read_text(os_release))
    codename = values.get("UBUNTU_CODENAME") or values.get("VERSION_CODENAME") or ""
    if not codename:
        raise GuestProbeError(
            "Unable to determine the distribution codename.",
            remediation="Install lsb-release and try again.",
        )
    return codename


def parse_os_release(text: str) -> dict[str, str]:
    """Parse ``KEY=value`` pairs from an os-release file."""
    values: dict[str, str] = {}
    for line in text.splitlines():
        line = line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, _, value = line.partition("=")
        values[key.strip()] = value.strip().strip('"').strip("'")
    return values


__all__ = [
    "GuestProbeError",
    "WslGeneration",
    "detect_wsl_generation",
    "distribution_codename",
    "dpkg_architecture",
    "invoking_user",
    "parse_os_release",
    "read_proc_version",
    "user_home",
]
