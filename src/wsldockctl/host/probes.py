"""Read-only queries against the Windows host.

Nothing in this module mutates host state. Registry access goes through a
:class:`RegistryReader` so the restart checks can run (and be tested) on
machines without ``winreg``.
"""
from __future__ import annotations

import platform
from collections.abc import Callable
from dataclasses import dataclass
from typing import Protocol

from packaging.version import InvalidVersion, Version

from ..pipeline.models import ProvisionError


class HostProbeError(ProvisionError):
    """Raised when host state cannot be determined."""


@dataclass(slots=True, frozen=True)
class WindowsVersion:
    """Major/minor/build triple reported by Windows."""

    major: int
    minor: int
    build: int

    def __str__(self) -> str:
        return f"{self.major}.{self.minor}.{self.build}"

    @classmethod
    def parse(cls, raw: str) -> WindowsVersion:
        """Parse strings such as ``10.0.19045``."""
        try:
            version = Version(raw.strip())
        except InvalidVersion as exc:
            raise HostProbeError(f"Unrecognised Windows version string: {raw!r}") from exc
        release = version.release + (0, 0)
        return cls(major=release[0], minor=release[1], build=release[2])


def meets_minimum(version: WindowsVersion, *, min_major: int, min_build: int) -> bool:
    """Return ``True`` when *version* is new enough to host WSL2."""
    if version.major < min_major:
        return False
    if version.major == min_major and version.build < min_build:
        return False
    return True


def read_windows_version(
    system: Callable[[], str] = platform.system,
    version: Callable[[], str] = platform.version,
) -> WindowsVersion:
    """Return the running Windows version."""
    name = system()
    if name != "Windows":
        raise HostProbeError(
            f"The host provisioner must run on Windows (detected {name or 'unknown'}).",
            remediation="Run `wsldockctl host` from PowerShell on the Windows host.",
        )
    return WindowsVersion.parse(version())


class RegistryReader(Protocol):
    """Minimal registry access used by the restart probes."""

    def key_exists(self, path: str) -> bool:
        """Return ``True`` when the HKLM key *path* exists."""
        ...

    def read_value(self, path: str, name: str) -> object | None:
        """Return the HKLM value *name* under *path*, or ``None`` when absent."""
        ...


class WinRegReader:
    """:class:`RegistryReader` backed by the standard ``winreg`` module."""

    def key_exists(self, path: str) -> bool:
        winreg = self._winreg()
        try:
            with winreg.OpenKey(winreg.HKEY_LOCAL_MACHINE, path):
                return True
        except FileNotFoundError:
            return False

    def read_value(self, path: str, name: str) -> object | None:
        winreg = self._winreg()
        try:
            with winreg.OpenKey(winreg.HKEY_LOCAL_MACHINE, path) as key:
                value, _kind = winreg.QueryValueEx(key, name)
        except FileNotFoundError:
            return None
        return value

    @staticmethod
    def _winreg():  # type: ignore[no-untyped-def]
        try:
            import winreg
        except ImportError as exc:
            raise HostProbeError("The Windows registry is not available on this platform.") from exc
        return winreg


CBS_REBOOT_PENDING = (
    r"SOFTWARE\Microsoft\Windows\CurrentVersion\Component Based Servicing\RebootPending"
)
WU_REBOOT_REQUIRED = (
    r"SOFTWARE\Microsoft\Windows\CurrentVersion\WindowsUpdate\Auto Update\RebootRequired"
)
SESSION_MANAGER = r"SYSTEM\CurrentControlSet\Control\Session Manager"
PENDING_FILE_RENAMES = "PendingFileRenameOperations"


def pending_restart_indicators(reader: RegistryReader) -> list[str]:
    """Return the names of every restart indicator currently set."""
    indicators: list[str] = []
    if reader.key_exists(CBS_REBOOT_PENDING):
        indicators.append("component-based-servicing")
    if reader.key_exists(WU_REBOOT_REQUIRED):
        indicators.append("windows-update")
    renames = reader.read_value(SESSION_MANAGER, PENDING_FILE_RENAMES)
    if renames:
        indicators.append("pending-file-rename")
    return indicators


def is_restart_pending(reader: RegistryReader) -> bool:
    """Return ``True`` when any restart indicator is set."""
    return bool(pending_restart_indicators(reader))


__all__ = [
    "HostProbeError",
    "RegistryReader",
    "WinRegReader",
    "WindowsVersion",
    "is_restart_pending",
    "meets_minimum",
    "pending_restart_indicators",
    "read_windows_version",
]
