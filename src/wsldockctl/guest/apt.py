"""Provider wrapping ``apt-get`` and ``dpkg-query``."""
from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass

from ..commands import CommandRunner

APT_ENV = {"DEBIAN_FRONTEND": "noninteractive"}


@dataclass(slots=True)
class AptProvider:
    """Query and change the guest's installed packages."""

    runner: CommandRunner
    apt_get_bin: str = "apt-get"
    dpkg_query_bin: str = "dpkg-query"

    def is_installed(self, package: str) -> bool:
        """Return ``True`` when *package* is fully installed (exact name)."""
        result = self.runner.run(
            [self.dpkg_query_bin, "-W", "-f=${Status}", package],
            check=False,
        )
        return result.returncode == 0 and "install ok installed" in str(result.stdout or "")

    def installed_subset(self, packages: Iterable[str]) -> list[str]:
        """Return the members of *packages* that are installed, in order."""
        return [package for package in packages if self.is_installed(package)]

    def missing(self, packages: Iterable[str]) -> list[str]:
        """Return the members of *packages* that are not installed, in order."""
        return [package for package in packages if not self.is_installed(package)]

    def update(self) -> None:
        """Refresh the package index."""
        self._apt_get(["update"], refresh=True)

    def upgradable_count(self) -> int:
        """Return how many packages ``apt-get upgrade`` would install."""
        result = self.runner.run([self.apt_get_bin, "-s", "upgrade"], env=APT_ENV)
        return sum(
            1 for line in str(result.stdout or "").splitlines() if line.startswith("Inst ")
        )

    def upgrade(self) -> None:
        """Upgrade every installed package."""
        self._apt_get(["upgrade", "-y"])

    def install(self, packages: Sequence[str]) -> None:
        """Install *packages*."""
        self._apt_get(["install", "-y", *packages])

    def remove(self, packages: Sequence[str]) -> None:
        """Remove *packages*."""
        self._apt_get(["remove", "-y", *packages])

    def autoremove(self) -> None:
        """Remove dependencies nothing needs any more."""
        self._apt_get(["autoremove", "-y"])

    def _apt_get(self, args: Sequence[str], *, refresh: bool = False) -> None:
        self.runner.run(
            [self.apt_get_bin, *args],
            privileged=True,
            mutating=not refresh,
            refresh=refresh,
            env=APT_ENV,
        )


__all__ = ["APT_ENV", "AptProvider"]
