"""Provider wrapping the ``wsl.exe`` command line."""
from __future__ import annotations

import re
from collections.abc import Iterable
from dataclasses import dataclass

from ..commands import CommandError, CommandRunner


def decode_wsl_output(raw: bytes | str) -> str:
    """Decode ``wsl.exe`` output, which is UTF-16LE on most Windows builds."""
    if isinstance(raw, str):
        text = raw
    elif raw.startswith(b"\xff\xfe") or b"\x00" in raw:
        text = raw.decode("utf-16-le", errors="ignore")
    else:
        text = raw.decode("utf-8", errors="ignore")
    return text.replace("\x00", "").replace("\ufeff", "")


def parse_distribution_list(raw: bytes | str) -> list[str]:
    """Return distribution names from ``wsl --list --quiet`` output."""
    names: list[str] = []
    for line in decode_wsl_output(raw).splitlines():
        name = line.strip()
        if name:
            names.append(name)
    return names


def normalize_distribution(name: str) -> str:
    """Reduce *name* to lowercase alphanumerics for tolerant comparisons."""
    return re.sub(r"[^0-9a-z]", "", name.casefold())


def find_distribution(names: Iterable[str], target: str) -> str | None:
    """Return the registered name matching *target*, if any."""
    wanted = normalize_distribution(target)
    for name in names:
        if normalize_distribution(name) == wanted:
            return name
    return None


@dataclass(slots=True)
class WslProvider:
    """Query and manage WSL on the Windows host."""

    runner: CommandRunner
    wsl_bin: str = "wsl"

    def is_installed(self) -> bool:
        """Return ``True`` when ``wsl --status`` succeeds."""
        try:
            result = self.runner.run([self.wsl_bin, "--status"], check=False, text=False)
        except CommandError:
            return False
        return result.returncode == 0

    def install(self) -> None:
        """Install the WSL platform without a distribution."""
        self.runner.run([self.wsl_bin, "--install", "--no-distribution"], mutating=True, text=False)

    def update(self) -> None:
        """Update WSL to the latest release."""
        self.runner.run([self.wsl_bin, "--update"], mutating=True, text=False)

    def set_default_version(self, version: int) -> None:
        """Make *version* the default for new distributions."""
        self.runner.run(
            [self.wsl_bin, "--set-default-version", str(version)],
            mutating=True,
            text=False,
        )

    def list_distributions(self) -> list[str]:
        """Return registered distribution names (empty when none are installed)."""
        result = self.runner.run([self.wsl_bin, "--list", "--quiet"], check=False, text=False)
        if result.returncode != 0:
            return []
        return parse_distribution_list(result.stdout or b"")

    def install_distribution(self, name: str) -> None:
        """Launch the distribution installer in its own console."""
        self.runner.spawn([self.wsl_bin, "--install", "-d", name])

    def set_default_distribution(self, name: str) -> None:
        """Make *name* the default distribution."""
        self.runner.run([self.wsl_bin, "--set-default", name], mutating=True, text=False)


__all__ = [
    "WslProvider",
    "decode_wsl_output",
    "find_distribution",
    "normalize_distribution",
    "parse_distribution_list",
]
