"""Docker apt repository registration.

Registration trusts a third-party signing key, so it is all-or-nothing. The
key and the sources file are copied aside first; when any stage fails, files
this run created are removed and files that were already present are
restored before the error propagates.
"""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from ..commands import CommandRunner
from ..config import GuestConfig
from ..pipeline.models import ProvisionError
from .apt import AptProvider


class RepositoryError(ProvisionError):
    """Raised when the Docker repository cannot be registered."""


@dataclass(slots=True)
class DockerRepository:
    """Manage the signing key and sources entry for Docker's apt repository."""

    runner: CommandRunner
    apt: AptProvider
    config: GuestConfig
    curl_bin: str = "curl"
    gpg_bin: str = "gpg"

    def definition_line(self, arch: str, codename: str) -> str:
        """Return the ``deb`` line for *arch* and *codename*."""
        return (
            f"deb [arch={arch} signed-by={self.config.key_path}] "
            f"{self.config.repo_url} {codename} {self.config.channel}"
        )

    def is_registered(self, line: str) -> bool:
        """Return ``True`` when the key exists and the sources file holds *line*.

        Whitespace between fields is not significant to apt, so lines are
        compared token by token.
        """
        if not self.config.key_path.exists():
            return False
        try:
            current = self.config.sources_file.read_text(encoding="utf-8")
        except OSError:
            return False
        return current.split() == line.split()

    def register(self, line: str) -> None:
        """Install the signing key, write *line* and refresh the package index."""
        backups = self._backup()
        try:
            self._register(line)
        except ProvisionError as exc:
            self._rollback(backups)
            raise RepositoryError(
                f"Docker repository registration failed: {exc}",
                remediation=(
                    "Check network access to "
                    f"{self.config.key_url} and re-run `wsldockctl guest`."
                ),
            ) from exc
        for backup in backups.values():
            self.runner.remove_file(backup, privileged=True)

    def _register(self, line: str) -> None:
        key_path = self.config.key_path
        self.runner.run(
            ["install", "-m", "0755", "-d", str(self.config.keyrings_dir)],
            privileged=True,
            mutating=True,
        )
        download = self.runner.run([self.curl_bin, "-fsSL", self.config.key_url], text=False)
        key_data = download.stdout or b""
        if not key_data and not self.runner.dry_run:
            raise RepositoryError(f"{self.config.key_url} returned an empty signing key.")
        self.runner.run(
            [self.gpg_bin, "--batch", "--yes", "--dearmor", "-o", str(key_path)],
            privileged=True,
            mutating=True,
            input=key_data,
            text=False,
        )
        self.runner.run(["chmod", "a+r", str(key_path)], privileged=True, mutating=True)
        self.runner.write_text(self.config.sources_file, line + "\n", privileged=True, mode=0o644)
        self.apt.update()

    def _managed_paths(self) -> tuple[Path, Path]:
        return (self.config.sources_file, self.config.key_path)

    def _backup(self) -> dict[Path, Path]:
        backups: dict[Path, Path] = {}
        for path in self._managed_paths():
            if path.exists():
                backup = path.with_name(f"{path.name}.wsldockctl-backup")
                self.runner.copy_file(path, backup, privileged=True)
                backups[path] = backup
        return backups

    def _rollback(self, backups: dict[Path, Path]) -> None:
        for path in self._managed_paths():
            backup = backups.get(path)
            if backup is None:
                self.runner.remove_file(path, privileged=True)
                continue
            self.runner.copy_file(backup, path, privileged=True)
            self.runner.remove_file(backup, privileged=True)


__all__ = ["DockerRepository", "RepositoryError"]
