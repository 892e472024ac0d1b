"""External command execution shared by every provisioner.

All interaction with ``wsl``, ``apt-get``, ``systemctl`` and friends goes
through :class:`CommandRunner`. The runner prefixes privileged commands with
``sudo`` when the process is not root, honours dry-run mode for mutating
commands and keeps a history of everything it executed so callers (and tests)
can tell whether a run changed anything.
"""
from __future__ import annotations

import os
import shutil
import subprocess
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path

from .pipeline.models import ProvisionError


class CommandError(ProvisionError):
    """Raised when an external command fails or cannot be found."""

    def __init__(
        self,
        message: str,
        *,
        returncode: int | None = None,
        remediation: str | None = None,
    ) -> None:
        """Store the failing command's exit code alongside the message."""
        super().__init__(message, remediation=remediation)
        self.returncode = returncode


Executor = Callable[..., "subprocess.CompletedProcess[object]"]


def _default_executor(
    args: Sequence[str],
    *,
    input: str | bytes | None = None,  # noqa: A002 - mirrors subprocess.run
    text: bool = True,
    capture_output: bool = True,
    env: Mapping[str, str] | None = None,
) -> subprocess.CompletedProcess[object]:
    return subprocess.run(  # noqa: S603 - arguments are never shell-interpreted
        list(args),
        input=input,
        text=text,
        capture_output=capture_output,
        env=dict(env) if env is not None else None,
        check=False,
    )


@dataclass(slots=True, frozen=True)
class CommandRecord:
    """A command the runner executed (or skipped in dry-run mode)."""

    args: tuple[str, ...]
    mutating: bool
    returncode: int
    dry_run: bool = False


@dataclass(slots=True)
class CommandRunner:
    """Run external commands with sudo, dry-run and history support."""

    use_sudo: bool = False
    sudo_bin: str = "sudo"
    dry_run: bool = False
    executor: Executor | None = None
    history: list[CommandRecord] = field(default_factory=list)

    @classmethod
    def for_current_user(cls, *, sudo_bin: str = "sudo", dry_run: bool = False) -> CommandRunner:
        """Return a runner that escalates through sudo unless already root."""
        geteuid = getattr(os, "geteuid", None)
        is_root = geteuid is not None and geteuid() == 0
        return cls(use_sudo=not is_root, sudo_bin=sudo_bin, dry_run=dry_run)

    @property
    def mutations(self) -> list[CommandRecord]:
        """Return the mutating commands recorded so far."""
        return [record for record in self.history if record.mutating]

    def run(
        self,
        args: Sequence[str],
        *,
        check: bool = True,
        privileged: bool = False,
        mutating: bool = False,
        refresh: bool = False,
        input: str | bytes | None = None,  # noqa: A002 - mirrors subprocess.run
        text: bool = True,
        capture_output: bool = True,
        env: Mapping[str, str] | None = None,
    ) -> subprocess.CompletedProcess[object]:
        """Run *args*; raise :class:`CommandError` on failure when *check* is set.

        *mutating* commands change system state and are skipped in dry-run
        mode. *refresh* commands (package index updates) are skipped in dry-run
        mode too but are not counted as mutations.
        """
        command = self._compose(args, privileged=privileged, env=env)
        if (mutating or refresh) and self.dry_run:
            self.history.append(
                CommandRecord(args=tuple(command), mutating=mutating, returncode=0, dry_run=True)
            )
            empty: object = "" if text else b""
            return subprocess.CompletedProcess(command, returncode=0, stdout=empty, stderr=empty)

        run_env: dict[str, str] | None = None
        if env and not (privileged and self.use_sudo):
            run_env = {**os.environ, **env}
        executor = self.executor or _default_executor
        try:
            result = executor(
                command,
                input=input,
                text=text,
                capture_output=capture_output,
                env=run_env,
            )
        except FileNotFoundError as exc:
            raise CommandError(f"{command[0]} not found: {exc}") from exc
        self.history.append(
            CommandRecord(args=tuple(command), mutating=mutating, returncode=result.returncode)
        )
        if check and result.returncode != 0:
            raise CommandError(
                f"{_describe(args)} failed (exit {result.returncode}): {_summarise(result)}",
                returncode=result.returncode,
            )
        return result

    def spawn(self, args: Sequence[str]) -> None:
        """Launch *args* in a new console without waiting for it to exit."""
        command = list(args)
        if self.dry_run:
            self.history.append(
                CommandRecord(args=tuple(command), mutating=True, returncode=0, dry_run=True)
            )
            return
        creationflags = getattr(subprocess, "CREATE_NEW_CONSOLE", 0)
        try:
            subprocess.Popen(command, creationflags=creationflags)  # noqa: S603
        except OSError as exc:
            raise CommandError(f"Unable to launch {_describe(args)}: {exc}") from exc
        self.history.append(CommandRecord(args=tuple(command), mutating=True, returncode=0))

    # ------------------------------------------------------------------
    # Filesystem helpers that may need elevation
    # ------------------------------------------------------------------
    def write_text(
        self,
        path: Path,
        content: str,
        *,
        privileged: bool = False,
        mode: int | None = None,
    ) -> None:
        """Write *content* to *path*, through ``sudo tee`` when escalation is needed."""
        if privileged and self.use_sudo:
            self.run(["tee", str(path)], privileged=True, mutating=True, input=content)
            if mode is not None:
                self.run(["chmod", f"{mode:o}", str(path)], privileged=True, mutating=True)
            return
        self.record_local("write", path)
        if self.dry_run:
            return
        path.write_text(content, encoding="utf-8")
        if mode is not None:
            os.chmod(path, mode)

    def copy_file(self, source: Path, destination: Path, *, privileged: bool = False) -> None:
        """Copy *source* to *destination* preserving metadata."""
        if privileged and self.use_sudo:
            self.run(["cp", "-p", str(source), str(destination)], privileged=True, mutating=True)
            return
        self.record_local("copy", destination)
        if self.dry_run:
            return
        shutil.copy2(source, destination)

    def remove_file(self, path: Path, *, privileged: bool = False) -> None:
        """Remove *path*; a missing file is not an error."""
        if privileged and self.use_sudo:
            self.run(["rm", "-f", str(path)], privileged=True, mutating=True)
            return
        self.record_local("remove", path)
        if self.dry_run:
            return
        path.unlink(missing_ok=True)

    def record_local(self, action: str, path: Path) -> None:
        """Record a file change made outside :meth:`run` as a mutation."""
        self.history.append(
            CommandRecord(
                args=(f"<{action}>", str(path)),
                mutating=True,
                returncode=0,
                dry_run=self.dry_run,
            )
        )

    def _compose(
        self,
        args: Sequence[str],
        *,
        privileged: bool,
        env: Mapping[str, str] | None,
    ) -> list[str]:
        if not (privileged and self.use_sudo):
            return list(args)
        assignments = [f"{key}={value}" for key, value in (env or {}).items()]
        return [self.sudo_bin, *assignments, *args]


def _describe(args: Sequence[str]) -> str:
    return " ".join(str(arg) for arg in args[:3])


def _summarise(result: subprocess.CompletedProcess[object]) -> str:
    stdout = result.stdout or ""
    stderr = result.stderr or ""
    if isinstance(stdout, bytes):
        stdout = stdout.decode("utf-8", errors="replace")
    if isinstance(stderr, bytes):
        stderr = stderr.decode("utf-8", errors="replace")
    text = str(stderr).strip() or str(stdout).strip() or "no output"
    lines = text.splitlines()
    if len(lines) > 5:
        text = "\n".join(lines[-5:])
    return text


__all__ = ["CommandError", "CommandRecord", "CommandRunner"]
