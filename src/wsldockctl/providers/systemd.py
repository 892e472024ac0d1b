"""Systemd provider for querying and managing guest service units."""
from __future__ import annotations

import subprocess
from dataclasses import dataclass

from ..commands import CommandError, CommandRunner
from ..pipeline.models import ProvisionError

HEALTHY_SYSTEM_STATES = frozenset({"running", "degraded"})


class SystemdError(ProvisionError):
    """Raised when systemd operations fail."""


@dataclass(slots=True)
class SystemdProvider:
    """Thin wrapper over ``systemctl`` used by the guest and verify pipelines."""

    runner: CommandRunner
    systemctl_bin: str = "systemctl"

    def system_state(self) -> str:
        """Return the output of ``systemctl is-system-running`` (``offline`` when absent)."""
        try:
            result = self._systemctl("is-system-running", check=False)
        except CommandError:
            return "offline"
        state = str(result.stdout or "").strip()
        return state.splitlines()[0] if state else "offline"

    def is_active(self, unit: str) -> bool:
        """Return ``True`` when *unit* is active."""
        result = self._systemctl("is-active", "--quiet", unit, check=False)
        return result.returncode == 0

    def enable(self, unit: str, *, check: bool = True) -> subprocess.CompletedProcess[object]:
        """Enable *unit*."""
        return self._systemctl("enable", unit, check=check, privileged=True, mutating=True)

    def start(self, unit: str, *, check: bool = True) -> subprocess.CompletedProcess[object]:
        """Start *unit*."""
        return self._systemctl("start", unit, check=check, privileged=True, mutating=True)

    # ------------------------------------------------------------------
    def _systemctl(
        self,
        *args: str,
        check: bool = True,
        privileged: bool = False,
        mutating: bool = False,
    ) -> subprocess.CompletedProcess[object]:
        command = [self.systemctl_bin, *args]
        try:
            return self.runner.run(
                command,
                check=check,
                privileged=privileged,
                mutating=mutating,
            )
        except CommandError as exc:
            if not check:
                raise
            raise SystemdError(
                f"{self.systemctl_bin} {args[0]} failed: {exc}",
                remediation="Inspect the unit with `sudo systemctl status docker`.",
            ) from exc


__all__ = ["HEALTHY_SYSTEM_STATES", "SystemdError", "SystemdProvider"]
