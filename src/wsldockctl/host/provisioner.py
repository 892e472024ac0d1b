"""Windows host provisioning pipeline.

Steps run in a fixed order. A pending restart, or a fresh WSL install that
needs one, ends the run early with a deferral rather than an error; the user
restarts Windows and re-runs the command, and every guard is evaluated again.
"""
from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass, field

from ..commands import CommandError
from ..config import HostConfig
from ..pipeline import ProvisionError, StepDefinition, StepOutcome, StepPolicy
from .probes import (
    RegistryReader,
    WindowsVersion,
    meets_minimum,
    pending_restart_indicators,
    read_windows_version,
)
from .wsl import WslProvider, find_distribution

RESTART_REMEDIATION = "Restart Windows, then run `wsldockctl host` again."


@dataclass(slots=True)
class HostContext:
    """Dependencies shared by the host steps."""

    config: HostConfig
    wsl: WslProvider
    registry: RegistryReader
    windows_version: Callable[[], WindowsVersion] = field(default=read_windows_version)


def _check_version(ctx: HostContext) -> StepOutcome:
    version = ctx.windows_version()
    minimum = f"{ctx.config.min_major}.0.{ctx.config.min_build}"
    if not meets_minimum(
        version,
        min_major=ctx.config.min_major,
        min_build=ctx.config.min_build,
    ):
        raise ProvisionError(
            f"Windows {version} is too old for WSL2 (requires build {minimum} or newer).",
            remediation="Install the latest Windows updates and try again.",
        )
    return StepOutcome.success(
        f"Windows {version} meets the minimum ({minimum}).",
        changed=0,
        data={"version": str(version)},
    )


def _check_restart(ctx: HostContext) -> StepOutcome:
    indicators = pending_restart_indicators(ctx.registry)
    if indicators:
        return StepOutcome.deferred(
            "A system restart is pending; installing now is unreliable.",
            remediation=RESTART_REMEDIATION,
            data={"indicators": indicators},
        )
    return StepOutcome.success("No restart pending.", changed=0)


def _install_or_update_wsl(ctx: HostContext) -> StepOutcome:
    if not ctx.wsl.is_installed():
        ctx.wsl.install()
        # The restart flag is not always visible right after the install call
        # returns, so a fresh install always defers.
        return StepOutcome.deferred(
            "WSL was installed and needs a restart to finish.",
            changed=1,
            remediation=RESTART_REMEDIATION,
        )
    try:
        ctx.wsl.update()
    except CommandError as exc:
        return StepOutcome.warning(f"WSL is installed but could not be updated: {exc}")
    return StepOutcome.success("WSL is installed and up to date.")


def _set_default_version(ctx: HostContext) -> StepOutcome:
    version = ctx.config.wsl_default_version
    ctx.wsl.set_default_version(version)
    return StepOutcome.success(f"WSL {version} is the default for new distributions.")


def _install_distribution(ctx: HostContext) -> StepOutcome:
    target = ctx.config.distribution
    registered = ctx.wsl.list_distributions()
    existing = find_distribution(registered, target)
    if existing is not None:
        return StepOutcome.skipped(
            f"{existing} is already installed (registered: {', '.join(registered)}).",
            data={"distributions": registered},
        )
    ctx.wsl.install_distribution(target)
    return StepOutcome.success(
        f"Installing {target} in a new window.",
        remediation=(
            "Create your Linux username and password in the new window when "
            "prompted, then run `wsldockctl guest` inside the distribution."
        ),
        data={"distributions": registered},
    )


def _set_default_distribution(ctx: HostContext) -> StepOutcome:
    target = ctx.config.distribution
    name = find_distribution(ctx.wsl.list_distributions(), target)
    if name is None:
        raise ProvisionError(
            f"{target} is not registered yet; it was not made the default.",
            remediation=f"After setup completes run: wsl --set-default {target}",
        )
    ctx.wsl.set_default_distribution(name)
    return StepOutcome.success(f"{name} is the default distribution.")


def host_steps() -> Sequence[StepDefinition[HostContext]]:
    """Return the ordered host provisioning steps."""
    return (
        StepDefinition("host-version", "Check Windows version", _check_version),
        StepDefinition("restart-pending", "Check for pending restart", _check_restart),
        StepDefinition("wsl-install", "Install or update WSL", _install_or_update_wsl),
        StepDefinition(
            "wsl-default-version",
            "Set default WSL version",
            _set_default_version,
        ),
        StepDefinition(
            "distribution-install",
            "Install Linux distribution",
            _install_distribution,
        ),
        StepDefinition(
            "distribution-default",
            "Set default distribution",
            _set_default_distribution,
            policy=StepPolicy.WARN,
        ),
    )


__all__ = ["HostContext", "host_steps", "RESTART_REMEDIATION"]
