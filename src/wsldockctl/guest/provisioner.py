"""WSL guest provisioning pipeline.

Every step checks the guest before it changes anything, so a second run on an
unchanged guest executes no mutating command at all.
"""
from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from pathlib import Path

from ..commands import CommandError, CommandRunner
from ..config import GuestConfig
from ..pipeline import ProvisionError, StepDefinition, StepOutcome, StepPolicy
from ..templates import TemplateEngine
from .accounts import (
    GroupMembershipSpec,
    GroupMembershipStatus,
    apply_group_membership_plan,
    inspect_group_membership,
    plan_group_membership,
)
from .apt import AptProvider
from .probes import (
    OS_RELEASE,
    WslGeneration,
    detect_wsl_generation,
    distribution_codename,
    dpkg_architecture,
    read_proc_version,
)
from .repository import DockerRepository
from .verification import write_verification_script
from .wslconf import load_boot_config, save_boot_config

SHUTDOWN_REMINDER = (
    "Run `wsl --shutdown` from PowerShell, reopen the distribution, then run "
    "~/verify-docker.sh (or `wsldockctl verify`)."
)
WSL1_PROMPT = "This appears to be WSL1. WSL2 is strongly recommended. Continue anyway?"


@dataclass(slots=True)
class GuestContext:
    """Dependencies shared by the guest steps."""

    config: GuestConfig
    runner: CommandRunner
    apt: AptProvider
    repository: DockerRepository
    templates: TemplateEngine
    user: str
    home: Path
    confirm: Callable[[str], bool]
    membership: Callable[[GroupMembershipSpec], GroupMembershipStatus] = field(
        default=inspect_group_membership
    )
    os_release: Path = OS_RELEASE

    @classmethod
    def create(
        cls,
        config: GuestConfig,
        runner: CommandRunner,
        templates: TemplateEngine,
        *,
        user: str,
        home: Path,
        confirm: Callable[[str], bool],
        membership: Callable[[GroupMembershipSpec], GroupMembershipStatus] = (
            inspect_group_membership
        ),
    ) -> GuestContext:
        """Wire the apt and repository providers around *runner*."""
        apt = AptProvider(runner)
        return cls(
            config=config,
            runner=runner,
            apt=apt,
            repository=DockerRepository(runner, apt, config),
            templates=templates,
            user=user,
            home=home,
            confirm=confirm,
            membership=membership,
        )


def _check_environment(ctx: GuestContext) -> StepOutcome:
    generation = detect_wsl_generation(read_proc_version(ctx.config.proc_version))
    if generation is WslGeneration.NONE:
        raise ProvisionError(
            "This must be run inside WSL2; no Microsoft kernel found in "
            f"{ctx.config.proc_version}.",
            remediation="Open the distribution on Windows and run `wsldockctl guest` there.",
        )
    if generation is WslGeneration.WSL1:
        if not ctx.confirm(WSL1_PROMPT):
            raise ProvisionError(
                "Installation stopped: WSL1 was not accepted.",
                remediation="Convert the distribution with `wsl --set-version <name> 2`.",
            )
        return StepOutcome.warning(
            "Running under WSL1; WSL2 is strongly recommended.",
            data={"generation": generation.value},
        )
    return StepOutcome.success(
        "Running in WSL2.",
        changed=0,
        data={"generation": generation.value},
    )


def _no_conflicting_packages(ctx: GuestContext) -> bool:
    return not ctx.apt.installed_subset(ctx.config.conflicting_packages)


def _remove_conflicting(ctx: GuestContext) -> StepOutcome:
    installed = ctx.apt.installed_subset(ctx.config.conflicting_packages)
    if not installed:
        return StepOutcome.skipped("No conflicting packages installed.")
    ctx.apt.remove(installed)
    ctx.apt.autoremove()
    return StepOutcome.success(
        f"Removed {', '.join(installed)}.",
        changed=len(installed),
        data={"removed": installed},
    )


def _update_system(ctx: GuestContext) -> StepOutcome:
    ctx.apt.update()
    pending = ctx.apt.upgradable_count()
    if not pending:
        return StepOutcome.success("Package index refreshed; no upgrades pending.", changed=0)
    ctx.apt.upgrade()
    return StepOutcome.success(f"Upgraded {pending} package(s).", changed=pending)


def _prerequisites_installed(ctx: GuestContext) -> bool:
    return not ctx.apt.missing(ctx.config.prerequisite_packages)


def _install_prerequisites(ctx: GuestContext) -> StepOutcome:
    missing = ctx.apt.missing(ctx.config.prerequisite_packages)
    if not missing:
        return StepOutcome.skipped("All prerequisites are installed.")
    ctx.apt.install(missing)
    return StepOutcome.success(
        f"Installed {', '.join(missing)}.",
        changed=len(missing),
        data={"installed": missing},
    )


def _docker_versions(ctx: GuestContext) -> dict[str, str]:
    docker = ctx.config.docker_bin
    versions: dict[str, str] = {}
    commands = {
        "docker": [docker, "--version"],
        "compose": [docker, "compose", "version"],
    }
    for label, args in commands.items():
        try:
            result = ctx.runner.run(args)
        except CommandError:
            continue
        output = str(result.stdout or "").strip()
        if output:
            versions[label] = output
    return versions


def _install_docker(ctx: GuestContext) -> StepOutcome:
    line = ctx.repository.definition_line(
        dpkg_architecture(ctx.runner),
        distribution_codename(ctx.runner, ctx.os_release),
    )
    registered = ctx.repository.is_registered(line)
    missing = ctx.apt.missing(ctx.config.engine_packages)
    if registered and not missing:
        return StepOutcome.skipped(
            "Docker Engine is already installed.",
            data={"versions": _docker_versions(ctx)},
        )

    changed = 0
    if not registered:
        ctx.repository.register(line)
        changed += 1
    if missing:
        ctx.apt.install(missing)
        changed += len(missing)
    versions = _docker_versions(ctx)
    message = "Docker Engine installed."
    if versions:
        message = f"Docker Engine installed: {'; '.join(versions.values())}."
    return StepOutcome.success(
        message,
        changed=changed,
        data={"repository": line, "installed": missing, "versions": versions},
    )


def _configure_group(ctx: GuestContext) -> StepOutcome:
    spec = GroupMembershipSpec(user=ctx.user, group=ctx.config.docker_group)
    status = ctx.membership(spec)
    plan = plan_group_membership(spec, status)
    if plan.satisfied:
        return StepOutcome.skipped(f"{spec.user} is already in the {spec.group} group.")
    if not status.user_exists:
        raise ProvisionError(f"User '{spec.user}' does not exist on this distribution.")
    apply_group_membership_plan(plan, ctx.runner)
    return StepOutcome.warning(
        f"Added {spec.user} to the {spec.group} group; a new login session is required.",
        changed=len(plan.actions),
        remediation="Log out and back in (or restart WSL) for the group change to apply.",
        data={"actions": [action.description for action in plan.actions]},
    )


def _systemd_enabled(ctx: GuestContext) -> bool:
    return load_boot_config(ctx.config.wsl_conf).systemd_enabled()


def _enable_systemd(ctx: GuestContext) -> StepOutcome:
    path = ctx.config.wsl_conf
    boot = load_boot_config(path)
    if not boot.enable_systemd():
        return StepOutcome.skipped("Systemd already enabled in wsl.conf.")
    backup = save_boot_config(boot, path, ctx.runner)
    return StepOutcome.success(
        f"Systemd enabled in {path}.",
        remediation=SHUTDOWN_REMINDER,
        data={"backup": str(backup) if backup else None},
    )


def _write_verify_script(ctx: GuestContext) -> StepOutcome:
    destination = ctx.home / ctx.config.verify_script
    changed = write_verification_script(
        ctx.templates,
        ctx.config,
        destination,
        ctx.runner,
        owner=ctx.user,
    )
    if not changed:
        return StepOutcome.skipped(f"{destination} is up to date.")
    return StepOutcome.success(
        f"Verification script created: {destination}",
        data={"path": str(destination)},
    )


def guest_steps() -> Sequence[StepDefinition[GuestContext]]:
    """Return the ordered guest provisioning steps."""
    return (
        StepDefinition("environment-check", "Check WSL environment", _check_environment),
        StepDefinition(
            "remove-conflicting",
            "Remove conflicting packages",
            _remove_conflicting,
            guard=_no_conflicting_packages,
            skip_message="No conflicting packages installed.",
            policy=StepPolicy.WARN,
        ),
        StepDefinition("system-update", "Update system packages", _update_system),
        StepDefinition(
            "prerequisites",
            "Install prerequisites",
            _install_prerequisites,
            guard=_prerequisites_installed,
            skip_message="All prerequisites are installed.",
        ),
        StepDefinition("docker-install", "Install Docker Engine", _install_docker),
        StepDefinition("docker-group", "Configure docker group", _configure_group),
        StepDefinition(
            "systemd-enable",
            "Enable systemd",
            _enable_systemd,
            guard=_systemd_enabled,
            skip_message="Systemd already enabled in wsl.conf.",
        ),
        StepDefinition("verify-script", "Create verification script", _write_verify_script),
    )


__all__ = ["GuestContext", "SHUTDOWN_REMINDER", "WSL1_PROMPT", "guest_steps"]
