"""Post-restart verification: the generated script and its native pipeline.

``~/verify-docker.sh`` and ``wsldockctl verify`` run the same checks; the
script exists so the user can verify without the CLI on ``PATH``.
"""
from __future__ import annotations

import os
import shutil
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path

from .. import __version__
from ..commands import CommandError, CommandRunner
from ..config import GuestConfig
from ..pipeline import ProvisionError, StepDefinition, StepOutcome, StepPolicy
from ..providers import HEALTHY_SYSTEM_STATES, SystemdProvider
from ..templates import TemplateEngine

VERIFY_TEMPLATE = "scripts/verify-docker.sh.j2"
DOCKER_INFO_LINES = 20

ALIASES: tuple[str, ...] = (
    "# Docker aliases",
    "alias d='docker'",
    "alias dc='docker compose'",
    "alias dps='docker ps'",
    "alias dimg='docker images'",
    "alias dlog='docker logs'",
    "alias dexec='docker exec -it'",
    "",
    "# Docker cleanup",
    "alias docker-clean='docker system prune -af --volumes'",
)

QUICK_START: tuple[tuple[str, str], ...] = (
    ("docker run hello-world", "Test Docker"),
    ("docker ps", "List running containers"),
    ("docker images", "List images"),
    ("docker compose up", "Start compose services"),
)

SHUTDOWN_REMEDIATION = (
    "Run `wsl --shutdown` from PowerShell, reopen the distribution and try again."
)
STATUS_REMEDIATION = "Try running: sudo systemctl status docker"


def script_context(config: GuestConfig) -> dict[str, object]:
    """Return the template variables for the verification script."""
    return {
        "version": __version__,
        "service": config.service,
        "smoke_image": config.smoke_image,
        "aliases": list(ALIASES),
        "quick_start": list(QUICK_START),
    }


def write_verification_script(
    templates: TemplateEngine,
    config: GuestConfig,
    destination: Path,
    runner: CommandRunner,
    *,
    owner: str | None = None,
) -> bool:
    """Render the script to *destination* (mode ``0755``); return whether it changed.

    When running as root on behalf of *owner*, the file is handed over to them.
    """
    context = script_context(config)
    if runner.dry_run:
        rendered = templates.render_to_string(VERIFY_TEMPLATE, context)
        try:
            current = destination.read_text(encoding="utf-8")
        except OSError:
            current = None
        if current == rendered:
            return False
        runner.record_local("write", destination)
        return True

    changed = templates.render_to_path(VERIFY_TEMPLATE, destination, context, mode=0o755)
    if changed:
        runner.record_local("write", destination)
        geteuid = getattr(os, "geteuid", None)
        if owner and owner != "root" and geteuid is not None and geteuid() == 0:
            shutil.chown(destination, user=owner)
    return changed


# ----------------------------------------------------------------------
# Native verification pipeline
# ----------------------------------------------------------------------
@dataclass(slots=True)
class VerifyContext:
    """Dependencies shared by the verification steps."""

    config: GuestConfig
    runner: CommandRunner
    systemd: SystemdProvider


def _check_systemd(ctx: VerifyContext) -> StepOutcome:
    state = ctx.systemd.system_state()
    if state not in HEALTHY_SYSTEM_STATES:
        raise ProvisionError(
            f"Systemd is not running (state: {state}).",
            remediation=SHUTDOWN_REMEDIATION,
        )
    return StepOutcome.success("Systemd is running.", changed=0, data={"state": state})


def _ensure_docker_service(ctx: VerifyContext) -> StepOutcome:
    unit = ctx.config.service
    ctx.systemd.enable(unit, check=False)
    ctx.systemd.start(unit, check=False)
    if ctx.systemd.is_active(unit):
        return StepOutcome.success("Docker service is running.", changed=0)
    ctx.systemd.start(unit)
    return StepOutcome.success("Docker service started.")


def _docker_versions(ctx: VerifyContext) -> StepOutcome:
    docker = ctx.config.docker_bin
    try:
        engine = ctx.runner.run([docker, "--version"])
        compose = ctx.runner.run([docker, "compose", "version"])
    except CommandError as exc:
        raise ProvisionError(
            f"Unable to read Docker versions: {exc}",
            remediation=STATUS_REMEDIATION,
        ) from exc
    engine_version = str(engine.stdout or "").strip()
    compose_version = str(compose.stdout or "").strip()
    return StepOutcome.success(
        f"{engine_version}; {compose_version}",
        changed=0,
        data={"docker": engine_version, "compose": compose_version},
    )


def _smoke_test(ctx: VerifyContext) -> StepOutcome:
    image = ctx.config.smoke_image
    result = ctx.runner.run([ctx.config.docker_bin, "run", "--rm", image], check=False)
    parts = (str(result.stdout or "").strip(), str(result.stderr or "").strip())
    output = "\n".join(part for part in parts if part)
    if result.returncode != 0:
        raise ProvisionError(
            f"Docker test failed (exit {result.returncode}): {output or 'no output'}",
            remediation=STATUS_REMEDIATION,
        )
    return StepOutcome.success(
        "Docker is working correctly!",
        changed=0,
        data={"image": image, "output": output},
    )


def _docker_info(ctx: VerifyContext) -> StepOutcome:
    try:
        result = ctx.runner.run([ctx.config.docker_bin, "info"])
    except CommandError as exc:
        raise ProvisionError(f"docker info failed: {exc}") from exc
    lines = str(result.stdout or "").splitlines()[:DOCKER_INFO_LINES]
    return StepOutcome.success(
        "Collected Docker system information.",
        changed=0,
        data={"info": lines},
    )


def verify_steps() -> Sequence[StepDefinition[VerifyContext]]:
    """Return the ordered verification steps."""
    return (
        StepDefinition("systemd-running", "Check systemd", _check_systemd),
        StepDefinition("docker-service", "Ensure Docker service", _ensure_docker_service),
        StepDefinition(
            "docker-versions",
            "Report Docker versions",
            _docker_versions,
            policy=StepPolicy.WARN,
        ),
        StepDefinition("smoke-test", "Run test container", _smoke_test),
        StepDefinition(
            "docker-info",
            "Docker system information",
            _docker_info,
            policy=StepPolicy.WARN,
        ),
    )


__all__ = [
    "ALIASES",
    "QUICK_START",
    "VERIFY_TEMPLATE",
    "VerifyContext",
    "script_context",
    "verify_steps",
    "write_verification_script",
]
