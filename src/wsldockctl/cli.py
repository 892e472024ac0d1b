"""Typer-powered command line for ``wsldockctl``.

``host`` runs on Windows and prepares WSL; ``guest`` runs inside the Ubuntu
distribution and installs Docker Engine; ``verify`` checks the result after
WSL has been restarted. Every command appends one record to the operations log.
"""
from __future__ import annotations

import json
import textwrap
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import typer
from rich.console import Console
from rich.table import Table

from . import __version__
from .commands import CommandRunner
from .config import AppConfig, ConfigError, load_config
from .exit_codes import ExitCode
from .guest import GuestContext, VerifyContext, guest_steps, verify_steps
from .guest.accounts import inspect_group_membership
from .guest.probes import invoking_user, user_home
from .guest.verification import ALIASES, QUICK_START
from .host import HostContext, WinRegReader, WslProvider, host_steps, read_windows_version
from .logging import OperationScope, StructuredLogger
from .pipeline import (
    PipelineReport,
    PipelineRunner,
    PipelineStatus,
    StepDefinition,
    StepOutcome,
    StepStatus,
    cancelled_report,
    serialize_report,
)
from .providers import SystemdProvider
from .templates import TemplateEngine

console = Console()

CONFIG_FILE_OPTION = typer.Option(
    None,
    "--config-file",
    dir_okay=False,
    help="Override the path to wsldockctl's YAML config file.",
)
DRY_RUN_OPTION = typer.Option(
    False,
    "--dry-run",
    help="Run read-only probes and report the changes that would be made.",
)
JSON_OPTION = typer.Option(
    False,
    "--json",
    help="Emit the pipeline report as JSON instead of step lines.",
)
YES_OPTION = typer.Option(
    False,
    "--yes",
    "-y",
    help="Answer yes to every confirmation prompt.",
)

CANCELLED_MESSAGE = "Installation cancelled"

_STEP_STATUS_STYLE = {
    StepStatus.SUCCESS: "[green]✓[/green]",
    StepStatus.SKIPPED: "[cyan]·[/cyan]",
    StepStatus.WARNING: "[yellow]⚠[/yellow]",
    StepStatus.FAILED: "[red]✗[/red]",
    StepStatus.DEFERRED: "[magenta]↻[/magenta]",
}
_SUMMARY_STYLE = {
    PipelineStatus.COMPLETED: "[green]completed[/green]",
    PipelineStatus.DEFERRED: "[magenta]deferred[/magenta]",
    PipelineStatus.FAILED: "[red]failed[/red]",
    PipelineStatus.CANCELLED: "[yellow]cancelled[/yellow]",
}

app = typer.Typer(
    add_completion=False,
    help=textwrap.dedent(
        """
        Install Docker Engine inside WSL2 without Docker Desktop.

        Run `wsldockctl host` from PowerShell on Windows, restart when asked,
        then run `wsldockctl guest` inside the Ubuntu distribution.
        """
    ).strip(),
)
config_app = typer.Typer(help="Inspect the effective configuration.")
app.add_typer(config_app, name="config")


@dataclass
class RuntimeContext:
    """Aggregated runtime objects shared by commands."""

    config: AppConfig
    logger: StructuredLogger
    templates: TemplateEngine


def _ensure_runtime(ctx: typer.Context, config_file: Path | None) -> RuntimeContext:
    runtime = ctx.obj
    if isinstance(runtime, RuntimeContext):
        return runtime

    try:
        config = load_config(config_file=config_file)
    except ConfigError as exc:
        console.print(f"[red]Configuration error: {exc}[/red]")
        raise typer.Exit(code=int(ExitCode.FAILURE)) from exc
    runtime = RuntimeContext(
        config=config,
        logger=StructuredLogger(config.logs_dir),
        templates=TemplateEngine.with_overrides(config.templates_dir),
    )
    ctx.obj = runtime
    return runtime


def _get_runtime(ctx: typer.Context) -> RuntimeContext:
    runtime = ctx.obj
    if isinstance(runtime, RuntimeContext):
        return runtime
    return _ensure_runtime(ctx, None)


@app.callback(invoke_without_command=True)
def _root(  # noqa: D401 - Typer displays help for us, docstring optional.
    ctx: typer.Context,
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        help="Show the wsldockctl version and exit.",
    ),
    config_file: Path | None = CONFIG_FILE_OPTION,
) -> None:
    """Entry point callback invoked for every CLI execution."""
    if version:
        runtime = _ensure_runtime(ctx, config_file)
        with runtime.logger.operation(
            "root --version",
            args={"version": True},
            target={"kind": "meta", "scope": "version"},
        ) as op:
            console.print(f"wsldockctl {__version__}")
            op.success("Reported CLI version.", changed=0)
        raise typer.Exit(code=0)

    _ensure_runtime(ctx, config_file)

    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())
        raise typer.Exit(code=0)


# ----------------------------------------------------------------------
# Shared rendering helpers
# ----------------------------------------------------------------------
def _build_runner(sudo_bin: str, *, dry_run: bool) -> CommandRunner:
    return CommandRunner.for_current_user(sudo_bin=sudo_bin, dry_run=dry_run)


def _step_printer(json_output: bool) -> Callable[[StepDefinition[Any], StepOutcome], None]:
    """Return a listener that prints one line per finished step."""

    def _listener(step: StepDefinition[Any], outcome: StepOutcome) -> None:
        if json_output:
            return
        marker = _STEP_STATUS_STYLE[outcome.status]
        console.print(f"{marker} [bold]{step.title}[/bold]: {outcome.message}")
        if outcome.remediation:
            console.print(f"  [cyan]→ {outcome.remediation}[/cyan]")

    return _listener


def _render_summary(report: PipelineReport, *, dry_run: bool = False) -> None:
    summary = report.summary
    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Step", style="bold")
    table.add_column("Status")
    table.add_column("Changed", justify="right")
    for outcome in report.outcomes:
        table.add_row(outcome.id, _STEP_STATUS_STYLE[outcome.status], str(outcome.changed))
    console.print()
    console.print(table)
    label = _SUMMARY_STYLE[summary.status]
    console.print(
        f"{report.name} {label} (changed={summary.changed}, exit={summary.exit_code})"
    )
    if dry_run:
        console.print("[yellow]Dry run[/yellow]: no changes were made.")


def _emit_report(report: PipelineReport, *, json_output: bool, dry_run: bool = False) -> None:
    if json_output:
        console.print_json(data=serialize_report(report))
        return
    _render_summary(report, dry_run=dry_run)


def _finish(op: OperationScope, report: PipelineReport, *, runner: CommandRunner) -> None:
    """Record every step and the final result, then exit with the report's code."""
    for outcome in report.outcomes:
        op.add_step(outcome.id, status=outcome.status.value, detail=outcome.message)
    summary = report.summary
    context: dict[str, object] = {
        "report": serialize_report(report),
        "commands": [" ".join(record.args) for record in runner.mutations],
    }
    warnings = [o.id for o in report.outcomes if o.status is StepStatus.WARNING]

    if summary.status is PipelineStatus.FAILED:
        failed = report.outcome(summary.failed_step or "")
        message = failed.message if failed is not None else f"{report.name} failed."
        op.error(
            message,
            rc=summary.exit_code,
            errors=[summary.failed_step or report.name],
            changed=summary.changed,
            context=context,
        )
        raise typer.Exit(code=summary.exit_code)
    if summary.status is PipelineStatus.DEFERRED:
        op.warning(
            f"{report.name} deferred; re-run after the required action.",
            warnings=warnings + ["deferred"],
            changed=summary.changed,
            context=context,
        )
        return
    if warnings:
        op.warning(
            f"{report.name} completed with warnings.",
            warnings=warnings,
            changed=summary.changed,
            context=context,
        )
        return
    op.success(f"{report.name} completed.", changed=summary.changed, context=context)


# ----------------------------------------------------------------------
# host
# ----------------------------------------------------------------------
def _build_host_context(runtime: RuntimeContext, runner: CommandRunner) -> HostContext:
    host_config = runtime.config.host
    return HostContext(
        config=host_config,
        wsl=WslProvider(runner, wsl_bin=host_config.wsl_bin),
        registry=WinRegReader(),
        windows_version=read_windows_version,
    )


@app.command()
def host(
    ctx: typer.Context,
    dry_run: bool = DRY_RUN_OPTION,
    json_output: bool = JSON_OPTION,
) -> None:
    """Prepare Windows: WSL platform, WSL 2 default and the Ubuntu distribution."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "host",
        args={"dry_run": dry_run, "json": json_output},
        target={"kind": "host", "distribution": runtime.config.host.distribution},
    ) as op:
        runner = CommandRunner(dry_run=dry_run)
        context = _build_host_context(runtime, runner)
        if not json_output:
            console.print("[bold magenta]WSL2 host setup[/bold magenta]")
        pipeline = PipelineRunner("host", host_steps(), listener=_step_printer(json_output))
        report = pipeline.run(context, metadata={"dry_run": dry_run})
        _emit_report(report, json_output=json_output, dry_run=dry_run)
        if not json_output and report.summary.status is PipelineStatus.COMPLETED:
            console.print(
                "\n[cyan]Next:[/cyan] finish the distribution's first-run setup, "
                "then run [bold]wsldockctl guest[/bold] inside it."
            )
        _finish(op, report, runner=runner)


# ----------------------------------------------------------------------
# guest
# ----------------------------------------------------------------------
def _resolve_user() -> tuple[str, Path]:
    user = invoking_user()
    return user, user_home(user)


def _build_guest_context(
    runtime: RuntimeContext,
    runner: CommandRunner,
    *,
    assume_yes: bool,
) -> GuestContext:
    user, home = _resolve_user()

    def _confirm(prompt: str) -> bool:
        if assume_yes:
            return True
        return typer.confirm(prompt, default=False)

    return GuestContext.create(
        runtime.config.guest,
        runner,
        runtime.templates,
        user=user,
        home=home,
        confirm=_confirm,
        membership=inspect_group_membership,
    )


@app.command()
def guest(
    ctx: typer.Context,
    yes: bool = YES_OPTION,
    dry_run: bool = DRY_RUN_OPTION,
    json_output: bool = JSON_OPTION,
) -> None:
    """Install Docker Engine in this WSL2 distribution and enable systemd."""
    runtime = _get_runtime(ctx)
    guest_config = runtime.config.guest
    with runtime.logger.operation(
        "guest",
        args={"yes": yes, "dry_run": dry_run, "json": json_output},
        target={"kind": "guest", "scope": "docker-engine"},
    ) as op:
        if not json_output:
            console.print("[bold magenta]Docker Engine installation for WSL2[/bold magenta]")
        if not yes and not typer.confirm("Continue with installation?", default=False):
            report = cancelled_report("guest", CANCELLED_MESSAGE)
            if json_output:
                console.print_json(data=serialize_report(report))
            else:
                console.print(CANCELLED_MESSAGE)
            op.success(CANCELLED_MESSAGE, changed=0, context={"cancelled": True})
            return

        runner = _build_runner(guest_config.sudo_bin, dry_run=dry_run)
        context = _build_guest_context(runtime, runner, assume_yes=yes)
        pipeline = PipelineRunner("guest", guest_steps(), listener=_step_printer(json_output))
        report = pipeline.run(
            context,
            metadata={"dry_run": dry_run, "user": context.user},
        )
        _emit_report(report, json_output=json_output, dry_run=dry_run)
        if not json_output and report.summary.status is PipelineStatus.COMPLETED:
            script = context.home / guest_config.verify_script
            console.print("\n[bold yellow]IMPORTANT NEXT STEPS:[/bold yellow]")
            console.print("  1. Shut down WSL from PowerShell: [magenta]wsl --shutdown[/magenta]")
            console.print("  2. Reopen the distribution")
            console.print(f"  3. Run [magenta]{script}[/magenta] (or `wsldockctl verify`)")
        _finish(op, report, runner=runner)


# ----------------------------------------------------------------------
# verify
# ----------------------------------------------------------------------
def _build_verify_context(runtime: RuntimeContext, runner: CommandRunner) -> VerifyContext:
    guest_config = runtime.config.guest
    return VerifyContext(
        config=guest_config,
        runner=runner,
        systemd=SystemdProvider(runner, systemctl_bin=guest_config.systemctl_bin),
    )


def _render_verify_extras(report: PipelineReport) -> None:
    smoke = report.outcome("smoke-test")
    if smoke is not None and smoke.data and smoke.data.get("output"):
        console.print("\n[green]Docker test output:[/green]")
        console.print(str(smoke.data["output"]), markup=False, highlight=False)
    info = report.outcome("docker-info")
    if info is not None and info.data and info.data.get("info"):
        console.print("\n[cyan]Docker system information:[/cyan]")
        console.print("\n".join(info.data["info"]), markup=False, highlight=False)
    if report.summary.status is not PipelineStatus.COMPLETED:
        return
    console.print("\n[cyan]Optional aliases for ~/.bashrc or ~/.zshrc:[/cyan]")
    console.print("\n".join(ALIASES), markup=False, highlight=False)
    console.print("\n[cyan]Quick start commands:[/cyan]")
    for command, description in QUICK_START:
        console.print(f"  {command:<32} # {description}", markup=False, highlight=False)


@app.command()
def verify(
    ctx: typer.Context,
    json_output: bool = JSON_OPTION,
) -> None:
    """Check systemd, the Docker service and run a test container."""
    runtime = _get_runtime(ctx)
    guest_config = runtime.config.guest
    with runtime.logger.operation(
        "verify",
        args={"json": json_output},
        target={"kind": "guest", "scope": "verification"},
    ) as op:
        runner = _build_runner(guest_config.sudo_bin, dry_run=False)
        context = _build_verify_context(runtime, runner)
        if not json_output:
            console.print("[bold magenta]Docker installation verification[/bold magenta]")
        pipeline = PipelineRunner("verify", verify_steps(), listener=_step_printer(json_output))
        report = pipeline.run(context)
        if json_output:
            console.print_json(data=serialize_report(report))
        else:
            _render_verify_extras(report)
            _render_summary(report)
        _finish(op, report, runner=runner)


# ----------------------------------------------------------------------
# config
# ----------------------------------------------------------------------
@config_app.command("show")
def config_show(
    ctx: typer.Context,
    json_output: bool = typer.Option(
        False,
        "--json",
        help="Emit configuration as JSON instead of a table.",
    ),
) -> None:
    """Display the effective configuration after merges."""
    runtime = _get_runtime(ctx)
    data = runtime.config.to_dict()

    with runtime.logger.operation(
        "config show",
        args={"json": json_output},
        target={"kind": "config"},
    ) as op:
        if json_output:
            console.print_json(data=data)
            op.success("Rendered configuration as JSON.", changed=0)
            return

        table = Table(show_header=True, header_style="bold magenta")
        table.add_column("Key", style="bold")
        table.add_column("Value")

        for key, value in data.items():
            if isinstance(value, dict):
                rendered = json.dumps(value, indent=2, sort_keys=True)
            else:
                rendered = str(value)
            table.add_row(key, rendered)

        console.print(table)
        op.success("Rendered configuration table.", changed=0)


def main() -> None:
    """Console script entry point."""
    app()


__all__ = ["app", "main"]
