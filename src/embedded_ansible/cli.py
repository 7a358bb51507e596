"""Typer-powered command line interface for ``embedded-ansible``.

Every command runs inside a structured logging operation. Mutating commands
(``configure``, ``start``, ``stop``, ``services start``) additionally hold the
global lifecycle lock so that two invocations never drive the installer at
the same time.
"""
from __future__ import annotations

import json
import logging
import textwrap
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import NoReturn

import typer
from rich.console import Console
from rich.table import Table

from . import __version__
from .config import AppConfig, ConfigError, load_config
from .exit_codes import ExitCode
from .lifecycle import (
    EmbeddedAnsible,
    InstallState,
    NotConfiguredError,
    QuiesceError,
    SecretKeyError,
    ServiceActionReport,
    ServiceDiscoveryError,
    SetupResult,
    SetupScriptError,
)
from .locking import LockError, LockManager
from .logging import OperationScope, StructuredLogger
from .providers import SystemdError
from .state import CredentialStore, CredentialStoreError, StateRegistry
from .templates import TemplateEngine, TemplateRenderError

console = Console()

CONFIG_FILE_OPTION = typer.Option(
    None,
    "--config-file",
    dir_okay=False,
    help="Override the path to embedded-ansible's YAML config file.",
)

JSON_OPTION = typer.Option(
    False,
    "--json",
    help="Emit the result as JSON.",
)

PROVIDER_ERRORS = (
    QuiesceError,
    ServiceDiscoveryError,
    SystemdError,
    SetupScriptError,
    SecretKeyError,
    CredentialStoreError,
    TemplateRenderError,
)

app = typer.Typer(
    add_completion=False,
    help=textwrap.dedent(
        """
        Embedded Ansible lifecycle management.

        Detects the bundled Ansible installer, controls the services it owns
        and runs its setup script with credentials persisted by the appliance.
        """
    ).strip(),
)
services_app = typer.Typer(help="Inspect and control the installer's services.")
config_app = typer.Typer(help="Inspect the effective configuration.")
app.add_typer(services_app, name="services")
app.add_typer(config_app, name="config")


@dataclass
class RuntimeContext:
    """Aggregated runtime objects shared by commands."""

    config: AppConfig
    registry: StateRegistry
    credentials: CredentialStore
    locks: LockManager
    logger: StructuredLogger
    templates: TemplateEngine
    ansible: EmbeddedAnsible


def _ensure_runtime(
    ctx: typer.Context,
    config_file: Path | None,
    lock_timeout_override: float | None = None,
) -> RuntimeContext:
    runtime = ctx.obj
    if isinstance(runtime, RuntimeContext):
        return runtime

    overrides: dict[str, object] = {}
    if lock_timeout_override is not None:
        overrides["lock_timeout"] = lock_timeout_override

    config = load_config(config_file=config_file, overrides=overrides)
    registry = StateRegistry(config.registry_dir)
    locks = LockManager(config.runtime_dir, config.lock_timeout)
    logger = StructuredLogger(config.logs_dir)
    templates = TemplateEngine.with_overrides(config.templates_dir)
    credentials = CredentialStore(registry, locks=locks)
    ansible = EmbeddedAnsible.from_config(
        config,
        locks=locks,
        templates=templates,
        credentials=credentials,
    )
    runtime = RuntimeContext(
        config=config,
        registry=registry,
        credentials=credentials,
        locks=locks,
        logger=logger,
        templates=templates,
        ansible=ansible,
    )
    ctx.obj = runtime
    return runtime


def _get_runtime(ctx: typer.Context) -> RuntimeContext:
    runtime = ctx.obj
    if isinstance(runtime, RuntimeContext):
        return runtime
    return _ensure_runtime(ctx, None, None)


@app.callback(invoke_without_command=True)
def _root(  # noqa: D401 - Typer displays help for us, docstring optional.
    ctx: typer.Context,
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        help="Show the embedded-ansible version and exit.",
    ),
    config_file: Path | None = CONFIG_FILE_OPTION,
    lock_timeout: float | None = typer.Option(
        None,
        "--lock-timeout",
        help="Override lock acquisition timeout in seconds.",
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Print diagnostic log messages to stderr.",
    ),
) -> None:
    """Entry point callback invoked for every CLI execution."""
    if verbose:
        logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")

    try:
        runtime = _ensure_runtime(ctx, config_file, lock_timeout)
    except ConfigError as exc:
        console.print(f"[red]Configuration error: {exc}[/red]")
        raise typer.Exit(code=ExitCode.VALIDATION) from exc

    if version:
        with runtime.logger.operation(
            "root --version",
            args={"version": True},
            target={"kind": "meta", "scope": "version"},
        ) as op:
            console.print(f"embedded-ansible {__version__}")
            op.success("Reported CLI version.", changed=0)
        raise typer.Exit(code=ExitCode.OK)

    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())
        raise typer.Exit(code=ExitCode.OK)


def _command_error(
    op: OperationScope,
    message: str,
    *,
    rc: int = ExitCode.VALIDATION,
    errors: Sequence[str] | None = None,
) -> NoReturn:
    """Emit a structured error and terminate the command."""
    console.print(f"[red]{message}[/red]")
    op.error(message, errors=list(errors or [message]), rc=int(rc))
    raise typer.Exit(code=int(rc))


def _exit_code_for(exc: Exception) -> ExitCode:
    if isinstance(exc, NotConfiguredError):
        return ExitCode.VALIDATION
    if isinstance(exc, LockError):
        return ExitCode.ENVIRONMENT
    return ExitCode.PROVIDER


def _require_available(runtime: RuntimeContext, op: OperationScope) -> None:
    probe = runtime.ansible.probe
    if not probe.available():
        _command_error(
            op,
            f"Embedded Ansible is not installed (looked in {probe.location()}).",
            rc=ExitCode.ENVIRONMENT,
        )
    op.add_step("probe.available", status="success", detail=str(probe.location()))


def _record_action_report(op: OperationScope, report: ServiceActionReport) -> None:
    for name in report.succeeded:
        op.add_step(f"systemd.{report.action}", status="success", detail=name)
    for failure in report.failures:
        op.add_step(
            f"systemd.{report.action}",
            status="error",
            detail=f"{failure.name}: {failure.error}",
        )


def _print_action_report(report: ServiceActionReport) -> None:
    verb = "stopped and disabled" if report.action == "stop" else "started and enabled"
    for name in report.succeeded:
        console.print(f"[green]{name}[/green] {verb}.")
    for failure in report.failures:
        console.print(f"[red]{failure.name}[/red] failed to {report.action}: {failure.error}")


def _finish_action(op: OperationScope, report: ServiceActionReport, summary: str) -> None:
    if report.ok:
        op.success(summary, changed=len(report.succeeded))
        return
    failed = [f"{failure.name}: {failure.error}" for failure in report.failures]
    op.warning(
        f"{summary} with failures.",
        warnings=failed,
        changed=len(report.succeeded),
        context={"failed": [failure.name for failure in report.failures]},
    )
    raise typer.Exit(code=ExitCode.PROVIDER)


def _print_setup_result(result: SetupResult) -> None:
    console.print(f"[green]{result.script}[/green] completed with tags '{result.tags}'.")
    if result.generated:
        console.print(f"Generated credentials: {', '.join(result.generated)}")


@app.command()
def available(
    ctx: typer.Context,
    json_output: bool = JSON_OPTION,
) -> None:
    """Report whether the embedded Ansible installer is present."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "available",
        args={"json": json_output},
        target={"kind": "installer"},
    ) as op:
        probe = runtime.ansible.probe
        location = probe.location()
        is_available = probe.available()
        if json_output:
            console.print_json(data={"available": is_available, "location": str(location)})
        elif is_available:
            console.print(f"[green]Available[/green] at {location}")
        else:
            console.print(f"[yellow]Not installed[/yellow] (looked in {location})")
        op.success(
            "Reported installer availability.",
            changed=0,
            context={"available": is_available, "location": str(location)},
        )
    if not is_available:
        raise typer.Exit(code=ExitCode.FAILURE)


@app.command()
def status(
    ctx: typer.Context,
    json_output: bool = JSON_OPTION,
) -> None:
    """Show the installation state and the running state of every service."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "status",
        args={"json": json_output},
        target={"kind": "installer"},
    ) as op:
        _require_available(runtime, op)
        try:
            configured = runtime.ansible.configured()
            services = runtime.ansible.status()
        except PROVIDER_ERRORS as exc:
            _command_error(op, f"Unable to determine status: {exc}", rc=_exit_code_for(exc))

        running = all(service.running for service in services)
        state = InstallState.derive(available=True, configured=configured, running=running)
        payload = {
            "state": state.value,
            "configured": configured,
            "running": running,
            "services": [{"name": s.name, "running": s.running} for s in services],
        }
        if json_output:
            console.print_json(data=payload)
        else:
            console.print(f"State: [bold]{state.value}[/bold]")
            table = Table(show_header=True, header_style="bold magenta")
            table.add_column("Service", style="bold")
            table.add_column("Running")
            for service in services:
                table.add_row(
                    service.name,
                    "[green]yes[/green]" if service.running else "[red]no[/red]",
                )
            console.print(table)
        op.success("Reported installer status.", changed=0, context={"state": state.value})
    if not running:
        raise typer.Exit(code=ExitCode.FAILURE)


@services_app.command("list")
def services_list(
    ctx: typer.Context,
    json_output: bool = JSON_OPTION,
) -> None:
    """List the services declared by the installer."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "services list",
        args={"json": json_output},
        target={"kind": "services"},
    ) as op:
        _require_available(runtime, op)
        try:
            names = runtime.ansible.services()
        except ServiceDiscoveryError as exc:
            _command_error(op, str(exc), rc=ExitCode.PROVIDER)
        if json_output:
            console.print_json(data={"services": names})
        elif names:
            for name in names:
                console.print(name)
        else:
            console.print("[yellow]The installer declares no services.[/yellow]")
        op.success("Listed installer services.", changed=0, context={"count": len(names)})


@services_app.command("start")
def services_start(ctx: typer.Context) -> None:
    """Start and enable every installer service."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "services start",
        target={"kind": "services"},
    ) as op:
        _require_available(runtime, op)
        try:
            with runtime.locks.global_lock() as handle:
                op.set_lock_wait_ms(handle.wait_ms)
                report = runtime.ansible.start_services()
        except (LockError, ServiceDiscoveryError) as exc:
            _command_error(op, str(exc), rc=_exit_code_for(exc))
        _record_action_report(op, report)
        _print_action_report(report)
        _finish_action(op, report, "Started installer services")


@app.command()
def stop(ctx: typer.Context) -> None:
    """Stop and disable every installer service."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "stop",
        target={"kind": "services"},
    ) as op:
        _require_available(runtime, op)
        try:
            with runtime.locks.global_lock() as handle:
                op.set_lock_wait_ms(handle.wait_ms)
                report = runtime.ansible.stop()
        except (LockError, ServiceDiscoveryError) as exc:
            _command_error(op, str(exc), rc=_exit_code_for(exc))
        _record_action_report(op, report)
        _print_action_report(report)
        _finish_action(op, report, "Stopped installer services")


@app.command()
def configure(ctx: typer.Context) -> None:
    """Quiesce services, reconcile credentials and run the full setup."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "configure",
        target={"kind": "installer", "script": str(runtime.config.setup_script)},
    ) as op:
        _require_available(runtime, op)
        try:
            with runtime.locks.global_lock() as handle:
                op.set_lock_wait_ms(handle.wait_ms)
                result = runtime.ansible.configure()
        except (LockError, NotConfiguredError, *PROVIDER_ERRORS) as exc:
            if isinstance(exc, QuiesceError):
                _record_action_report(op, exc.report)
                _print_action_report(exc.report)
            _command_error(op, f"configure failed: {exc}", rc=_exit_code_for(exc))

        if result.stop_report is not None:
            _record_action_report(op, result.stop_report)
        op.add_step("setup.run", status="success", detail=f"tags={result.tags}")
        _print_setup_result(result)
        op.success(
            "Embedded Ansible configured.",
            changed=1 + len(result.generated),
            context={"generated": result.generated, "tags": result.tags},
        )


@app.command()
def start(ctx: typer.Context) -> None:
    """Run setup with the persisted credentials (requires a prior configure)."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "start",
        target={"kind": "installer", "script": str(runtime.config.setup_script)},
    ) as op:
        _require_available(runtime, op)
        try:
            with runtime.locks.global_lock() as handle:
                op.set_lock_wait_ms(handle.wait_ms)
                result = runtime.ansible.start()
        except (LockError, NotConfiguredError, *PROVIDER_ERRORS) as exc:
            _command_error(op, f"start failed: {exc}", rc=_exit_code_for(exc))
        op.add_step("setup.run", status="success", detail=f"tags={result.tags}")
        _print_setup_result(result)
        op.success("Embedded Ansible started.", changed=1, context={"tags": result.tags})


@config_app.command("show")
def config_show(
    ctx: typer.Context,
    json_output: bool = JSON_OPTION,
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


def main() -> None:  # pragma: no cover - thin wrapper for console_scripts
    """Console script entry point."""
    app()


__all__ = ["app", "main"]
