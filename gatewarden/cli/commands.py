"""CLI commands for gatewarden."""

import asyncio
import json
import signal
from typing import Any, Callable, NoReturn

import click
import typer
from rich.console import Console
from rich.table import Table
from typer.core import TyperGroup

from gatewarden import __logo__, __version__
from gatewarden.errors import GatewardenError

app = typer.Typer(
    name="gatewarden",
    help=f"{__logo__} gatewarden - gateway resilience core",
    no_args_is_help=True,
)

console = Console(stderr=True)


def version_callback(value: bool):
    if value:
        console.print(f"{__logo__} gatewarden v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        None, "--version", "-v", callback=version_callback, is_eager=True
    ),
):
    """gatewarden - gateway resilience core."""
    from gatewarden.logging_config import setup_logging

    setup_logging()


def _load_config():
    from gatewarden.config.loader import load_config

    return load_config()


# ============================================================================
# Schedule Commands (one JSON line on stdout, exit 0 / 1)
# ============================================================================


def _emit(data: dict[str, Any]) -> None:
    typer.echo(json.dumps(data, ensure_ascii=False))


def _fail(message: str) -> NoReturn:
    _emit({"ok": False, "error": message})
    raise typer.Exit(1)


class JsonErrorGroup(TyperGroup):
    """
    Command group whose usage errors are reported as a JSON failure line.

    Click normally prints a Usage/Error box and exits 2 for unknown options,
    unknown subcommands, extra arguments and bad values. Callers of the
    schedule commands only parse stdout, so those become ``{"ok": false}``
    with exit code 1 like every other failure.
    """

    def make_context(self, info_name, args, parent=None, **extra):
        if not args:
            # Bare `schedule` keeps Click's help output
            return super().make_context(info_name, args, parent=parent, **extra)
        try:
            return super().make_context(info_name, args, parent=parent, **extra)
        except click.ClickException as e:
            _fail(e.format_message())

    def invoke(self, ctx: click.Context):
        try:
            return super().invoke(ctx)
        except click.ClickException as e:
            _fail(e.format_message())


schedule_app = typer.Typer(cls=JsonErrorGroup, help="Manage scheduled tasks (JSON output)")
app.add_typer(schedule_app, name="schedule")


def _json_command(fn: Callable[[], dict[str, Any]]) -> None:
    """Run a schedule command; every failure becomes ``{"ok": false, "error"}``."""
    try:
        payload = fn()
    except typer.Exit:
        raise
    except GatewardenError as e:
        _fail(str(e))
    except Exception as e:
        _fail(f"Unexpected error: {e}")
    _emit({"ok": True, **payload})


def _parse_id(value: str | None, usage: str) -> int:
    if not value:
        _fail(f"Schedule ID is required. Usage: {usage}")
    try:
        return int(value)
    except ValueError:
        _fail(f'Invalid schedule ID: "{value}".')


def _make_store():
    from gatewarden.schedule.store import ScheduleStore

    return ScheduleStore.from_config(_load_config())


@schedule_app.command("create")
def schedule_create(
    type: str = typer.Option(None, "--type", help="cron or once"),
    cron: str = typer.Option(None, "--cron", help="Cron expression (type=cron)"),
    time: str = typer.Option(None, "--time", help='Local time "YYYY-MM-DD HH:MM" (type=once)'),
    job: str = typer.Option("prompt", "--job", help="prompt, shell, or script"),
    cmd: str = typer.Option(None, "--cmd", help="Prompt text, shell command, or script path"),
    output: str = typer.Option(None, "--output", help="Delivery sink (telegram, silent, file:/path, ...)"),
    name: str = typer.Option(None, "--name", help="Optional label"),
    user: str = typer.Option(None, "--user", help="Owning user id"),
):
    """Create a schedule."""
    if type not in ("cron", "once"):
        _fail("--type is required (cron or once).")
    if not cmd:
        _fail("--cmd is required.")
    if not user:
        _fail("--user is required.")
    if type == "cron" and not cron:
        _fail("--cron is required for type=cron.")
    if type == "once" and not time:
        _fail('--time is required for type=once (format: "YYYY-MM-DD HH:MM").')

    def run() -> dict[str, Any]:
        schedule = _make_store().create(
            type=type,
            task=cmd,
            user_id=user,
            job_type=job,
            output=output,
            name=name,
            cron=cron,
            time=time,
        )
        return {"schedule": schedule.to_dict()}

    _json_command(run)


@schedule_app.command("list")
def schedule_list(
    active: bool = typer.Option(False, "--active", help="Only active schedules"),
    user: str = typer.Option(None, "--user", help="Only schedules owned by this user"),
):
    """List schedules (active first, newest first)."""

    def run() -> dict[str, Any]:
        schedules = _make_store().list_schedules(active_only=active, user_id=user)
        return {"schedules": [s.to_dict() for s in schedules]}

    _json_command(run)


@schedule_app.command("cancel")
def schedule_cancel(
    schedule_id: str = typer.Argument(None, help="Schedule ID"),
):
    """Cancel an active schedule."""
    sid = _parse_id(schedule_id, "cancel <id>")
    _json_command(lambda: {"schedule": _make_store().cancel(sid).to_dict()})


@schedule_app.command("update")
def schedule_update(
    schedule_id: str = typer.Argument(None, help="Schedule ID"),
    name: str = typer.Option(None, "--name"),
    cron: str = typer.Option(None, "--cron"),
    time: str = typer.Option(None, "--time"),
    cmd: str = typer.Option(None, "--cmd"),
    output: str = typer.Option(None, "--output"),
    job: str = typer.Option(None, "--job"),
):
    """Update selected fields of a schedule."""
    sid = _parse_id(
        schedule_id,
        "update <id> [--name ...] [--cron ...] [--time ...] [--cmd ...] [--output ...] [--job ...]",
    )

    def run() -> dict[str, Any]:
        schedule = _make_store().update(
            sid, name=name, task=cmd, output=output, job_type=job, cron=cron, time=time
        )
        return {"schedule": schedule.to_dict()}

    _json_command(run)


@schedule_app.command("history")
def schedule_history(
    schedule_id: str = typer.Argument(None, help="Schedule ID"),
    limit: str = typer.Option("10", "--limit", help="Max entries, newest first"),
):
    """Show execution history of a schedule."""
    sid = _parse_id(schedule_id, "history <id> [--limit 10]")
    try:
        max_entries = int(limit)
    except ValueError:
        _fail(f'Invalid limit: "{limit}".')

    def run() -> dict[str, Any]:
        schedule, entries = _make_store().history(sid, limit=max_entries)
        return {
            "id": schedule.id,
            "name": schedule.name,
            "history": [e.model_dump() for e in entries],
        }

    _json_command(run)


# ============================================================================
# Deploy Commands
# ============================================================================

deploy_app = typer.Typer(help="Self-deploy pipeline")
app.add_typer(deploy_app, name="deploy")


def _make_coordinator():
    from gatewarden.deploy.coordinator import DeploymentCoordinator

    return DeploymentCoordinator.from_config(_load_config())


def _print_result(result) -> None:
    if result.success:
        console.print(f"[green]✓[/green] {result.message}")
    else:
        phase = f" [dim]({result.phase})[/dim]" if result.phase else ""
        console.print(f"[red]✗ {result.message}[/red]{phase}")
    if result.output:
        console.print(f"[dim]{result.output}[/dim]")


@deploy_app.command("run")
def deploy_run(
    by: str = typer.Option("cli", "--by", help="Who initiated the deploy"),
):
    """Ask the running gateway to build, drain, restart and validate itself."""
    from gatewarden.deploy.request import discard_deploy_request, write_deploy_request
    from gatewarden.schedule.notify import notify_gateway

    config = _load_config()
    write_deploy_request(config.deploy_request_path, by)
    if not notify_gateway(config.pid_path, config.deploy.request_signal):
        discard_deploy_request(config.deploy_request_path)
        console.print(f"[red]✗ No running gateway to deploy (PID file: {config.pid_path})[/red]")
        raise typer.Exit(1)

    console.print("[green]✓[/green] Deploy requested; the gateway runs it and restarts")
    console.print("[dim]Follow progress with: gatewarden deploy status[/dim]")


@deploy_app.command("status")
def deploy_status():
    """Show the persisted deploy state."""
    state = _make_coordinator().get_deploy_state()

    table = Table(title="Deploy State")
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    for key, value in state.model_dump(by_alias=True).items():
        table.add_row(key, "" if value is None else str(value))
    console.print(table)


@deploy_app.command("rollback")
def deploy_rollback():
    """Check out and rebuild the commit recorded before the last deploy."""
    result = asyncio.run(_make_coordinator().manual_rollback())
    _print_result(result)
    if not result.success:
        raise typer.Exit(1)


# ============================================================================
# Gateway
# ============================================================================


@app.command()
def gateway():
    """Run the gateway lifecycle (PID file, rollback check, schedule hot reload)."""
    from gatewarden.gateway.runtime import GatewayRuntime

    config = _load_config()
    console.print(f"{__logo__} Starting gatewarden gateway runtime...")

    async def run() -> int:
        runtime = GatewayRuntime(config)
        if not await runtime.startup():
            runtime.shutdown()
            return 0

        stop = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, stop.set)
            except (NotImplementedError, RuntimeError):
                pass

        runtime.mark_ready()
        console.print("[green]✓[/green] Gateway runtime ready")
        try:
            await stop.wait()
        finally:
            console.print("\nShutting down...")
            runtime.shutdown()
        return 0

    raise typer.Exit(asyncio.run(run()))


if __name__ == "__main__":
    app()
