"""Cron job management commands

Commands operate on the job store directly; a running gateway picks the
changes up on its next tick.
"""

import asyncio
import json
import re
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from ..config.loader import load_config
from ..config.paths import resolve_cron_store_path
from ..cron.calendar import project_future_runs
from ..cron.errors import CronError
from ..cron.parse import format_iso_ms
from ..cron.schedule import format_next_run, format_schedule
from ..cron.serialization import job_to_api, run_entry_to_api
from ..cron.service import CronService

console = Console()
cron_app = typer.Typer(help="Scheduled job management")

_DURATION_RE = re.compile(r"^(\d+)(ms|s|m|h|d)?$")
_DURATION_UNITS_MS = {"ms": 1, "s": 1000, "m": 60_000, "h": 3_600_000, "d": 86_400_000}


def parse_duration_ms(raw: str) -> int:
    """``90s``, ``10m``, ``2h``, ``1d`` or plain milliseconds."""
    match = _DURATION_RE.match(raw.strip().lower())
    if not match:
        raise typer.BadParameter(f"invalid duration: {raw!r} (use e.g. 30s, 10m, 2h)")
    value, unit = match.groups()
    return int(value) * _DURATION_UNITS_MS[unit or "ms"]


def _service(store: Optional[str]) -> CronService:
    config = load_config()
    cron_config = config.cron
    return CronService(
        resolve_cron_store_path(store or cron_config.store),
        cron_enabled=False,
        run_log_max_bytes=cron_config.runLog.maxBytes,
        run_log_keep_lines=cron_config.runLog.keepLines,
        stuck_run_ms=cron_config.stuckRunMs,
    )


def _fail(e: Exception) -> None:
    console.print(f"[red]Error:[/red] {e}")
    raise typer.Exit(1)


StoreOption = typer.Option(None, "--store", help="Job store path (default from config)")


@cron_app.command("status")
def status_cmd(store: Optional[str] = StoreOption):
    """Show scheduler status"""
    try:
        status = asyncio.run(_service(store).status())
    except (CronError, OSError) as e:
        _fail(e)
    console.print(f"Store: {status['storePath']}")
    console.print(f"Jobs: {status['jobs']}")
    next_wake = status["nextWakeAtMs"]
    console.print(f"Next wake: {format_next_run(next_wake) if next_wake is not None else '-'}")


@cron_app.command("list")
def list_cmd(
    all_jobs: bool = typer.Option(False, "--all", "-a", help="Include disabled jobs"),
    json_output: bool = typer.Option(False, "--json", help="Output JSON"),
    store: Optional[str] = StoreOption,
):
    """List jobs, soonest first"""
    try:
        jobs = asyncio.run(_service(store).list_jobs(include_disabled=all_jobs))
    except (CronError, OSError) as e:
        _fail(e)

    if json_output:
        console.print_json(json.dumps([job_to_api(j) for j in jobs]))
        return
    if not jobs:
        console.print("[yellow]No cron jobs[/yellow]")
        return

    table = Table(title="Cron Jobs")
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("Name", style="white")
    table.add_column("Schedule", style="green")
    table.add_column("Target", style="blue")
    table.add_column("Next run", style="yellow")
    table.add_column("Last", style="magenta")
    for job in jobs:
        nxt = job.state.next_run_at_ms
        table.add_row(
            job.id,
            job.name if job.enabled else f"[dim]{job.name} (disabled)[/dim]",
            format_schedule(job.schedule),
            job.session_target,
            format_next_run(nxt) if nxt is not None else "-",
            job.state.last_status or "-",
        )
    console.print(table)


@cron_app.command("add")
def add_cmd(
    name: str = typer.Option(..., "--name", help="Job name"),
    at: Optional[str] = typer.Option(None, "--at", help="One-shot ISO timestamp"),
    every: Optional[str] = typer.Option(None, "--every", help="Interval, e.g. 10m"),
    cron: Optional[str] = typer.Option(None, "--cron", help="5-field cron expression"),
    tz: Optional[str] = typer.Option(None, "--tz", help="IANA timezone for --cron"),
    system_event: Optional[str] = typer.Option(None, "--system-event", help="Text for the main session"),
    message: Optional[str] = typer.Option(None, "--message", help="Agent prompt for an isolated run"),
    channel: Optional[str] = typer.Option(None, "--channel", help="Announce channel (default last)"),
    to: Optional[str] = typer.Option(None, "--to", help="Announce recipient"),
    no_deliver: bool = typer.Option(False, "--no-deliver", help="Do not announce isolated output"),
    wake_now: bool = typer.Option(False, "--wake-now", help="Wake the main session immediately"),
    description: Optional[str] = typer.Option(None, "--description"),
    agent: Optional[str] = typer.Option(None, "--agent", help="Agent id"),
    disabled: bool = typer.Option(False, "--disabled", help="Create disabled"),
    store: Optional[str] = StoreOption,
):
    """Add a job"""
    if sum(x is not None for x in (at, every, cron)) != 1:
        _fail(ValueError("choose exactly one of --at, --every, --cron"))
    if (system_event is None) == (message is None):
        _fail(ValueError("choose exactly one of --system-event, --message"))

    if at is not None:
        schedule = {"kind": "at", "at": at}
    elif every is not None:
        schedule = {"kind": "every", "everyMs": parse_duration_ms(every)}
    else:
        schedule = {"kind": "cron", "expr": cron, "tz": tz} if tz else {"kind": "cron", "expr": cron}

    job: dict = {
        "name": name,
        "schedule": schedule,
        "enabled": not disabled,
        "wakeMode": "now" if wake_now else "next-heartbeat",
    }
    if system_event is not None:
        job["payload"] = {"kind": "systemEvent", "text": system_event}
    else:
        job["payload"] = {"kind": "agentTurn", "message": message}
        delivery: dict = {"mode": "none" if no_deliver else "announce"}
        if channel:
            delivery["channel"] = channel
        if to:
            delivery["to"] = to
        job["delivery"] = delivery
    if description:
        job["description"] = description
    if agent:
        job["agentId"] = agent

    try:
        created = asyncio.run(_service(store).add(job))
    except (CronError, OSError) as e:
        _fail(e)
    console.print(f"[green]✓[/green] Added job {created.name} ({created.id})")
    if created.state.next_run_at_ms is not None:
        console.print(f"  Next run: {format_next_run(created.state.next_run_at_ms)}")


@cron_app.command("edit")
def edit_cmd(
    job_id: str = typer.Argument(..., help="Job id"),
    patch: str = typer.Argument(..., help='JSON patch, e.g. \'{"enabled": false}\''),
    store: Optional[str] = StoreOption,
):
    """Patch a job with a JSON object"""
    try:
        patch_obj = json.loads(patch)
    except json.JSONDecodeError as e:
        _fail(e)
    try:
        job = asyncio.run(_service(store).update(job_id, patch_obj))
    except (CronError, OSError) as e:
        _fail(e)
    console.print(f"[green]✓[/green] Updated job {job.name} ({job.id})")


@cron_app.command("enable")
def enable_cmd(job_id: str = typer.Argument(...), store: Optional[str] = StoreOption):
    """Enable a job"""
    try:
        asyncio.run(_service(store).update(job_id, {"enabled": True}))
    except (CronError, OSError) as e:
        _fail(e)
    console.print(f"[green]✓[/green] Enabled {job_id}")


@cron_app.command("disable")
def disable_cmd(job_id: str = typer.Argument(...), store: Optional[str] = StoreOption):
    """Disable a job"""
    try:
        asyncio.run(_service(store).update(job_id, {"enabled": False}))
    except (CronError, OSError) as e:
        _fail(e)
    console.print(f"[green]✓[/green] Disabled {job_id}")


@cron_app.command("rm")
def remove_cmd(job_id: str = typer.Argument(...), store: Optional[str] = StoreOption):
    """Remove a job"""
    try:
        asyncio.run(_service(store).remove(job_id))
    except (CronError, OSError) as e:
        _fail(e)
    console.print(f"[green]✓[/green] Removed {job_id}")


@cron_app.command("runs")
def runs_cmd(
    job_id: str = typer.Argument(...),
    limit: int = typer.Option(20, "--limit", "-n", min=1, max=5000),
    json_output: bool = typer.Option(False, "--json", help="Output JSON"),
    store: Optional[str] = StoreOption,
):
    """Show a job's run history, newest first"""
    try:
        entries = asyncio.run(_service(store).runs(job_id, limit=limit))
    except (CronError, OSError, ValueError) as e:
        _fail(e)

    if json_output:
        console.print_json(json.dumps([run_entry_to_api(e) for e in entries]))
        return
    if not entries:
        console.print(f"[yellow]No runs recorded for {job_id}[/yellow]")
        return

    table = Table(title=f"Runs - {job_id}")
    table.add_column("Run at", style="cyan")
    table.add_column("Status", style="green")
    table.add_column("Duration", style="blue")
    table.add_column("Summary / error", style="white")
    for entry in entries:
        table.add_row(
            format_iso_ms(entry.run_at_ms if entry.run_at_ms is not None else entry.ts),
            entry.status or "-",
            f"{entry.duration_ms}ms" if entry.duration_ms is not None else "-",
            entry.error or entry.summary or "",
        )
    console.print(table)


@cron_app.command("calendar")
def calendar_cmd(
    days: float = typer.Option(7, "--days", help="Horizon in days"),
    json_output: bool = typer.Option(False, "--json", help="Output JSON"),
    store: Optional[str] = StoreOption,
):
    """Show upcoming runs of all enabled jobs"""
    try:
        jobs = asyncio.run(_service(store).list_jobs())
    except (CronError, OSError) as e:
        _fail(e)
    runs = project_future_runs(jobs, days)

    if json_output:
        console.print_json(json.dumps([r.to_dict() for r in runs]))
        return
    if not runs:
        console.print(f"[yellow]No runs in the next {days:g} days[/yellow]")
        return
    table = Table(title=f"Upcoming runs ({days:g} days)")
    table.add_column("When", style="cyan")
    table.add_column("Job", style="white")
    for run in runs:
        table.add_row(format_iso_ms(run.run_at_ms), f"{run.job_name} ({run.job_id})")
    console.print(table)
