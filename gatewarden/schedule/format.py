"""Plain-text renderings of schedules for chat replies."""

from gatewarden.schedule.timeconv import get_zone
from gatewarden.schedule.types import Schedule
from gatewarden.utils.helpers import parse_iso

_STATUS_ICONS = {
    "active": "🟢",
    "completed": "✅",
    "cancelled": "❌",
    "failed": "🔴",
}


def _local(iso: str | None, tz_name: str) -> str:
    dt = parse_iso(iso) if iso else None
    if dt is None:
        return "unknown"
    return dt.astimezone(get_zone(tz_name)).strftime("%d/%m/%Y %H:%M")


def format_schedule(schedule: Schedule, tz_name: str = "Europe/Berlin") -> str:
    """One schedule as a short multi-line block."""
    icon = _STATUS_ICONS.get(schedule.status, "🔴")
    if schedule.type == "cron":
        when = f"cron: `{schedule.cron_expression}`"
    else:
        when = f"at {_local(schedule.scheduled_time, tz_name)}"

    name = f' "{schedule.name}"' if schedule.name else ""
    lines = [f"{icon} #{schedule.id}{name} {when}", f"  {schedule.task}"]

    extras = []
    if schedule.job_type != "prompt":
        extras.append(f"job: {schedule.job_type}")
    if schedule.output != "telegram":
        extras.append(f"output: {schedule.output}")
    if extras:
        lines.append(f"  [{', '.join(extras)}]")

    if schedule.last_run:
        lines.append(f"  Last run: {_local(schedule.last_run, tz_name)}")
    if schedule.next_run and schedule.status == "active":
        lines.append(f"  Next run: {_local(schedule.next_run, tz_name)}")
    return "\n".join(lines)


def format_history(schedule: Schedule, tz_name: str = "Europe/Berlin", limit: int = 10) -> str:
    """Most recent executions, newest first; long results are truncated."""
    if not schedule.history:
        return f"No execution history for schedule #{schedule.id}."

    recent = list(reversed(schedule.history[-limit:]))
    blocks = []
    for entry in recent:
        icon = "✅" if entry.success else "❌"
        result = entry.result if len(entry.result) <= 200 else entry.result[:200] + "..."
        blocks.append(
            f"{icon} {_local(entry.timestamp, tz_name)} ({entry.duration / 1000:.1f}s)\n{result}"
        )
    return f"History for #{schedule.id} (last {len(recent)}):\n\n" + "\n\n".join(blocks)
