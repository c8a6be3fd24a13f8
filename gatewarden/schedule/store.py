"""File-backed, lock-protected schedule store shared by the gateway and the CLI."""

import json
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, TypeVar

from croniter import croniter
from loguru import logger
from pydantic import ValidationError

from gatewarden.errors import ConflictError, ScheduleNotFoundError, ScheduleValidationError
from gatewarden.schedule.lock import DEFAULT_RETRY_S, DEFAULT_STALE_S, DEFAULT_TIMEOUT_S, StoreLock
from gatewarden.schedule.notify import notify_gateway
from gatewarden.schedule.timeconv import get_zone, local_to_utc
from gatewarden.schedule.types import (
    JOB_TYPES,
    SCHEDULE_STATUSES,
    SCHEDULE_TYPES,
    Schedule,
    ScheduleHistoryEntry,
    ScheduleStoreData,
)
from gatewarden.utils.helpers import atomic_write_text, format_iso, parse_iso, utc_now

T = TypeVar("T")

MAX_HISTORY_PER_SCHEDULE = 50


def _log_dropped(count: int) -> None:
    logger.warning(f"Dropped {count} malformed schedule record(s) while loading store")


def validate_cron(expr: str) -> str:
    """Return ``expr`` stripped, or raise ScheduleValidationError."""
    expr = (expr or "").strip()
    if not expr or not croniter.is_valid(expr):
        raise ScheduleValidationError(f'Invalid cron expression: "{expr}".')
    return expr


def validate_job_type(job_type: str) -> str:
    if job_type not in JOB_TYPES:
        raise ScheduleValidationError("Job type must be prompt, shell, or script.")
    return job_type


class ScheduleStore:
    """
    CRUD over schedules.json, one locked transaction per operation.

    Each mutating call: acquire the cross-process lock, load and normalize
    the file, mutate, write atomically, release, then (if ``pid_file`` is
    set) send a best-effort hot-reload signal to the gateway. Read-only calls
    skip the write and the signal.

    The gateway's own instance is built without ``pid_file`` so it never
    signals itself.
    """

    def __init__(
        self,
        store_path: Path,
        lock_path: Path | None = None,
        timezone: str = "Europe/Berlin",
        pid_file: Path | None = None,
        reload_signal: str = "SIGUSR2",
        max_history: int = MAX_HISTORY_PER_SCHEDULE,
        default_output: str = "telegram",
        lock_timeout_s: float = DEFAULT_TIMEOUT_S,
        lock_stale_s: float = DEFAULT_STALE_S,
        lock_retry_s: float = DEFAULT_RETRY_S,
        on_dropped: Callable[[int], None] | None = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.store_path = Path(store_path)
        self.lock_path = Path(lock_path) if lock_path else self.store_path.with_name("schedules.lock")
        self.timezone = timezone
        self.pid_file = Path(pid_file) if pid_file else None
        self.reload_signal = reload_signal
        self.max_history = max_history
        self.default_output = default_output
        self.lock_timeout_s = lock_timeout_s
        self.lock_stale_s = lock_stale_s
        self.lock_retry_s = lock_retry_s
        self.on_dropped = on_dropped or _log_dropped
        self._clock = clock

    @classmethod
    def from_config(cls, config, notify: bool = True, **kwargs) -> "ScheduleStore":
        """Build a store from the root ``Config``. ``notify=False`` for the gateway itself."""
        sc = config.schedule
        return cls(
            store_path=config.schedules_path,
            lock_path=config.lock_path,
            timezone=sc.timezone,
            pid_file=config.pid_path if notify else None,
            reload_signal=sc.reload_signal,
            max_history=sc.max_history,
            default_output=sc.default_output,
            lock_timeout_s=sc.lock_timeout_s,
            lock_stale_s=sc.lock_stale_s,
            lock_retry_s=sc.lock_retry_s,
            **kwargs,
        )

    # ========== Storage ==========

    def _lock(self) -> StoreLock:
        return StoreLock(
            self.lock_path,
            timeout_s=self.lock_timeout_s,
            stale_s=self.lock_stale_s,
            retry_s=self.lock_retry_s,
        )

    def _load_unlocked(self) -> ScheduleStoreData:
        """Load and normalize the store. Caller must hold the lock (or accept a racy read)."""
        if not self.store_path.exists():
            return ScheduleStoreData()

        try:
            raw = json.loads(self.store_path.read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
            logger.error(f"Failed to load schedule store {self.store_path}: {e}; treating as empty")
            return ScheduleStoreData()

        if not isinstance(raw, dict):
            logger.error(f"Schedule store {self.store_path} is not a JSON object; treating as empty")
            return ScheduleStoreData()

        raw_schedules = raw.get("schedules")
        if not isinstance(raw_schedules, list):
            raw_schedules = []

        schedules: list[Schedule] = []
        dropped = 0
        for item in raw_schedules:
            try:
                schedules.append(Schedule.model_validate(item))
            except ValidationError:
                dropped += 1
        if dropped:
            try:
                self.on_dropped(dropped)
            except Exception as e:
                logger.debug(f"on_dropped hook failed: {e}")

        max_id = max((s.id for s in schedules), default=0)
        persisted = raw.get("nextId")
        if isinstance(persisted, int) and not isinstance(persisted, bool) and persisted > max_id:
            next_id = persisted
        else:
            next_id = max_id + 1

        return ScheduleStoreData(schedules=schedules, next_id=next_id)

    def _save_unlocked(self, data: ScheduleStoreData) -> None:
        atomic_write_text(self.store_path, json.dumps(data.to_dict(), indent=2, ensure_ascii=False))

    def _read(self, reader: Callable[[ScheduleStoreData], T]) -> T:
        with self._lock():
            return reader(self._load_unlocked())

    def _mutate(self, mutator: Callable[[ScheduleStoreData], T]) -> T:
        with self._lock():
            data = self._load_unlocked()
            result = mutator(data)
            self._save_unlocked(data)
        if self.pid_file is not None:
            notify_gateway(self.pid_file, self.reload_signal)
        return result

    # ========== Helpers ==========

    def _next_cron_run(self, expr: str) -> str:
        zone = get_zone(self.timezone)
        start = self._clock().astimezone(zone)
        return format_iso(croniter(expr, start).get_next(datetime))

    def _once_time(self, time_str: str) -> str:
        return format_iso(local_to_utc(time_str, self.timezone))

    @staticmethod
    def _find(data: ScheduleStoreData, schedule_id: int, user_id: str | None = None) -> Schedule:
        schedule = data.find(schedule_id)
        if schedule is None or (user_id is not None and schedule.user_id != user_id):
            raise ScheduleNotFoundError(f"Schedule #{schedule_id} not found.")
        return schedule

    # ========== Public API ==========

    def load(self) -> ScheduleStoreData:
        """Locked, normalized snapshot of the whole store."""
        return self._read(lambda data: data)

    def create(
        self,
        type: str,
        task: str,
        user_id: str,
        job_type: str = "prompt",
        output: str | None = None,
        name: str | None = None,
        cron: str | None = None,
        time: str | None = None,
    ) -> Schedule:
        """Create an active schedule and assign it the next id."""
        if type not in SCHEDULE_TYPES:
            raise ScheduleValidationError('Schedule type must be "cron" or "once".')
        if not task or not task.strip():
            raise ScheduleValidationError("Task must not be empty.")
        if not user_id or not str(user_id).strip():
            raise ScheduleValidationError("User is required.")
        validate_job_type(job_type)

        fields: dict[str, Any] = {}
        if type == "cron":
            if cron is None:
                raise ScheduleValidationError("A cron expression is required for type=cron.")
            fields["cron_expression"] = validate_cron(cron)
            fields["next_run"] = self._next_cron_run(fields["cron_expression"])
        else:
            if time is None:
                raise ScheduleValidationError(
                    'A time is required for type=once (format: "YYYY-MM-DD HH:MM").'
                )
            fields["scheduled_time"] = self._once_time(time)
            fields["next_run"] = fields["scheduled_time"]

        def _create(data: ScheduleStoreData) -> Schedule:
            schedule = Schedule(
                id=data.next_id,
                type=type,
                job_type=job_type,
                task=task,
                output=output or self.default_output,
                name=name,
                status="active",
                created_at=format_iso(self._clock()),
                user_id=str(user_id),
                history=[],
                **fields,
            )
            data.next_id += 1
            data.schedules.append(schedule)
            return schedule

        schedule = self._mutate(_create)
        logger.info(f"Schedule #{schedule.id} created ({schedule.type}, {schedule.job_type}) for user {schedule.user_id}")
        return schedule

    def list_schedules(self, active_only: bool = False, user_id: str | None = None) -> list[Schedule]:
        """Schedules filtered by status/owner; active first, then newest first."""
        data = self.load()
        schedules = data.schedules
        if active_only:
            schedules = [s for s in schedules if s.status == "active"]
        if user_id is not None:
            schedules = [s for s in schedules if s.user_id == str(user_id)]

        def _created(s: Schedule) -> float:
            dt = parse_iso(s.created_at)
            return dt.timestamp() if dt else 0.0

        schedules = sorted(schedules, key=_created, reverse=True)
        return sorted(schedules, key=lambda s: s.status != "active")

    def get(self, schedule_id: int, user_id: str | None = None) -> Schedule:
        return self._read(lambda data: self._find(data, schedule_id, user_id))

    def cancel(self, schedule_id: int, user_id: str | None = None) -> Schedule:
        """
        Transition an active schedule to cancelled and clear its next run.

        Raises:
            ScheduleNotFoundError: no such id (or owned by another user).
            ConflictError: the schedule is not active.
        """

        def _cancel(data: ScheduleStoreData) -> Schedule:
            schedule = self._find(data, schedule_id, user_id)
            if schedule.status != "active":
                raise ConflictError(f"Schedule #{schedule_id} is already {schedule.status}.")
            schedule.status = "cancelled"
            schedule.next_run = None
            return schedule

        schedule = self._mutate(_cancel)
        logger.info(f"Schedule #{schedule_id} cancelled")
        return schedule

    def update(
        self,
        schedule_id: int,
        name: str | None = None,
        task: str | None = None,
        output: str | None = None,
        job_type: str | None = None,
        cron: str | None = None,
        time: str | None = None,
        user_id: str | None = None,
    ) -> Schedule:
        """
        Apply only the provided fields.

        ``cron`` is only valid on cron schedules and ``time`` only on once
        schedules; a mismatch is a ConflictError. Changing either recomputes
        nextRun for active schedules.
        """
        if task is not None and not task.strip():
            raise ScheduleValidationError("Task must not be empty.")
        if job_type is not None:
            validate_job_type(job_type)
        if cron is not None:
            cron = validate_cron(cron)
        scheduled_time = self._once_time(time) if time is not None else None

        def _update(data: ScheduleStoreData) -> Schedule:
            schedule = self._find(data, schedule_id, user_id)

            if cron is not None and schedule.type != "cron":
                raise ConflictError(
                    f"Schedule #{schedule_id} is a one-time schedule; use a time instead of a cron expression."
                )
            if scheduled_time is not None and schedule.type != "once":
                raise ConflictError(
                    f"Schedule #{schedule_id} is a cron schedule; use a cron expression instead of a time."
                )

            if name is not None:
                schedule.name = name.strip() or None
            if task is not None:
                schedule.task = task
            if output is not None:
                schedule.output = output.strip() or self.default_output
            if job_type is not None:
                schedule.job_type = job_type

            if cron is not None:
                schedule.cron_expression = cron
                if schedule.status == "active":
                    schedule.next_run = self._next_cron_run(cron)
            if scheduled_time is not None:
                schedule.scheduled_time = scheduled_time
                if schedule.status == "active":
                    schedule.next_run = scheduled_time

            if schedule.type == "cron":
                schedule.scheduled_time = None
            else:
                schedule.cron_expression = None
            return schedule

        schedule = self._mutate(_update)
        logger.info(f"Schedule #{schedule_id} updated")
        return schedule

    def history(self, schedule_id: int, limit: int = 10) -> tuple[Schedule, list[ScheduleHistoryEntry]]:
        """Up to ``limit`` most recent history entries, newest first."""
        if limit < 1:
            raise ScheduleValidationError("Limit must be a positive integer.")
        schedule = self.get(schedule_id)
        return schedule, list(reversed(schedule.history[-limit:]))

    def record_run(
        self,
        schedule_id: int,
        result: str,
        duration_ms: float,
        success: bool,
        next_run: datetime | str | None = None,
        status: str | None = None,
        timestamp: datetime | None = None,
    ) -> Schedule:
        """
        Append an execution to a schedule's history (capped) and update its
        run bookkeeping. Called by the execution engine after each run.
        """
        if status is not None and status not in SCHEDULE_STATUSES:
            raise ScheduleValidationError(f"Unknown schedule status: \"{status}\".")
        ran_at = format_iso(timestamp or self._clock())
        if isinstance(next_run, datetime):
            next_run = format_iso(next_run)

        def _record(data: ScheduleStoreData) -> Schedule:
            schedule = self._find(data, schedule_id)
            schedule.history.append(
                ScheduleHistoryEntry(
                    timestamp=ran_at,
                    result=result,
                    duration=float(duration_ms),
                    success=success,
                )
            )
            if len(schedule.history) > self.max_history:
                schedule.history = schedule.history[-self.max_history:]
            schedule.last_run = ran_at
            schedule.next_run = next_run
            if status is not None:
                schedule.status = status
            return schedule

        schedule = self._mutate(_record)
        logger.debug(f"Schedule #{schedule_id} run recorded (success={success})")
        return schedule
