"""Schedule types (Pydantic models with camelCase JSON aliases)."""

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from gatewarden.utils.helpers import format_iso, utc_now

ScheduleType = Literal["once", "cron"]
JobType = Literal["prompt", "shell", "script"]
ScheduleStatus = Literal["active", "completed", "cancelled", "failed"]

SCHEDULE_TYPES: tuple[str, ...] = ("once", "cron")
JOB_TYPES: tuple[str, ...] = ("prompt", "shell", "script")
SCHEDULE_STATUSES: tuple[str, ...] = ("active", "completed", "cancelled", "failed")


def _now_iso() -> str:
    return format_iso(utc_now())


class ScheduleHistoryEntry(BaseModel):
    """One execution of a schedule."""

    model_config = ConfigDict(strict=True)

    timestamp: str
    result: str
    duration: float  # ms
    success: bool


class Schedule(BaseModel):
    """A scheduled task. Exactly one of cron_expression / scheduled_time is set, by type."""

    id: int = Field(gt=0, strict=True)  # "1" or true would alias an existing id
    type: ScheduleType
    job_type: JobType = Field("prompt", alias="jobType")
    cron_expression: str | None = Field(None, alias="cronExpression")
    scheduled_time: str | None = Field(None, alias="scheduledTime")
    task: str
    output: str = "telegram"  # "telegram", "silent", "file:/path", ...
    name: str | None = None
    status: ScheduleStatus = "active"
    created_at: str = Field(default_factory=_now_iso, alias="createdAt")
    last_run: str | None = Field(None, alias="lastRun")
    next_run: str | None = Field(None, alias="nextRun")
    user_id: str = Field(alias="userId")
    history: list[ScheduleHistoryEntry] = Field(default_factory=list)

    # Unknown keys written by newer gateway builds (run leases etc.) round-trip untouched
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    @field_validator("task", "user_id")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("must not be empty")
        return value

    @field_validator("job_type", "status", mode="before")
    @classmethod
    def _missing_means_default(cls, value: Any, info) -> Any:
        if value is None:
            return "prompt" if info.field_name == "job_type" else "active"
        return value

    @field_validator("output", mode="before")
    @classmethod
    def _blank_output(cls, value: Any) -> Any:
        if not isinstance(value, str) or not value.strip():
            return "telegram"
        return value

    @field_validator("name", mode="before")
    @classmethod
    def _blank_name(cls, value: Any) -> Any:
        if not isinstance(value, str) or not value.strip():
            return None
        return value

    @field_validator("created_at", mode="before")
    @classmethod
    def _created_at(cls, value: Any) -> Any:
        return value if isinstance(value, str) else _now_iso()

    @field_validator("last_run", "next_run", "cron_expression", "scheduled_time", mode="before")
    @classmethod
    def _optional_str(cls, value: Any) -> Any:
        return value if isinstance(value, str) else None

    @field_validator("history", mode="before")
    @classmethod
    def _valid_entries_only(cls, value: Any) -> list:
        if not isinstance(value, list):
            return []
        entries = []
        for raw in value:
            try:
                entries.append(ScheduleHistoryEntry.model_validate(raw))
            except ValidationError:
                continue
        return entries

    @model_validator(mode="after")
    def _one_time_field(self) -> "Schedule":
        if self.type == "cron":
            if self.cron_expression is None:
                raise ValueError("cron schedule without cronExpression")
            self.scheduled_time = None
        else:
            if self.scheduled_time is None:
                raise ValueError("once schedule without scheduledTime")
            self.cron_expression = None
        return self

    def to_dict(self) -> dict:
        """JSON shape used on disk and in CLI output (``nextRun`` always present)."""
        data = self.model_dump(by_alias=True, exclude_none=True)
        data["nextRun"] = self.next_run
        return data


class ScheduleStoreData(BaseModel):
    """The ``{schedules, nextId}`` aggregate persisted in schedules.json."""

    schedules: list[Schedule] = Field(default_factory=list)
    next_id: int = Field(1, alias="nextId")

    model_config = ConfigDict(populate_by_name=True)

    def find(self, schedule_id: int) -> Schedule | None:
        for schedule in self.schedules:
            if schedule.id == schedule_id:
                return schedule
        return None

    def to_dict(self) -> dict:
        return {
            "schedules": [s.to_dict() for s in self.schedules],
            "nextId": self.next_id,
        }
