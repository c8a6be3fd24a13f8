"""Deploy types (Pydantic models with camelCase JSON aliases)."""

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

DeployStatus = Literal["idle", "deploying", "validating"]


class DeployState(BaseModel):
    """Persisted deploy pipeline state; at most one non-idle state exists."""

    status: DeployStatus = "idle"
    started_at: str | None = Field(None, alias="startedAt")
    previous_commit: str | None = Field(None, alias="previousCommit")
    current_commit: str | None = Field(None, alias="currentCommit")
    initiated_by: str | None = Field(None, alias="initiatedBy")
    phase: str | None = None  # pre-flight / build / drain / restart

    model_config = ConfigDict(populate_by_name=True)

    def to_dict(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)


class DeployResult(BaseModel):
    """Outcome of a deploy or rollback request."""

    success: bool
    message: str
    phase: str | None = None
    output: str | None = None

    def to_dict(self) -> dict:
        return self.model_dump(exclude_none=True)


class DeployRequest(BaseModel):
    """A deploy asked for by another process and carried out by the gateway."""

    initiated_by: str = Field(alias="initiatedBy", min_length=1)
    requested_at: str | None = Field(None, alias="requestedAt")

    model_config = ConfigDict(populate_by_name=True)

    def to_dict(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)
