"""Shared error types for gatewarden.

Goal: every failure a caller can act on has its own type. The CLI layer
turns these into ``{"ok": false, "error": ...}`` lines; the deploy
coordinator turns them into failed ``DeployResult`` values.
"""


class GatewardenError(Exception):
    """Base error for gatewarden."""


class LockTimeoutError(GatewardenError):
    """The schedule store lock could not be acquired within the budget."""


class ScheduleValidationError(GatewardenError):
    """Malformed cron expression, time, enum value or id. Raised before any mutation."""


class ScheduleNotFoundError(GatewardenError):
    """Referenced schedule id does not exist."""


class ConflictError(GatewardenError):
    """Operation conflicts with current state (non-active schedule, type mismatch, deploy in flight)."""


class ExternalCommandError(GatewardenError):
    """External command (build, checkout, restart, status) failed."""

    def __init__(self, command: str, returncode: int | None, output: str = ""):
        self.command = command
        self.returncode = returncode
        self.output = output
        if returncode is None:
            detail = "could not be run"
        else:
            detail = f"exited with code {returncode}"
        super().__init__(f"Command '{command}' {detail}")


class CircuitOpenError(GatewardenError):
    """Call rejected without running because the circuit breaker is open."""
