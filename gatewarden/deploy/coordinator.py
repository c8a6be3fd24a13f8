"""Safe self-deployment of the gateway: build, drain, restart, validate, roll back."""

import asyncio
import json
import time
from datetime import datetime
from pathlib import Path
from typing import Awaitable, Callable

from loguru import logger
from pydantic import ValidationError

from gatewarden.deploy.capabilities import DeployCapabilities
from gatewarden.deploy.types import DeployResult, DeployState
from gatewarden.errors import ExternalCommandError
from gatewarden.utils.helpers import atomic_write_text, format_iso, parse_iso, utc_now

STALE_LOCK_S = 5 * 60
DRAIN_POLL_S = 0.5
DRAIN_TIMEOUT_S = 15.0
ROLLBACK_RESTART_THRESHOLD = 3


def _error_output(e: Exception) -> str:
    if isinstance(e, ExternalCommandError):
        return e.output or str(e)
    return str(e)


class DeploymentCoordinator:
    """
    Single-flight deploy pipeline for the gateway's own process.

    The deploy state file is written only by the gateway process, so it
    needs no lock; a ``deploying`` state older than ``stale_lock_s`` is
    treated as abandoned by a crashed deploy.

    ``validating`` is left on disk across the restart on purpose: the next
    process reads it in ``check_rollback_needed()`` and
    ``check_post_deploy_health()``.
    """

    def __init__(
        self,
        state_path: Path,
        capabilities: DeployCapabilities,
        stale_lock_s: float = STALE_LOCK_S,
        drain_poll_s: float = DRAIN_POLL_S,
        drain_timeout_s: float = DRAIN_TIMEOUT_S,
        rollback_threshold: int = ROLLBACK_RESTART_THRESHOLD,
        clock: Callable[[], datetime] = utc_now,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.state_path = Path(state_path)
        self.capabilities = capabilities
        self.stale_lock_s = stale_lock_s
        self.drain_poll_s = drain_poll_s
        self.drain_timeout_s = drain_timeout_s
        self.rollback_threshold = rollback_threshold
        self._clock = clock
        self._sleep = sleep
        self._deploy_pending = False

    @classmethod
    def from_config(cls, config, capabilities: DeployCapabilities | None = None) -> "DeploymentCoordinator":
        from gatewarden.deploy.capabilities import ShellDeployCapabilities

        dc = config.deploy
        return cls(
            state_path=config.deploy_state_path,
            capabilities=capabilities or ShellDeployCapabilities.from_config(config),
            stale_lock_s=dc.stale_lock_s,
            drain_poll_s=dc.drain_poll_s,
            drain_timeout_s=dc.drain_timeout_s,
            rollback_threshold=dc.rollback_restart_threshold,
        )

    # ========== State file ==========

    def _load_state(self) -> DeployState:
        if not self.state_path.exists():
            return DeployState()
        try:
            return DeployState.model_validate(json.loads(self.state_path.read_text(encoding="utf-8")))
        except (OSError, json.JSONDecodeError, ValidationError) as e:
            logger.warning(f"Deploy: unreadable state file {self.state_path}, treating as idle: {e}")
            return DeployState()

    def _save_state(self, state: DeployState) -> None:
        atomic_write_text(self.state_path, json.dumps(state.to_dict(), indent=2))

    def _reset_to_idle(self) -> None:
        self._save_state(DeployState())
        self._deploy_pending = False

    def _is_stale(self, state: DeployState) -> bool:
        started = parse_iso(state.started_at) if state.started_at else None
        if started is None:
            return False
        return (self._clock() - started).total_seconds() > self.stale_lock_s

    # ========== Public API ==========

    def get_deploy_state(self) -> DeployState:
        return self._load_state()

    def is_deploy_pending(self) -> bool:
        """True from the start of drain until this process exits (or the deploy fails)."""
        return self._deploy_pending

    async def execute_deploy(self, initiated_by: str, in_flight_count: Callable[[], int]) -> DeployResult:
        """
        Run lock -> pre-flight -> build -> drain -> restart.

        In normal operation the restart kills this process and the returned
        value is never observed.
        """
        current = self._load_state()
        if current.status != "idle":
            if current.status == "deploying" and self._is_stale(current):
                logger.warning(
                    f"Deploy: overriding stale lock (started {current.started_at} "
                    f"by {current.initiated_by})"
                )
            else:
                return DeployResult(
                    success=False,
                    message=(
                        f"Deploy already in progress (status: {current.status}, "
                        f"phase: {current.phase or 'unknown'})"
                    ),
                    phase="lock",
                )

        state = DeployState(
            status="deploying",
            started_at=format_iso(self._clock()),
            initiated_by=initiated_by,
            phase="pre-flight",
        )
        self._save_state(state)
        logger.info(f"Deploy: started by {initiated_by}")

        try:
            # --- Pre-flight ---
            try:
                porcelain = (await self.capabilities.working_tree_status()).strip()
            except Exception as e:
                logger.error(f"Deploy: working tree status check failed: {e}")
                self._reset_to_idle()
                return DeployResult(
                    success=False,
                    message="Failed to check working tree status",
                    phase="pre-flight",
                    output=_error_output(e),
                )

            if porcelain:
                logger.warning("Deploy: aborted, working tree is dirty")
                self._reset_to_idle()
                return DeployResult(
                    success=False,
                    message="Deploy aborted: working tree is dirty. Commit/stash your changes before deploy.",
                    phase="pre-flight",
                    output=porcelain,
                )

            state.previous_commit = await self.capabilities.head_commit()
            self._save_state(state)

            # --- Build ---
            state.phase = "build"
            self._save_state(state)
            logger.info("Deploy: build started")
            try:
                await self.capabilities.build()
            except ExternalCommandError as e:
                output = _error_output(e)
                logger.error(f"Deploy: build failed: {output}")
                self._reset_to_idle()
                return DeployResult(success=False, message="Build failed", phase="build", output=output)
            logger.info("Deploy: build succeeded")

            # --- Drain ---
            state.phase = "drain"
            self._save_state(state)
            self._deploy_pending = True
            logger.info("Deploy: draining in-flight requests")
            await self._drain(in_flight_count)

            # --- Record ---
            state.current_commit = await self.capabilities.head_commit()
            state.status = "validating"
            state.phase = "restart"
            self._save_state(state)
            logger.info(
                f"Deploy: restarting ({state.previous_commit} -> {state.current_commit})"
            )

            # --- Restart ---
            await self.capabilities.restart()
            return DeployResult(success=True, message="Restart issued", phase="restart")

        except Exception as e:
            logger.error(f"Deploy: unexpected error during {state.phase}: {e}")
            self._reset_to_idle()
            return DeployResult(
                success=False,
                message="Unexpected error during deploy",
                phase=state.phase,
                output=_error_output(e),
            )

    async def _drain(self, in_flight_count: Callable[[], int]) -> None:
        """Wait for in-flight work to finish; the timeout is soft."""
        started = time.monotonic()
        while in_flight_count() > 0:
            if time.monotonic() - started > self.drain_timeout_s:
                logger.warning(
                    f"Deploy: drain timed out with {in_flight_count()} request(s) in flight; proceeding"
                )
                break
            await self._sleep(self.drain_poll_s)
        logger.info(f"Deploy: drain complete after {time.monotonic() - started:.1f}s")

    def check_post_deploy_health(self) -> bool:
        """
        Called by a freshly started process once it is serving. Being alive to
        read a ``validating`` state is the success signal. Returns True if a
        deploy was confirmed.
        """
        state = self._load_state()
        if state.status != "validating":
            return False
        logger.info(
            f"Deploy: post-deploy health OK ({state.previous_commit} -> {state.current_commit})"
        )
        self._reset_to_idle()
        return True

    async def check_rollback_needed(self) -> bool:
        """
        Called at startup. If the last deploy is crash-looping (restart counter
        at or above the threshold), restore the previous commit and rebuild.

        Returns True when a rollback was performed; the caller should then
        exit so the process manager restarts into the restored code.
        """
        state = self._load_state()
        if state.status != "validating":
            return False

        if not state.previous_commit:
            logger.warning("Deploy: validating state has no previous commit; cannot roll back")
            self._reset_to_idle()
            return False

        restart_count = await self.capabilities.restart_count()
        if restart_count < self.rollback_threshold:
            return False

        logger.warning(
            f"Deploy: rollback triggered (restarts={restart_count}, "
            f"{state.current_commit} -> {state.previous_commit})"
        )
        try:
            await self.capabilities.checkout(state.previous_commit)
            await self.capabilities.build()
        except Exception as e:
            logger.error(f"Deploy: rollback failed: {_error_output(e)}")
            self._reset_to_idle()
            return False

        logger.info(f"Deploy: rollback complete, restored {state.previous_commit}")
        self._reset_to_idle()
        return True

    async def manual_rollback(self) -> DeployResult:
        """Operator-triggered checkout + rebuild of the previous commit, no restart-count gate."""
        state = self._load_state()
        target = state.previous_commit
        if not target:
            return DeployResult(success=False, message="No previous commit available for rollback")

        logger.info(f"Deploy: manual rollback to {target} started")
        try:
            try:
                await self.capabilities.checkout(target)
            except Exception as e:
                logger.error(f"Deploy: manual rollback checkout failed: {e}")
                return DeployResult(
                    success=False,
                    message="Failed to checkout previous commit",
                    phase="checkout",
                    output=_error_output(e),
                )

            try:
                await self.capabilities.build()
            except Exception as e:
                logger.error(f"Deploy: manual rollback build failed: {e}")
                return DeployResult(
                    success=False,
                    message="Rollback build failed",
                    phase="build",
                    output=_error_output(e),
                )
        finally:
            self._reset_to_idle()

        logger.info(f"Deploy: manual rollback complete, restored {target}")
        return DeployResult(success=True, message=f"Rolled back to {target}")
